"""Tests for the needs-attention ranking and list views."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from broker_ops.core.timeutil import parse_iso_ms, resolve_timezone, to_iso
from broker_ops.models.loads import Load
from broker_ops.services.attention import (
    matches_search,
    needs_attention,
    relevant_deadline_ms,
    sort_needs_attention,
    status_counts,
    todays_loads,
    top_score_within_status,
    upcoming_loads,
)
from broker_ops.services.evaluator import evaluate_all_loads, evaluate_load

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


def _iso(**delta) -> str:
    return to_iso(NOW + timedelta(**delta))


def _load(load_id: str, **overrides) -> Load:
    fields = {
        "id": load_id,
        "origin_city_state": "Phoenix, AZ",
        "dest_city_state": "Denver, CO",
        "pickup_window_start_iso": _iso(hours=20),
        "pickup_window_end_iso": _iso(hours=22),
        "delivery_window_start_iso": _iso(hours=60),
        "delivery_window_end_iso": _iso(hours=62),
        "carrier_name": "Desert Haul",
        "carrier_phone": "602-555-0110",
        "last_gps_minutes_ago": 4,
    }
    fields.update(overrides)
    return Load(**fields)


def test_red_sorts_before_yellow_and_green_is_excluded():
    evaluated = evaluate_all_loads(
        [
            _load("GREEN-1"),
            _load("YELLOW-1", last_gps_minutes_ago=90),
            _load("RED-1", last_gps_minutes_ago=None),
        ],
        NOW,
    )
    assert [load.id for load in needs_attention(evaluated)] == ["RED-1", "YELLOW-1"]


def test_higher_in_bucket_score_ranks_first():
    no_gps = _load("B-NO-GPS", last_gps_minutes_ago=None)
    late_delivery = _load(
        "A-DELIVERY-LATE",
        delivery_window_start_iso=_iso(hours=-6),
        delivery_window_end_iso=_iso(hours=-1),
    )
    ranked = needs_attention(evaluate_all_loads([late_delivery, no_gps], NOW))
    assert [load.id for load in ranked] == ["B-NO-GPS", "A-DELIVERY-LATE"]


def test_top_score_ignores_exceptions_from_other_status_bucket():
    # The yellow GPS_STALE watch (450) does not count toward a red load.
    red = evaluate_load(
        _load(
            "R",
            last_gps_minutes_ago=90,
            delivery_window_start_iso=_iso(hours=-5),
            delivery_window_end_iso=_iso(hours=-1),
        ),
        NOW,
    )
    assert top_score_within_status(red) == 900
    assert top_score_within_status(evaluate_load(_load("G"), NOW)) == -1


def test_equal_score_ties_break_on_soonest_deadline_then_id():
    soon = _load("Z-SOON", last_gps_minutes_ago=None, pickup_window_start_iso=_iso(hours=1))
    later = _load("A-LATER", last_gps_minutes_ago=None, pickup_window_start_iso=_iso(hours=5))
    same_a = _load("M-1", last_gps_minutes_ago=None, pickup_window_start_iso=_iso(hours=8))
    same_b = _load("M-0", last_gps_minutes_ago=None, pickup_window_start_iso=_iso(hours=8))

    ranked = needs_attention(evaluate_all_loads([later, same_a, soon, same_b], NOW))
    assert [load.id for load in ranked] == ["Z-SOON", "A-LATER", "M-0", "M-1"]


def test_relevant_deadline_follows_primary_exception():
    pickup_late = evaluate_load(
        _load("P", pickup_window_start_iso=_iso(hours=-3), pickup_window_end_iso=_iso(hours=-1)), NOW
    )
    assert relevant_deadline_ms(pickup_late) == parse_iso_ms(pickup_late.pickup_window_end_iso)

    delivery_soon = evaluate_load(_load("D", delivery_window_start_iso=_iso(hours=3)), NOW)
    assert relevant_deadline_ms(delivery_soon) == parse_iso_ms(delivery_soon.delivery_window_start_iso)

    gps = evaluate_load(_load("G", last_gps_minutes_ago=None, delivery_window_end_iso="garbage"), NOW)
    assert relevant_deadline_ms(gps) == parse_iso_ms(gps.pickup_window_start_iso)


def test_missing_deadline_sorts_last():
    no_windows = _load(
        "A-NONE",
        last_gps_minutes_ago=None,
        pickup_window_start_iso=None,
        pickup_window_end_iso=None,
        delivery_window_start_iso=None,
        delivery_window_end_iso=None,
    )
    with_window = _load("B-WINDOW", last_gps_minutes_ago=None)
    evaluated = evaluate_all_loads([no_windows, with_window], NOW)

    assert math.isinf(relevant_deadline_ms(evaluated[0]))
    assert [load.id for load in sort_needs_attention(evaluated)] == ["B-WINDOW", "A-NONE"]


def test_status_counts():
    evaluated = evaluate_all_loads(
        [
            _load("1", last_gps_minutes_ago=None),
            _load("2", last_gps_minutes_ago=200),
            _load("3", last_gps_minutes_ago=61),
            _load("4"),
        ],
        NOW,
    )
    counts = status_counts(evaluated)
    assert (counts.red, counts.yellow) == (2, 1)


def test_search_matches_id_lane_and_carrier_case_insensitively():
    load = evaluate_load(_load("LD-4411"), NOW)
    assert matches_search(load, "ld-44")
    assert matches_search(load, "denver")
    assert matches_search(load, "DESERT")
    assert matches_search(load, "  ")
    assert not matches_search(load, "seattle")


def test_upcoming_loads_orders_by_pickup_start():
    evaluated = evaluate_all_loads(
        [
            _load("LATE-PICKUP", pickup_window_start_iso=_iso(hours=30)),
            _load("EARLY-PICKUP", pickup_window_start_iso=_iso(hours=6)),
            _load(
                "FAR-OUT",
                pickup_window_start_iso=_iso(hours=72),
                delivery_window_start_iso=_iso(hours=96),
            ),
        ],
        NOW,
    )
    assert [load.id for load in upcoming_loads(evaluated, NOW)] == ["EARLY-PICKUP", "LATE-PICKUP"]


def test_todays_loads_uses_the_local_calendar_day():
    # 15:00 UTC is 10:00 in UTC-5; local "today" ends at 05:00 UTC the next morning.
    central = timezone(timedelta(hours=-5))
    evaluated = evaluate_all_loads(
        [
            _load("AFTER-LOCAL-MIDNIGHT", pickup_window_start_iso=_iso(hours=14, minutes=30)),
            _load("LATE-EVENING", pickup_window_start_iso=_iso(hours=13)),
            _load("DELIVERS-TODAY", pickup_window_start_iso=_iso(hours=-40), delivery_window_start_iso=_iso(hours=3)),
            _load("NO-WINDOWS", pickup_window_start_iso=None, delivery_window_start_iso=None),
        ],
        NOW,
    )

    assert [load.id for load in todays_loads(evaluated, NOW, central)] == ["DELIVERS-TODAY", "LATE-EVENING"]
    # In UTC the 04:00 and 05:30 pickups are already tomorrow.
    assert [load.id for load in todays_loads(evaluated, NOW)] == ["DELIVERS-TODAY"]


def test_resolve_timezone_falls_back_to_utc():
    assert resolve_timezone("UTC") is timezone.utc
    assert resolve_timezone("") is timezone.utc
    assert resolve_timezone("Not/AZone") is timezone.utc

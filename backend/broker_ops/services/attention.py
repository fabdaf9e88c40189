"""Ranking and list views over evaluated loads."""
from __future__ import annotations

import math
from datetime import datetime, timezone, tzinfo
from typing import Iterable, List

from broker_ops.core.timeutil import parse_iso_ms, same_local_day, within_next_hours
from broker_ops.models.loads import EvaluatedLoad, ExceptionCode, LoadStatus, StatusCounts
from broker_ops.services.evaluator import sort_exceptions

STATUS_RANK = {LoadStatus.RED: 0, LoadStatus.YELLOW: 1, LoadStatus.GREEN: 2}

ATTENTION_STATUSES = {LoadStatus.RED, LoadStatus.YELLOW}


def top_score_within_status(load: EvaluatedLoad) -> int:
    """Highest score among exceptions whose own status matches the load's computed status."""
    if load.computed_status not in ATTENTION_STATUSES:
        return -1
    best = -1
    for exc in load.exceptions:
        if exc.status == load.computed_status and exc.score > best:
            best = exc.score
    return best


def relevant_deadline_ms(load: EvaluatedLoad) -> float:
    """The window instant that matters for the load's primary exception; +inf when unknown."""
    ordered = sort_exceptions(load.exceptions)
    if not ordered:
        return math.inf

    code = ordered[0].code
    if code == ExceptionCode.PICKUP_LATE:
        return parse_iso_ms(load.pickup_window_end_iso)
    if code == ExceptionCode.PICKUP_WINDOW_SOON:
        return parse_iso_ms(load.pickup_window_start_iso)
    if code == ExceptionCode.DELIVERY_LATE:
        return parse_iso_ms(load.delivery_window_end_iso)
    if code == ExceptionCode.DELIVERY_WINDOW_SOON:
        return parse_iso_ms(load.delivery_window_start_iso)
    if code in (ExceptionCode.NO_GPS, ExceptionCode.GPS_STALE):
        # GPS problems: the soonest operational event matters most.
        return min(
            parse_iso_ms(load.pickup_window_start_iso),
            parse_iso_ms(load.pickup_window_end_iso),
            parse_iso_ms(load.delivery_window_start_iso),
            parse_iso_ms(load.delivery_window_end_iso),
        )
    return math.inf


def sort_needs_attention(loads: Iterable[EvaluatedLoad]) -> List[EvaluatedLoad]:
    """Red before yellow, then top in-bucket score desc, then soonest deadline, then id."""
    return sorted(
        loads,
        key=lambda load: (
            STATUS_RANK.get(load.computed_status, 2),
            -top_score_within_status(load),
            relevant_deadline_ms(load),
            load.id,
        ),
    )


def needs_attention(loads: Iterable[EvaluatedLoad]) -> List[EvaluatedLoad]:
    return sort_needs_attention(load for load in loads if load.computed_status in ATTENTION_STATUSES)


def status_counts(loads: Iterable[EvaluatedLoad]) -> StatusCounts:
    counts = StatusCounts()
    for load in loads:
        if load.computed_status == LoadStatus.RED:
            counts.red += 1
        elif load.computed_status == LoadStatus.YELLOW:
            counts.yellow += 1
    return counts


def matches_search(load: EvaluatedLoad, query: str) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    haystack = " ".join([load.id, load.origin_city_state, load.dest_city_state, load.carrier_name]).lower()
    return needle in haystack


def upcoming_loads(loads: Iterable[EvaluatedLoad], now: datetime, hours: float = 48) -> List[EvaluatedLoad]:
    """Loads whose pickup or delivery window starts within the next `hours`, by pickup start."""
    upcoming = [
        load
        for load in loads
        if within_next_hours(load.pickup_window_start_iso, hours, now)
        or within_next_hours(load.delivery_window_start_iso, hours, now)
    ]
    return sorted(upcoming, key=lambda load: parse_iso_ms(load.pickup_window_start_iso))


def todays_loads(loads: Iterable[EvaluatedLoad], now: datetime, tz: tzinfo = timezone.utc) -> List[EvaluatedLoad]:
    """Loads whose pickup or delivery window starts on today's date in `tz`, by pickup start."""
    today = [
        load
        for load in loads
        if same_local_day(load.pickup_window_start_iso, now, tz)
        or same_local_day(load.delivery_window_start_iso, now, tz)
    ]
    return sorted(today, key=lambda load: parse_iso_ms(load.pickup_window_start_iso))

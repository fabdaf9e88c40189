"""Tests for load normalization and the file/HTTP load feeds."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from broker_ops.core.config import Settings
from broker_ops.models.loads import ExceptionCode, LoadStatus
from broker_ops.services.evaluator import evaluate_load
from broker_ops.services.load_provider import (
    HttpLoadProvider,
    JsonFileLoadProvider,
    LoadProviderError,
    build_load_provider,
    normalize_load,
    normalize_loads,
)

CAMEL_RECORD = {
    "id": "L-1001",
    "originCityState": "Dallas, TX",
    "destCityState": "Atlanta, GA",
    "pickupWindowStartISO": "2026-10-19T16:00:00.000Z",
    "pickupWindowEndISO": "2026-10-19T18:00:00.000Z",
    "deliveryWindowStartISO": "2026-10-20T14:00:00.000Z",
    "deliveryWindowEndISO": "2026-10-20T16:00:00.000Z",
    "carrierName": "Lone Star Freight",
    "carrierPhone": "(214) 555-0101",
    "lastGpsMinutesAgo": 12,
    "status": "yellow",
}


def test_normalize_camel_case_record():
    load = normalize_load(CAMEL_RECORD)
    assert load.id == "L-1001"
    assert load.pickup_window_end_iso == "2026-10-19T18:00:00.000Z"
    assert load.last_gps_minutes_ago == 12
    assert load.status == LoadStatus.YELLOW


def test_normalize_nested_record_and_numeric_id():
    load = normalize_load(
        {
            "loadNumber": 5521,
            "origin": {"cityState": "Tulsa, OK"},
            "destination": "Wichita, KS",
            "carrier": {"name": "Prairie Lines", "phone": "918-555-0142"},
            "contacts": {"dispatch": {"email": "dispatch@prairie.example"}},
            "driver": {"phone": "918-555-0199"},
            "pickup": {"windowStart": "2026-10-19T16:00:00Z", "address": "1 Depot Rd, Tulsa, OK"},
            "tracking": {"lastGpsMinutesAgo": 0},
        }
    )
    assert load.id == "5521"
    assert load.origin_city_state == "Tulsa, OK"
    assert load.dest_city_state == "Wichita, KS"
    assert load.carrier_name == "Prairie Lines"
    assert load.dispatch_email == "dispatch@prairie.example"
    assert load.driver_phone == "918-555-0199"
    assert load.pickup_address == "1 Depot Rd, Tulsa, OK"
    assert load.last_gps_minutes_ago == 0


def test_missing_gps_stays_none_and_unknown_status_is_dropped():
    load = normalize_load({"id": "L-2", "status": "on fire"})
    assert load.last_gps_minutes_ago is None
    assert load.status == LoadStatus.GREEN


def test_bad_records_are_skipped_not_fatal():
    loads = normalize_loads([CAMEL_RECORD, {"originCityState": "no id"}, "junk", {"id": ["L-3"]}])
    assert [load.id for load in loads] == ["L-1001"]


def test_numeric_phone_and_fractional_gps_are_coerced():
    loads = normalize_loads(
        [
            {"id": "L-9", "carrierPhone": 5035550100, "lastGpsMinutesAgo": None},
            {"id": "L-10", "lastGpsMinutesAgo": 90.5},
            {"id": "L-11", "driverPhone": 5035550199.0, "lastGpsMinutesAgo": "42"},
        ]
    )
    assert [load.id for load in loads] == ["L-9", "L-10", "L-11"]
    assert loads[0].carrier_phone == "5035550100"
    assert loads[0].last_gps_minutes_ago is None
    assert loads[1].last_gps_minutes_ago == 90
    assert loads[2].driver_phone == "5035550199"
    assert loads[2].last_gps_minutes_ago == 42


def test_unusable_fields_are_dropped_not_the_load():
    loads = normalize_loads(
        [
            {"id": "L-3", "lastGpsMinutesAgo": -5},
            {"id": "L-4", "carrierPhone": ["503", "555"], "driverEmail": True, "lastGpsMinutesAgo": "soon"},
        ]
    )
    assert [load.id for load in loads] == ["L-3", "L-4"]
    assert loads[0].last_gps_minutes_ago is None
    assert loads[1].carrier_phone == ""
    assert loads[1].driver_email is None
    assert loads[1].last_gps_minutes_ago is None


def test_coerced_record_still_evaluates_red_for_missing_gps():
    load = normalize_load({"id": "L-9", "carrierPhone": 5035550100, "lastGpsMinutesAgo": None})
    evaluated = evaluate_load(load, datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc))
    assert evaluated.computed_status == LoadStatus.RED
    assert evaluated.exceptions[0].code == ExceptionCode.NO_GPS


def test_file_provider_reads_array_and_wrapped_payloads(tmp_path):
    path = tmp_path / "loads.json"
    path.write_text(json.dumps([CAMEL_RECORD]), encoding="utf-8")
    assert [load.id for load in JsonFileLoadProvider(path).fetch()] == ["L-1001"]

    path.write_text(json.dumps({"loads": [CAMEL_RECORD]}), encoding="utf-8")
    assert [load.id for load in JsonFileLoadProvider(path).fetch()] == ["L-1001"]


def test_file_provider_missing_file_is_empty(tmp_path):
    assert JsonFileLoadProvider(tmp_path / "absent.json").fetch() == []


def test_file_provider_raises_on_corrupt_feed(tmp_path):
    path = tmp_path / "loads.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(LoadProviderError):
        JsonFileLoadProvider(path).fetch()

    path.write_text('{"rows": []}', encoding="utf-8")
    with pytest.raises(LoadProviderError):
        JsonFileLoadProvider(path).fetch()


def test_http_provider_fetches_and_normalizes():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/loads"
        return httpx.Response(200, json={"loads": [CAMEL_RECORD]})

    provider = HttpLoadProvider("https://tms.example/loads", transport=httpx.MockTransport(handler))
    assert [load.carrier_name for load in provider.fetch()] == ["Lone Star Freight"]


def test_http_provider_wraps_upstream_errors():
    provider = HttpLoadProvider(
        "https://tms.example/loads",
        transport=httpx.MockTransport(lambda request: httpx.Response(503, text="maintenance")),
    )
    with pytest.raises(LoadProviderError):
        provider.fetch()


def test_build_load_provider_prefers_url():
    assert isinstance(build_load_provider(Settings(loads_url="https://tms.example/loads")), HttpLoadProvider)
    assert isinstance(build_load_provider(Settings(loads_url="", loads_path="x.json")), JsonFileLoadProvider)

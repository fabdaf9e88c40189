"""API tests for the dashboard routes."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from broker_ops.core.config import Settings
from broker_ops.core.timeutil import to_iso
from broker_ops.main import app
from broker_ops.models.loads import Load
from broker_ops.services.dashboard import DashboardEngine, get_dashboard_engine
from broker_ops.services.kv_store import InMemoryKeyValueStore
from broker_ops.services.load_provider import LoadProviderError, StaticLoadProvider

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


def _load(load_id: str, **overrides) -> Load:
    fields = {
        "id": load_id,
        "origin_city_state": "Memphis, TN",
        "dest_city_state": "Chicago, IL",
        "pickup_window_start_iso": to_iso(NOW + timedelta(hours=6)),
        "pickup_window_end_iso": to_iso(NOW + timedelta(hours=8)),
        "carrier_name": "River City Carriers",
        "carrier_phone": "901-555-0199",
        "last_gps_minutes_ago": 3,
    }
    fields.update(overrides)
    return Load(**fields)


@pytest.fixture
def provider():
    return StaticLoadProvider(
        [
            _load("L-GREEN"),
            _load("L-RED", last_gps_minutes_ago=None),
            _load("L-LATE", pickup_window_start_iso=to_iso(NOW - timedelta(hours=3)),
                  pickup_window_end_iso=to_iso(NOW - timedelta(hours=1)), carrier_name="Delta Drayage"),
        ]
    )


@pytest.fixture
def engine(provider):
    return DashboardEngine(
        provider,
        InMemoryKeyValueStore(),
        settings=Settings(state_db_path=":memory:", tick_interval_seconds=0),
        clock=lambda: NOW,
    )


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_dashboard_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health_and_root(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["endpoints"]["dashboard"] == "/dashboard"


def test_tick_uses_wire_names(client):
    response = client.get("/dashboard/tick")
    assert response.status_code == 200
    payload = response.json()

    assert payload["generatedAtISO"] == "2026-10-19T15:00:00.000Z"
    assert payload["counts"] == {"red": 2, "yellow": 0}
    assert [load["id"] for load in payload["needsAttention"]] == ["L-RED", "L-LATE"]
    first = payload["needsAttention"][0]
    assert first["computedStatus"] == "red"
    assert first["exceptions"][0]["code"] == "NO_GPS"
    assert {action["ruleId"] for action in payload["actions"]} == {"NO_GPS_CALL", "PICKUP_STATUS_CALL"}


def test_attention_search(client):
    response = client.get("/dashboard/attention", params={"q": "delta"})
    assert [load["id"] for load in response.json()] == ["L-LATE"]


def test_action_lifecycle_endpoints(client):
    open_actions = client.get("/dashboard/actions").json()
    assert [a["id"] for a in open_actions] == ["L-RED__NO_GPS_CALL", "L-LATE__PICKUP_STATUS_CALL"]
    assert open_actions[0]["dueAtISO"] is None
    assert open_actions[1]["dueAtISO"] == to_iso(NOW - timedelta(hours=1))

    done = client.post("/dashboard/actions/L-RED__NO_GPS_CALL/done").json()
    assert {a["id"]: a["status"] for a in done}["L-RED__NO_GPS_CALL"] == "DONE"
    assert [a["id"] for a in client.get("/dashboard/actions").json()] == ["L-LATE__PICKUP_STATUS_CALL"]
    assert [a["id"] for a in client.get("/dashboard/actions", params={"status": "done"}).json()] == [
        "L-RED__NO_GPS_CALL"
    ]

    snoozed = client.post("/dashboard/actions/L-LATE__PICKUP_STATUS_CALL/snooze").json()
    assert {a["id"]: a["status"] for a in snoozed}["L-LATE__PICKUP_STATUS_CALL"] == "SNOOZED"

    reopened = client.post("/dashboard/actions/L-RED__NO_GPS_CALL/reopen").json()
    assert {a["id"]: a["status"] for a in reopened}["L-RED__NO_GPS_CALL"] == "OPEN"
    assert len(client.get("/dashboard/actions", params={"status": "ALL"}).json()) == 2


def test_actions_rejects_unknown_status(client):
    assert client.get("/dashboard/actions", params={"status": "LATER"}).status_code == 400


def test_notifications_feed_and_read_state(client, provider):
    client.post("/dashboard/tick")
    provider.replace([_load("L-GREEN", last_gps_minutes_ago=90)])
    client.post("/dashboard/tick")

    feed = client.get("/dashboard/notifications").json()
    assert feed["unread"] == 1
    item = feed["items"][0]
    assert item["loadId"] == "L-GREEN"
    assert item["exceptionCode"] == "GPS_STALE"
    assert item["acked"] is False

    assert client.post(f"/dashboard/notifications/{item['id']}/read").json() == {"unread": 0}
    assert client.get("/dashboard/notifications").json()["items"][0]["acked"] is True
    assert client.post("/dashboard/notifications/read-all").json() == {"unread": 0}


def test_contact_logging_and_lookup(client):
    created = client.post(
        "/dashboard/contacts",
        json={"loadId": "L-RED", "actionId": "L-RED__NO_GPS_CALL", "href": "tel:9015550199"},
    )
    assert created.status_code == 200
    assert created.json()["method"] == "CALL"
    assert created.json()["atISO"] == "2026-10-19T15:00:00.000Z"

    contacts = client.get("/dashboard/loads/L-RED/contacts").json()
    assert contacts["links"]["call"] == "tel:9015550199"
    assert contacts["links"]["email"] is None
    assert [e["actionId"] for e in contacts["entries"]] == ["L-RED__NO_GPS_CALL"]


def test_contact_requires_a_method(client):
    response = client.post("/dashboard/contacts", json={"loadId": "L-RED", "href": "https://example.com"})
    assert response.status_code == 400


def test_unknown_load_contacts_is_404(client):
    assert client.get("/dashboard/loads/NOPE/contacts").status_code == 404


def test_feed_failure_maps_to_502(client, provider, monkeypatch):
    def broken_fetch():
        raise LoadProviderError("feed down")

    monkeypatch.setattr(provider, "fetch", broken_fetch)
    response = client.post("/dashboard/tick")
    assert response.status_code == 502
    assert "feed down" in response.json()["detail"]


def test_get_tick_reads_latest_and_post_reevaluates(client, provider):
    first = client.get("/dashboard/tick").json()
    provider.replace([_load("L-GREEN", last_gps_minutes_ago=None)])

    again = client.get("/dashboard/tick").json()
    assert again == first
    assert client.get("/dashboard/notifications").json()["unread"] == 0

    fresh = client.post("/dashboard/tick")
    assert fresh.status_code == 200
    assert [load["id"] for load in fresh.json()["loads"]] == ["L-GREEN"]
    assert client.get("/dashboard/notifications").json()["unread"] == 1
    assert client.get("/dashboard/tick").json() == fresh.json()

"""Integration tests for the event HTTP API.

Requests go through the full aiohttp application (middleware, routes, store,
expansion engine) served in-process.
"""

import threading
from datetime import UTC, datetime

import pytest
from aiohttp.test_utils import TestClient, TestServer

from dayplanner_lite.api.server import make_app, store_key
from dayplanner_lite.calendar.models import MasterEvent
from dayplanner_lite.core.config_manager import PlannerSettings
from dayplanner_lite.domain import expansion
from dayplanner_lite.middleware import get_request_id

pytestmark = pytest.mark.integration

FROZEN_NOW = datetime(2024, 1, 3, 0, 0, tzinfo=UTC)


@pytest.fixture
async def client(store):
    settings = PlannerSettings(default_timezone="UTC", max_window_days=31)
    app = make_app(settings, store, time_provider=lambda: FROZEN_NOW)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


async def create_event(client, **overrides):
    body = {
        "title": "Standup",
        "startsAt": "2024-01-01T09:00:00Z",
        "endsAt": "2024-01-01T10:00:00Z",
        "tz": "UTC",
    }
    body.update(overrides)
    resp = await client.post("/events", json=body)
    assert resp.status == 200, await resp.text()
    data = await resp.json()
    assert data["ok"] is True
    return data["event"]


async def test_health(client):
    resp = await client.get("/health")

    assert resp.status == 200
    data = await resp.json()
    assert data["ok"] is True
    assert data["events"] == 0
    assert data["server_time_iso"] == "2024-01-03T00:00:00.000Z"
    assert "X-Request-ID" in resp.headers


async def test_daily_series_is_expanded(client):
    event = await create_event(client, rrule="FREQ=DAILY")

    resp = await client.get(
        "/events", params={"start": "2024-01-03T00:00:00Z", "end": "2024-01-05T09:00:00Z"}
    )

    assert resp.status == 200
    items = await resp.json()
    assert [item["startsAt"] for item in items] == [
        "2024-01-03T09:00:00.000Z",
        "2024-01-04T09:00:00.000Z",
        "2024-01-05T09:00:00.000Z",
    ]
    assert all(item["parentId"] == event["id"] for item in items)
    assert all(item["isRecurrence"] is True for item in items)
    assert items[0]["id"] == f"{event['id']}_1704272400000"
    assert "X-Expansion-Degraded" not in resp.headers


async def test_default_window_starts_now(client):
    await create_event(client, rrule="FREQ=DAILY")

    resp = await client.get("/events")

    items = await resp.json()
    # now = 2024-01-03T00:00Z, default window of 7 days
    assert items[0]["startsAt"] == "2024-01-03T09:00:00.000Z"
    assert len(items) == 7


async def test_skip_exception_hides_and_restores_occurrence(client):
    event = await create_event(client, rrule="FREQ=DAILY")
    window = {"start": "2024-01-03T00:00:00Z", "end": "2024-01-05T09:00:00Z"}

    resp = await client.post(
        f"/events/{event['id']}/exceptions", json={"occurrence": "2024-01-04T09:00:30Z"}
    )
    assert resp.status == 200
    assert (await resp.json())["exception"]["skipped"] is True

    items = await (await client.get("/events", params=window)).json()
    assert [item["startsAt"][:10] for item in items] == ["2024-01-03", "2024-01-05"]

    resp = await client.post(
        f"/events/{event['id']}/exceptions",
        json={"occurrence": "2024-01-04T09:00:30Z", "skipped": False},
    )
    assert resp.status == 200
    items = await (await client.get("/events", params=window)).json()
    assert len(items) == 3

    listed = await (await client.get(f"/events/{event['id']}/exceptions")).json()
    assert len(listed["exceptions"]) == 1

    resp = await client.delete(
        f"/events/{event['id']}/exceptions", params={"occurrence": "2024-01-04T09:00:30Z"}
    )
    assert (await resp.json())["removed"] is True


async def test_non_recurring_event_outside_window(client):
    await create_event(client, startsAt="2024-02-01T09:00:00Z", endsAt="2024-02-01T10:00:00Z")

    resp = await client.get(
        "/events", params={"start": "2024-01-03T00:00:00Z", "end": "2024-01-05T00:00:00Z"}
    )

    assert await resp.json() == []


@pytest.mark.parametrize(
    "params",
    [
        {"start": "garbage"},
        {"start": "2024-01-05T00:00:00Z", "end": "2024-01-03T00:00:00Z"},
        {"start": "2024-01-01T00:00:00Z", "end": "2024-06-01T00:00:00Z"},
        {"start": "0001-01-01T00:00:00+14:00"},
        {"start": "9999-12-31T00:00:00Z", "end": "9999-12-31T23:59:59-12:00"},
    ],
)
async def test_bad_windows_are_client_errors(client, params):
    resp = await client.get("/events", params=params)

    assert resp.status == 400
    assert "error" in await resp.json()


@pytest.mark.parametrize(
    "params",
    [
        {"start": "0001-01-01T00:00:00+05:00"},
        {"start": "9999-12-31T00:00:00Z"},
        {"start": "9999-12-30T00:00:00Z", "end": "9999-12-31T23:00:00-05:00"},
    ],
)
@pytest.mark.parametrize("path", ["/events", "/reminders"])
async def test_instants_beyond_the_datetime_range_are_client_errors(client, path, params):
    resp = await client.get(path, params=params)

    assert resp.status == 400
    assert await resp.json() == {"error": "Invalid start or end date"}


async def test_create_with_unrepresentable_instant_is_validation_error(client):
    resp = await client.post(
        "/events",
        json={"title": "x", "startsAt": "0001-01-01T00:00:00+05:00", "endsAt": "2024-01-01T10:00:00Z"},
    )

    assert resp.status == 400
    assert (await resp.json())["error"] == "Validation error"


async def test_never_matching_rule_is_rejected_on_create(client):
    resp = await client.post(
        "/events",
        json={
            "title": "x",
            "startsAt": "2024-01-01T09:00:00Z",
            "endsAt": "2024-01-01T10:00:00Z",
            "rrule": "FREQ=DAILY;BYMONTH=2;BYMONTHDAY=30",
        },
    )

    assert resp.status == 400
    assert "never falls in BYMONTH" in await resp.text()


async def test_failed_events_are_listed_in_header(client, monkeypatch):
    good = await create_event(client, rrule="FREQ=DAILY")
    bad = await create_event(client, title="Broken", rrule="FREQ=DAILY")
    real_expand_event = expansion.expand_event

    def flaky_expand_event(master, *args, **kwargs):
        if master.id == bad["id"]:
            raise RuntimeError("boom")
        return real_expand_event(master, *args, **kwargs)

    monkeypatch.setattr(expansion, "expand_event", flaky_expand_event)

    resp = await client.get(
        "/events", params={"start": "2024-01-03T00:00:00Z", "end": "2024-01-03T23:00:00Z"}
    )

    assert resp.status == 200
    assert resp.headers["X-Expansion-Failed"] == bad["id"]
    assert [item["parentId"] for item in await resp.json()] == [good["id"]]


async def test_create_validation_error(client):
    resp = await client.post(
        "/events",
        json={"title": "x", "startsAt": "2024-01-01T09:00:00Z", "endsAt": "2024-01-01T10:00:00Z", "rrule": "FREQ=NEVER"},
    )

    assert resp.status == 400
    data = await resp.json()
    assert data["error"] == "Validation error"
    assert data["details"]


async def test_create_rejects_invalid_json(client):
    resp = await client.post("/events", data="{nope", headers={"Content-Type": "application/json"})

    assert resp.status == 400


async def test_patch_get_and_delete(client):
    event = await create_event(client)

    resp = await client.patch(f"/events/{event['id']}", json={"title": "Retro"})
    assert resp.status == 200
    assert (await resp.json())["event"]["title"] == "Retro"

    fetched = await (await client.get(f"/events/{event['id']}")).json()
    assert fetched["event"]["title"] == "Retro"

    resp = await client.patch(f"/events/{event['id']}", json={"endsAt": "2023-01-01T00:00:00Z"})
    assert resp.status == 400

    resp = await client.delete(f"/events/{event['id']}")
    assert await resp.json() == {"ok": True}

    for method in ("get", "delete"):
        resp = await getattr(client, method)(f"/events/{event['id']}")
        assert resp.status == 404
    resp = await client.patch(f"/events/{event['id']}", json={"title": "x"})
    assert resp.status == 404


async def test_unparseable_stored_rule_is_degraded(client):
    # Bypass request validation to simulate legacy data in the store
    store = client.server.app[store_key]
    event = await create_event(client, startsAt="2024-01-04T09:00:00Z", endsAt="2024-01-04T10:00:00Z")
    with store._lock:
        store._events[event["id"]] = MasterEvent.model_validate(
            {**store._events[event["id"]].model_dump(), "rrule": "FREQ=DAILY;BOGUS=1"}
        )

    resp = await client.get(
        "/events", params={"start": "2024-01-03T00:00:00Z", "end": "2024-01-05T00:00:00Z"}
    )

    assert resp.status == 200
    assert resp.headers["X-Expansion-Degraded"] == event["id"]
    [item] = await resp.json()
    assert item["degraded"] is True
    assert item["id"] == event["id"]


async def test_reminder_schedule(client):
    await create_event(
        client,
        rrule="FREQ=DAILY;COUNT=4",
        reminders=[{"minutesBefore": 30, "channel": "TELEGRAM"}],
    )

    resp = await client.get(
        "/reminders", params={"start": "2024-01-01T00:00:00Z", "end": "2024-01-10T00:00:00Z"}
    )

    data = await resp.json()
    # Jan 1 and Jan 2 firings are before the frozen now (Jan 3 00:00Z)
    assert [r["fireAt"] for r in data["reminders"]] == [
        "2024-01-03T08:30:00.000Z",
        "2024-01-04T08:30:00.000Z",
    ]
    assert data["reminders"][0]["channel"] == "TELEGRAM"


async def test_expansion_runs_off_the_event_loop_thread(client, monkeypatch):
    await create_event(client, rrule="FREQ=DAILY")
    real_expand_event = expansion.expand_event
    seen = []

    def recording_expand_event(master, *args, **kwargs):
        seen.append((threading.get_ident(), get_request_id()))
        return real_expand_event(master, *args, **kwargs)

    monkeypatch.setattr(expansion, "expand_event", recording_expand_event)

    resp = await client.get(
        "/events",
        params={"start": "2024-01-03T00:00:00Z", "end": "2024-01-03T23:00:00Z"},
        headers={"X-Request-ID": "req-42"},
    )

    assert resp.status == 200
    assert seen == [(seen[0][0], "req-42")]
    assert seen[0][0] != threading.get_ident()

"""Tests for event models and request payload validation."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from dayplanner_lite.calendar.models import (
    EventCreate,
    EventException,
    EventUpdate,
    ExceptionCreate,
    MasterEvent,
)

pytestmark = pytest.mark.unit


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def test_master_event_normalizes_offsets_to_utc():
    event = MasterEvent(
        id="e",
        title="Call",
        starts_at="2024-01-01T12:00:00+03:00",
        ends_at="2024-01-01T13:00:00+03:00",
        tz="Europe/Moscow",
    )

    assert event.starts_at == utc(2024, 1, 1, 9)
    assert event.duration == timedelta(hours=1)


def test_master_event_rejects_end_before_start():
    with pytest.raises(ValidationError):
        MasterEvent(id="e", title="x", starts_at=utc(2024, 1, 2), ends_at=utc(2024, 1, 1))


def test_default_timezone_comes_from_environment(monkeypatch):
    monkeypatch.setenv("DAYPLANNER_DEFAULT_TIMEZONE", "Asia/Tokyo")

    event = MasterEvent(id="e", title="x", starts_at=utc(2024, 1, 1), ends_at=utc(2024, 1, 1))

    assert event.tz == "Asia/Tokyo"


def test_blank_rule_is_not_recurring():
    event = MasterEvent(
        id="e", title="x", starts_at=utc(2024, 1, 1), ends_at=utc(2024, 1, 1), rrule="  "
    )
    assert event.is_recurring is False


def test_master_api_dict_is_camel_case():
    event = MasterEvent(
        id="e",
        title="Trip",
        starts_at=utc(2024, 1, 1, 22),
        ends_at=utc(2024, 1, 2, 2),
        source_task_id="task-1",
        exceptions=[EventException(master_event_id="e", occurrence=utc(2024, 1, 8, 22))],
    )

    payload = event.to_api_dict()

    assert payload["startsAt"] == "2024-01-01T22:00:00.000Z"
    assert payload["sourceTaskId"] == "task-1"
    assert payload["isMultiDay"] is True
    assert payload["exceptions"] == [
        {"masterEventId": "e", "occurrence": "2024-01-08T22:00:00.000Z", "skipped": True}
    ]


def test_event_create_accepts_camel_case_payload():
    payload = EventCreate.model_validate(
        {
            "title": "Standup",
            "startsAt": "2024-01-01T09:00:00Z",
            "endsAt": "2024-01-01T09:15:00Z",
            "rrule": "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR",
            "tz": "UTC",
            "reminders": [{"minutesBefore": 5, "channel": "WEB"}],
        }
    )

    master = payload.to_master("abc")

    assert master.id == "abc"
    assert master.rrule == "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR"
    assert master.reminders[0].channel == "WEB"
    assert master.created_at is not None


@pytest.mark.parametrize(
    "overrides",
    [
        {"rrule": "FREQ=NEVER"},
        {"tz": "Mars/Olympus_Mons"},
        {"endsAt": "2023-12-31T09:00:00Z"},
        {"title": ""},
        {"unknownField": 1},
        {"reminders": [{"minutesBefore": -5}]},
        {"reminders": [{"minutesBefore": 5, "channel": "PIGEON"}]},
    ],
)
def test_event_create_rejects_invalid_payloads(overrides):
    body = {
        "title": "Standup",
        "startsAt": "2024-01-01T09:00:00Z",
        "endsAt": "2024-01-01T09:15:00Z",
        "tz": "UTC",
    }
    body.update(overrides)

    with pytest.raises(ValidationError):
        EventCreate.model_validate(body)


def test_event_create_blank_rule_becomes_none():
    payload = EventCreate.model_validate(
        {"title": "x", "startsAt": "2024-01-01T09:00:00Z", "endsAt": "2024-01-01T10:00:00Z", "rrule": ""}
    )
    assert payload.rrule is None


def test_event_update_changes_only_set_fields():
    master = MasterEvent(
        id="e",
        title="Old",
        location="Room 1",
        starts_at=utc(2024, 1, 1, 9),
        ends_at=utc(2024, 1, 1, 10),
        tz="UTC",
    )

    updated = EventUpdate.model_validate({"title": "New", "rrule": "FREQ=DAILY"}).apply_to(master)

    assert updated.title == "New"
    assert updated.rrule == "FREQ=DAILY"
    assert updated.location == "Room 1"
    assert updated.starts_at == master.starts_at
    assert updated.updated_at is not None
    assert master.title == "Old"


def test_event_update_can_clear_rule():
    master = MasterEvent(
        id="e", title="x", starts_at=utc(2024, 1, 1), ends_at=utc(2024, 1, 1), rrule="FREQ=DAILY"
    )

    updated = EventUpdate.model_validate({"rrule": None}).apply_to(master)

    assert updated.is_recurring is False


def test_event_update_revalidates_interval():
    master = MasterEvent(id="e", title="x", starts_at=utc(2024, 1, 1, 9), ends_at=utc(2024, 1, 1, 10))

    with pytest.raises(ValidationError):
        EventUpdate.model_validate({"endsAt": "2024-01-01T08:00:00Z"}).apply_to(master)


def test_exception_create_defaults_to_skip():
    payload = ExceptionCreate.model_validate({"occurrence": "2024-01-04T12:00:00+03:00"})

    assert payload.skipped is True
    assert payload.occurrence == utc(2024, 1, 4, 9)

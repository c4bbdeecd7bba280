"""Shared fixtures for dayplanner_lite tests."""

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from dayplanner_lite.calendar.models import EventException, MasterEvent, Reminder
from dayplanner_lite.core.config_manager import PlannerSettings
from dayplanner_lite.domain.event_store import EventStore


def pytest_configure(config: Any) -> None:
    """Register test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: HTTP-level tests")


def utc(*args: int) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear time and timezone overrides so host env never leaks into tests."""
    for name in ("DAYPLANNER_TEST_TIME", "DAYPLANNER_DEFAULT_TIMEZONE", "DAYPLANNER_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def settings() -> PlannerSettings:
    """Default settings with UTC as the fallback zone."""
    return PlannerSettings(default_timezone="UTC")


@pytest.fixture
def make_master() -> Callable[..., MasterEvent]:
    """Factory for master events; defaults to a one-hour UTC event on 2024-01-01 09:00."""

    def _make(
        event_id: str = "evt1",
        *,
        start: datetime | None = None,
        duration: timedelta = timedelta(hours=1),
        rrule: str | None = None,
        tz: str = "UTC",
        skipped: tuple[datetime, ...] = (),
        reminders: tuple[Reminder, ...] = (),
        title: str = "Standup",
    ) -> MasterEvent:
        starts_at = start or utc(2024, 1, 1, 9, 0)
        return MasterEvent(
            id=event_id,
            title=title,
            starts_at=starts_at,
            ends_at=starts_at + duration,
            rrule=rrule,
            tz=tz,
            exceptions=[
                EventException(master_event_id=event_id, occurrence=instant, skipped=True)
                for instant in skipped
            ],
            reminders=list(reminders),
        )

    return _make


@pytest.fixture
def store(tmp_path: Any) -> EventStore:
    """Empty event store backed by a temp file."""
    return EventStore(path=str(tmp_path / "events.json"))

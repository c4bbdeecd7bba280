"""Per-occurrence reminder scheduling.

Reminders are defined once on the master event and fire for every concrete
occurrence. Each scheduled reminder carries a dedupe key derived from the
occurrence identity, so a delivery pipeline can drop repeats when the same
window is scheduled more than once.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Optional

from ..calendar.models import OccurrenceInstance
from ..core.timezone_utils import serialize_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledReminder:
    """One reminder firing for one concrete occurrence."""

    dedupe_key: str
    occurrence_id: str
    event_id: str
    title: str
    fire_at: datetime.datetime
    occurrence_start: datetime.datetime
    minutes_before: int
    channel: str
    message: Optional[str] = None

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "dedupeKey": self.dedupe_key,
            "occurrenceId": self.occurrence_id,
            "eventId": self.event_id,
            "title": self.title,
            "fireAt": serialize_iso(self.fire_at),
            "occurrenceStart": serialize_iso(self.occurrence_start),
            "minutesBefore": self.minutes_before,
            "channel": self.channel,
            "message": self.message,
        }


def reminder_dedupe_key(occurrence_id: str, minutes_before: int, channel: str) -> str:
    """Stable key identifying one reminder of one occurrence on one channel."""
    return f"{occurrence_id}:{minutes_before}:{channel}"


def build_reminder_schedule(
    instances: Iterable[OccurrenceInstance],
    now: Optional[datetime.datetime] = None,
) -> list[ScheduledReminder]:
    """Expand reminder definitions of each instance's master into concrete firings.

    Args:
        instances: Materialized occurrences (recurring or not)
        now: When given, firings at or before ``now`` are dropped

    Returns:
        Reminders sorted by ``(fire_at, dedupe_key)``, unique by dedupe key
    """
    scheduled: dict[str, ScheduledReminder] = {}

    for instance in instances:
        for reminder in instance.master.reminders:
            fire_at = instance.starts_at - datetime.timedelta(minutes=reminder.minutes_before)
            if now is not None and fire_at <= now:
                continue
            channel = str(getattr(reminder.channel, "value", reminder.channel))
            key = reminder_dedupe_key(instance.occurrence_id, reminder.minutes_before, channel)
            if key in scheduled:
                continue
            scheduled[key] = ScheduledReminder(
                dedupe_key=key,
                occurrence_id=instance.occurrence_id,
                event_id=instance.source_event_id,
                title=instance.title,
                fire_at=fire_at,
                occurrence_start=instance.starts_at,
                minutes_before=reminder.minutes_before,
                channel=channel,
                message=reminder.message,
            )

    ordered = sorted(scheduled.values(), key=lambda item: (item.fire_at, item.dedupe_key))
    logger.debug("Scheduled %d reminder(s)", len(ordered))
    return ordered

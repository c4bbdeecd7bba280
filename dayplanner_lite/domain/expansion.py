"""Batch expansion of stored events into the ordered list served to callers.

For each master event: parse its rule once, materialize occurrence starts in
the window, drop skipped ones and assemble instances. Failures are isolated per
event and reported in the result instead of aborting the batch:

- unparseable rule -> single master instant marked ``degraded`` (``degraded_event_ids``)
- occurrence cap hit -> truncated output (``partial_event_ids``)
- anything unexpected -> event omitted (``failed_event_ids``)
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from ..calendar.exception_filter import filter_skipped
from ..calendar.models import MasterEvent, OccurrenceInstance
from ..calendar.occurrences import assemble_occurrences, passthrough_instance
from ..calendar.recurrence import in_window, materialize, validate_window
from ..calendar.rrule_parser import RuleParseFailure, parse_recurrence_rule
from ..core.config_manager import PlannerSettings

logger = logging.getLogger(__name__)


@dataclass
class EventExpansion:
    """Outcome of expanding a single master event."""

    event_id: str
    instances: list[OccurrenceInstance] = field(default_factory=list)
    degraded: bool = False
    partial: bool = False
    warning: Optional[str] = None


@dataclass
class ExpansionResult:
    """Merged outcome for a batch of master events over one window."""

    window_start: datetime.datetime
    window_end: datetime.datetime
    instances: list[OccurrenceInstance] = field(default_factory=list)
    degraded_event_ids: list[str] = field(default_factory=list)
    partial_event_ids: list[str] = field(default_factory=list)
    failed_event_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    # Statistics
    events_in: int = 0
    recurring_processed: int = 0

    @property
    def is_complete(self) -> bool:
        """True when no event degraded, truncated or failed."""
        return not (self.degraded_event_ids or self.partial_event_ids or self.failed_event_ids)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def to_api_list(self) -> list[dict[str, Any]]:
        """Flat JSON list of events and occurrences, in chronological order."""
        return [instance.to_api_dict() for instance in self.instances]


def expand_event(
    master: MasterEvent,
    window_start: datetime.datetime,
    window_end: datetime.datetime,
    settings: Optional[PlannerSettings] = None,
) -> EventExpansion:
    """Expand one master event over an already-validated window.

    Args:
        master: Event to expand, with its exceptions attached
        window_start: Inclusive lower bound (UTC)
        window_end: Inclusive upper bound (UTC)
        settings: Caps and tolerance; defaults when omitted

    Returns:
        EventExpansion with the event's instances and degradation flags
    """
    settings = settings or PlannerSettings()
    outcome = EventExpansion(event_id=master.id)

    if not master.is_recurring:
        if in_window(master.starts_at, window_start, window_end):
            outcome.instances.append(passthrough_instance(master))
        return outcome

    parsed = parse_recurrence_rule(master.rrule)
    if isinstance(parsed, RuleParseFailure):
        outcome.degraded = True
        outcome.warning = f"event {master.id}: unparseable rule {parsed.raw!r} ({parsed.reason})"
        logger.warning(
            "Invalid RRULE for event %s (%r): %s; falling back to the master instant",
            master.id,
            parsed.raw,
            parsed.reason,
        )
        if in_window(master.starts_at, window_start, window_end):
            outcome.instances.append(passthrough_instance(master, degraded=True))
        return outcome

    result = materialize(
        master,
        window_start,
        window_end,
        rule=parsed,
        max_occurrences=settings.max_occurrences,
        max_scanned=settings.max_scanned_occurrences,
        default_timezone=settings.default_timezone,
    )
    if result.truncated:
        outcome.partial = True
        outcome.warning = f"event {master.id}: occurrence cap reached, result truncated"
        logger.warning("Expansion of event %s truncated at occurrence cap", master.id)

    surviving = filter_skipped(
        result.starts,
        master.exceptions,
        settings.exception_tolerance_ms,
        master_event_id=master.id,
    )
    outcome.instances.extend(assemble_occurrences(master, surviving))
    return outcome


def expand_events(
    masters: Iterable[MasterEvent],
    window_start: datetime.datetime,
    window_end: datetime.datetime,
    settings: Optional[PlannerSettings] = None,
) -> ExpansionResult:
    """Expand a batch of master events and merge them into one ordered list.

    The window is validated once, before any rule evaluation. Output order is
    ``(starts_at, occurrence_id)``, so repeated calls with the same inputs give
    identical results.

    Raises:
        InvalidWindowError: If the window is inverted or longer than ``settings.max_window_days``
    """
    settings = settings or PlannerSettings()
    window_start, window_end = validate_window(window_start, window_end, settings.max_window_days)

    result = ExpansionResult(window_start=window_start, window_end=window_end)
    merged: list[OccurrenceInstance] = []

    for master in masters:
        result.events_in += 1
        try:
            outcome = expand_event(master, window_start, window_end, settings)
        except Exception:
            logger.exception("Expansion failed for event %s", master.id)
            result.failed_event_ids.append(master.id)
            result.add_warning(f"event {master.id}: expansion failed")
            continue

        if master.is_recurring and not outcome.degraded:
            result.recurring_processed += 1
        if outcome.degraded:
            result.degraded_event_ids.append(master.id)
        if outcome.partial:
            result.partial_event_ids.append(master.id)
        if outcome.warning:
            result.add_warning(outcome.warning)
        merged.extend(outcome.instances)

    merged.sort(key=lambda inst: (inst.starts_at, inst.occurrence_id))
    result.instances = merged

    logger.debug(
        "Expanded %d event(s) into %d instance(s) (recurring=%d, degraded=%d, partial=%d, failed=%d)",
        result.events_in,
        len(merged),
        result.recurring_processed,
        len(result.degraded_event_ids),
        len(result.partial_event_ids),
        len(result.failed_event_ids),
    )
    return result

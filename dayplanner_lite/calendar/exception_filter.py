"""Removal of skipped occurrences from materialized occurrence starts.

Stored exception instants and freshly recomputed rule instants can drift apart
by serialization precision, so matching is by proximity within a tolerance
rather than by exact equality.
"""

from __future__ import annotations

import bisect
import datetime
import logging
from collections.abc import Iterable, Sequence
from typing import Optional

from ..core.config_manager import DEFAULT_EXCEPTION_TOLERANCE_MS
from ..core.timezone_utils import ensure_utc
from .models import EventException

logger = logging.getLogger(__name__)


def skipped_instants(
    exceptions: Iterable[EventException], master_event_id: Optional[str] = None
) -> list[datetime.datetime]:
    """Return the sorted UTC instants of exceptions flagged ``skipped``.

    Non-skip exceptions are informational and never exclude an occurrence.
    When ``master_event_id`` is given, exceptions owned by other events are ignored.
    """
    instants = [
        ensure_utc(exc.occurrence)
        for exc in exceptions
        if exc.skipped and (master_event_id is None or exc.master_event_id == master_event_id)
    ]
    instants.sort()
    return instants


def is_skipped(
    start: datetime.datetime,
    skipped_sorted: Sequence[datetime.datetime],
    tolerance: datetime.timedelta,
) -> bool:
    """True when some skipped instant lies strictly within ``tolerance`` of ``start``.

    ``skipped_sorted`` must be ascending; only the neighbours around the
    insertion point need checking.
    """
    if not skipped_sorted:
        return False
    idx = bisect.bisect_left(skipped_sorted, start)
    for neighbour in skipped_sorted[max(idx - 1, 0) : idx + 1]:
        if abs(neighbour - start) < tolerance:
            return True
    return False


def filter_skipped(
    occurrence_starts: Sequence[datetime.datetime],
    exceptions: Iterable[EventException],
    tolerance_ms: int = DEFAULT_EXCEPTION_TOLERANCE_MS,
    *,
    master_event_id: Optional[str] = None,
) -> list[datetime.datetime]:
    """Drop occurrence starts matched by a skipped exception, preserving input order.

    Args:
        occurrence_starts: Raw occurrence start instants
        exceptions: Exceptions attached to the master event
        tolerance_ms: Match tolerance in milliseconds (strict ``<`` comparison)
        master_event_id: Restrict matching to exceptions of this event

    Returns:
        Surviving starts in their original order
    """
    skipped = skipped_instants(exceptions, master_event_id)
    if not skipped:
        return list(occurrence_starts)

    tolerance = datetime.timedelta(milliseconds=tolerance_ms)
    kept = [
        start for start in occurrence_starts if not is_skipped(ensure_utc(start), skipped, tolerance)
    ]

    removed = len(occurrence_starts) - len(kept)
    if removed:
        logger.debug(
            "Filtered %d skipped occurrence(s) for event %s", removed, master_event_id or "<any>"
        )
    return kept

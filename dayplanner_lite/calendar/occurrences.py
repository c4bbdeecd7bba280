"""Assembly of OccurrenceInstance values from surviving occurrence starts."""

from __future__ import annotations

import datetime
from collections.abc import Iterable

from ..core.timezone_utils import ensure_utc, to_epoch_ms
from .models import MasterEvent, OccurrenceInstance


def occurrence_id_for(master_id: str, start: datetime.datetime) -> str:
    """Deterministic identity of the occurrence of ``master_id`` starting at ``start``.

    The suffix after the last ``_`` is the integer epoch-millisecond start, so
    distinct ``(master_id, start)`` pairs never share an id and the same pair
    always maps to the same id.
    """
    return f"{master_id}_{to_epoch_ms(start)}"


def assemble_occurrences(
    master: MasterEvent, starts: Iterable[datetime.datetime]
) -> list[OccurrenceInstance]:
    """Build recurrence instances for ``starts``, each lasting exactly the master's duration."""
    duration = master.duration
    instances = []
    for start in starts:
        start = ensure_utc(start)
        instances.append(
            OccurrenceInstance(
                occurrence_id=occurrence_id_for(master.id, start),
                source_event_id=master.id,
                starts_at=start,
                ends_at=start + duration,
                is_recurrence=True,
                master=master,
            )
        )
    return instances


def passthrough_instance(master: MasterEvent, *, degraded: bool = False) -> OccurrenceInstance:
    """The master's own interval as its lone instance.

    Used for non-recurring events and, with ``degraded=True``, for the explicit
    fallback when a stored rule cannot be parsed.
    """
    return OccurrenceInstance(
        occurrence_id=master.id,
        source_event_id=master.id,
        starts_at=master.starts_at,
        ends_at=master.ends_at,
        is_recurrence=False,
        degraded=degraded,
        master=master,
    )

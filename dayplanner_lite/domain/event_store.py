"""JSON-backed planner store for dayplanner_lite with atomic writes.

On-disk format::

    {
      "events": {"<event id>": {...MasterEvent fields...}},
      "exceptions": {"<event id>": [{"masterEventId": ..., "occurrence": ..., "skipped": ...}]},
      "tasks": {"<task id>": {...Task fields...}},
      "reflections": {"<event id>": {...Reflection fields...}}
    }

Events handed out by the store carry their exceptions attached; the stored
records themselves are never mutated by callers.
"""

from __future__ import annotations

import contextlib
import datetime
import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..calendar.errors import EventNotFoundError, TaskNotFoundError
from ..calendar.models import EventCreate, EventException, EventUpdate, MasterEvent
from ..core.timezone_utils import ensure_utc
from .planning import (
    Reflection,
    ReflectionCreate,
    Task,
    TaskCreate,
    TaskSchedule,
    TaskStatus,
    TaskUpdate,
    event_for_task,
)

logger = logging.getLogger(__name__)


class EventStore:
    """Persistent store for master events, their exceptions, tasks and reflections."""

    def __init__(self, path: str | None = None) -> None:
        """Create an EventStore.

        Args:
            path: Optional path to JSON file. Defaults to ``events.json`` in the
                current working directory.
        """
        self._path = Path(path) if path else Path.cwd() / "events.json"

        self._lock = threading.Lock()
        self._events: dict[str, MasterEvent] = {}
        self._exceptions: dict[str, list[EventException]] = {}
        self._tasks: dict[str, Task] = {}
        self._reflections: dict[str, Reflection] = {}

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.debug("Could not ensure directory for event store: %s", self._path.parent)

        self.load()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load JSON from disk (if present), skipping malformed records.

        Idempotent; a missing or unreadable file yields an empty store.
        """
        with self._lock:
            self._events = {}
            self._exceptions = {}
            self._tasks = {}
            self._reflections = {}

            if not self._path.exists():
                logger.debug("Event store file not found; starting empty: %s", self._path)
                return

            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to read event store %s: %s", self._path, exc)
                return
            if not isinstance(data, dict):
                logger.warning("Event store %s root is not an object; starting empty", self._path)
                return

            for event_id, raw in (data.get("events") or {}).items():
                try:
                    event = MasterEvent.model_validate(raw)
                except ValidationError as exc:
                    logger.warning("Skipping malformed stored event %r: %s", event_id, exc)
                    continue
                self._events[event.id] = event.model_copy(update={"exceptions": []})

            for event_id, items in (data.get("exceptions") or {}).items():
                if event_id not in self._events or not isinstance(items, list):
                    continue
                parsed = []
                for item in items:
                    try:
                        parsed.append(EventException.model_validate(item))
                    except ValidationError as exc:
                        logger.warning("Skipping malformed exception for %r: %s", event_id, exc)
                if parsed:
                    self._exceptions[event_id] = parsed

            for task_id, raw in (data.get("tasks") or {}).items():
                try:
                    task = Task.model_validate(raw)
                except ValidationError as exc:
                    logger.warning("Skipping malformed stored task %r: %s", task_id, exc)
                    continue
                self._tasks[task.id] = task

            for event_id, raw in (data.get("reflections") or {}).items():
                if event_id not in self._events:
                    continue
                try:
                    self._reflections[event_id] = Reflection.model_validate(raw)
                except ValidationError as exc:
                    logger.warning("Skipping malformed reflection for %r: %s", event_id, exc)

            logger.debug(
                "Loaded event store %s (%d events, %d with exceptions, %d tasks, %d reflections)",
                self._path,
                len(self._events),
                len(self._exceptions),
                len(self._tasks),
                len(self._reflections),
            )

    def _persist(self) -> None:
        """Persist the in-memory store atomically. Called with the lock held."""
        data: dict[str, Any] = {
            "events": {
                event_id: event.model_dump(mode="json", by_alias=True, exclude={"exceptions"})
                for event_id, event in self._events.items()
            },
            "exceptions": {
                event_id: [exc.model_dump(mode="json", by_alias=True) for exc in items]
                for event_id, items in self._exceptions.items()
                if items
            },
            "tasks": {
                task_id: task.model_dump(mode="json", by_alias=True)
                for task_id, task in self._tasks.items()
            },
            "reflections": {
                event_id: reflection.model_dump(mode="json", by_alias=True)
                for event_id, reflection in self._reflections.items()
            },
        }

        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False, indent=2)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            tmp_path.replace(self._path)
        except OSError:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise

    def _attach(self, event: MasterEvent) -> MasterEvent:
        return event.model_copy(update={"exceptions": list(self._exceptions.get(event.id, []))})

    def _require(self, event_id: str) -> MasterEvent:
        event = self._events.get(event_id)
        if event is None:
            raise EventNotFoundError(f"event {event_id!r} not found")
        return event

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"task {task_id!r} not found")
        return task

    def add_event(self, payload: EventCreate) -> MasterEvent:
        """Create and persist a new event from a validated payload.

        Raises:
            TaskNotFoundError: If ``source_task_id`` names an unknown task
        """
        with self._lock:
            if payload.source_task_id is not None:
                self._require_task(payload.source_task_id)
            event = payload.to_master(uuid.uuid4().hex)
            self._events[event.id] = event
            try:
                self._persist()
            except OSError:
                self._events.pop(event.id, None)
                logger.warning("Failed to persist new event %s", event.id)
                raise
            logger.info("Created event %s (%r, rrule=%r)", event.id, event.title, event.rrule)
            return self._attach(event)

    def get_event(self, event_id: str) -> MasterEvent:
        """Return an event with its exceptions attached.

        Raises:
            EventNotFoundError: If no event has ``event_id``
        """
        with self._lock:
            return self._attach(self._require(event_id))

    def update_event(self, event_id: str, update: EventUpdate) -> MasterEvent:
        """Apply a partial update and persist.

        Raises:
            EventNotFoundError: If no event has ``event_id``
            TaskNotFoundError: If the update links the event to an unknown task
            pydantic.ValidationError: If the merged event is invalid (e.g. end before start)
        """
        with self._lock:
            previous = self._require(event_id)
            if update.source_task_id is not None:
                self._require_task(update.source_task_id)
            updated = update.apply_to(previous)
            self._events[event_id] = updated
            try:
                self._persist()
            except OSError:
                self._events[event_id] = previous
                raise
            logger.info("Updated event %s", event_id)
            return self._attach(updated)

    def delete_event(self, event_id: str) -> None:
        """Delete an event with its exceptions and reflection.

        Raises:
            EventNotFoundError: If no event has ``event_id``
        """
        with self._lock:
            previous = self._require(event_id)
            previous_exceptions = self._exceptions.pop(event_id, None)
            previous_reflection = self._reflections.pop(event_id, None)
            del self._events[event_id]
            try:
                self._persist()
            except OSError:
                self._events[event_id] = previous
                if previous_exceptions is not None:
                    self._exceptions[event_id] = previous_exceptions
                if previous_reflection is not None:
                    self._reflections[event_id] = previous_reflection
                raise
            logger.info("Deleted event %s", event_id)

    def list_events(self) -> list[MasterEvent]:
        """All events ordered by start, exceptions attached."""
        with self._lock:
            events = [self._attach(event) for event in self._events.values()]
        events.sort(key=lambda ev: (ev.starts_at, ev.id))
        return events

    def list_events_for_window(
        self, window_start: datetime.datetime, window_end: datetime.datetime
    ) -> list[MasterEvent]:
        """Events relevant to a query window, exceptions attached.

        Returns every event whose stored interval overlaps the window, plus
        every recurring event regardless of its stored interval, since a rule
        can produce occurrences far from the template instant.
        """
        start = ensure_utc(window_start)
        end = ensure_utc(window_end)
        with self._lock:
            events = [
                self._attach(event)
                for event in self._events.values()
                if event.is_recurring or (event.starts_at <= end and event.ends_at >= start)
            ]
        events.sort(key=lambda ev: (ev.starts_at, ev.id))
        return events

    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def set_exception(
        self, event_id: str, occurrence: datetime.datetime, skipped: bool = True
    ) -> EventException:
        """Create or update the exception targeting ``occurrence`` of an event.

        Exceptions are keyed by their exact occurrence instant; setting one
        again replaces its ``skipped`` flag.

        Raises:
            EventNotFoundError: If no event has ``event_id``
        """
        occurrence = ensure_utc(occurrence)
        with self._lock:
            self._require(event_id)
            previous = list(self._exceptions.get(event_id, []))
            exception = EventException(
                master_event_id=event_id, occurrence=occurrence, skipped=skipped
            )
            items = [exc for exc in previous if exc.occurrence != occurrence]
            items.append(exception)
            items.sort(key=lambda exc: exc.occurrence)
            self._exceptions[event_id] = items
            try:
                self._persist()
            except OSError:
                self._exceptions[event_id] = previous
                raise
            logger.info(
                "Set exception for event %s at %s (skipped=%s)",
                event_id,
                occurrence.isoformat(),
                skipped,
            )
            return exception

    def list_exceptions(self, event_id: str) -> list[EventException]:
        """Exceptions of an event ordered by occurrence instant.

        Raises:
            EventNotFoundError: If no event has ``event_id``
        """
        with self._lock:
            self._require(event_id)
            return list(self._exceptions.get(event_id, []))

    def clear_exception(self, event_id: str, occurrence: datetime.datetime) -> bool:
        """Remove the exception at exactly ``occurrence``; returns True if one was removed.

        Raises:
            EventNotFoundError: If no event has ``event_id``
        """
        occurrence = ensure_utc(occurrence)
        with self._lock:
            self._require(event_id)
            previous = list(self._exceptions.get(event_id, []))
            remaining = [exc for exc in previous if exc.occurrence != occurrence]
            if len(remaining) == len(previous):
                return False
            self._exceptions[event_id] = remaining
            try:
                self._persist()
            except OSError:
                self._exceptions[event_id] = previous
                raise
            logger.info("Cleared exception for event %s at %s", event_id, occurrence.isoformat())
            return True

    # Tasks

    def _check_parent(self, task_id: str | None, parent_id: str | None) -> None:
        """Reject unknown parents and parent chains that would loop back to ``task_id``."""
        if parent_id is None:
            return
        seen: set[str] = set()
        ancestor: str | None = parent_id
        while ancestor is not None and ancestor not in seen:
            if ancestor == task_id:
                raise ValueError(f"task {task_id!r} cannot be its own ancestor")
            seen.add(ancestor)
            ancestor = self._require_task(ancestor).parent_id

    def add_task(self, payload: TaskCreate) -> Task:
        """Create and persist a new task.

        Raises:
            TaskNotFoundError: If ``parent_id`` names an unknown task
        """
        with self._lock:
            self._check_parent(None, payload.parent_id)
            task = payload.to_task(uuid.uuid4().hex)
            self._tasks[task.id] = task
            try:
                self._persist()
            except OSError:
                self._tasks.pop(task.id, None)
                raise
            logger.info("Created task %s (%r, priority=%d)", task.id, task.title, task.priority)
            return task

    def get_task(self, task_id: str) -> Task:
        """Raises TaskNotFoundError if no task has ``task_id``."""
        with self._lock:
            return self._require_task(task_id)

    def list_tasks(
        self, status: TaskStatus | str | None = None, priority: int | None = None
    ) -> list[Task]:
        """Tasks ordered by priority (most urgent first), newest first within a priority."""
        wanted_status = TaskStatus(status).value if status is not None else None
        with self._lock:
            tasks = [
                task
                for task in self._tasks.values()
                if (wanted_status is None or task.status == wanted_status)
                and (priority is None or task.priority == priority)
            ]
        tasks.sort(key=lambda task: (task.created_at, task.id), reverse=True)
        tasks.sort(key=lambda task: task.priority)
        return tasks

    def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """Apply a partial update and persist.

        Raises:
            TaskNotFoundError: If the task or the new parent does not exist
            ValueError: If the new parent would create a cycle
        """
        with self._lock:
            previous = self._require_task(task_id)
            if update.parent_id is not None:
                self._check_parent(task_id, update.parent_id)
            updated = update.apply_to(previous)
            self._tasks[task_id] = updated
            try:
                self._persist()
            except OSError:
                self._tasks[task_id] = previous
                raise
            logger.info("Updated task %s (status=%s)", task_id, updated.status)
            return updated

    def delete_task(self, task_id: str) -> None:
        """Delete a task; its subtasks become top-level and linked events are unlinked.

        Raises:
            TaskNotFoundError: If no task has ``task_id``
        """
        with self._lock:
            previous_tasks = dict(self._tasks)
            previous_events = dict(self._events)
            self._require_task(task_id)
            del self._tasks[task_id]
            for child_id, child in previous_tasks.items():
                if child.parent_id == task_id:
                    self._tasks[child_id] = child.model_copy(update={"parent_id": None})
            for event_id, event in previous_events.items():
                if event.source_task_id == task_id:
                    self._events[event_id] = event.model_copy(update={"source_task_id": None})
            try:
                self._persist()
            except OSError:
                self._tasks = previous_tasks
                self._events = previous_events
                raise
            logger.info("Deleted task %s", task_id)

    def list_events_for_task(self, task_id: str) -> list[MasterEvent]:
        """Events scheduled from a task, ordered by start.

        Raises:
            TaskNotFoundError: If no task has ``task_id``
        """
        with self._lock:
            self._require_task(task_id)
            events = [
                self._attach(event)
                for event in self._events.values()
                if event.source_task_id == task_id
            ]
        events.sort(key=lambda ev: (ev.starts_at, ev.id))
        return events

    def schedule_task(self, task_id: str, schedule: TaskSchedule) -> tuple[MasterEvent, Task]:
        """Put a task on the calendar as a one-off event linked back to it.

        The task moves to ``SCHEDULED`` unless ``schedule.keep_task_open`` is set.
        Both changes are persisted in one write.

        Raises:
            TaskNotFoundError: If no task has ``task_id``
        """
        with self._lock:
            task = self._require_task(task_id)
            event = event_for_task(task, schedule).to_master(uuid.uuid4().hex)
            updated = task
            if not schedule.keep_task_open:
                updated = TaskUpdate(status=TaskStatus.SCHEDULED).apply_to(task)

            self._events[event.id] = event
            self._tasks[task_id] = updated
            try:
                self._persist()
            except OSError:
                self._events.pop(event.id, None)
                self._tasks[task_id] = task
                raise
            logger.info(
                "Scheduled task %s as event %s at %s for %d minute(s)",
                task_id,
                event.id,
                event.starts_at.isoformat(),
                schedule.duration,
            )
            return self._attach(event), updated

    # Reflections

    def set_reflection(self, event_id: str, payload: ReflectionCreate) -> Reflection:
        """Create or replace the reflection of an event.

        Raises:
            EventNotFoundError: If no event has ``event_id``
        """
        with self._lock:
            self._require(event_id)
            previous = self._reflections.get(event_id)
            reflection = payload.to_reflection(event_id, previous)
            self._reflections[event_id] = reflection
            try:
                self._persist()
            except OSError:
                if previous is None:
                    self._reflections.pop(event_id, None)
                else:
                    self._reflections[event_id] = previous
                raise
            logger.info("Saved reflection for event %s (mood=%d)", event_id, reflection.mood)
            return reflection

    def get_reflection(self, event_id: str) -> Reflection | None:
        """Reflection of an event, or None when none was recorded.

        Raises:
            EventNotFoundError: If no event has ``event_id``
        """
        with self._lock:
            self._require(event_id)
            return self._reflections.get(event_id)

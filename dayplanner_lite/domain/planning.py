"""Tasks and event reflections.

Tasks are the backlog side of the planner: a task can be scheduled onto the
calendar, which creates a one-off event linked back through ``source_task_id``.
Reflections record how a finished event actually went; each event has at most
one.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..calendar.models import EventCreate, Reminder, ReminderChannel
from ..core.timezone_utils import ensure_utc, now_utc, serialize_iso

_API_MODEL_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    use_enum_values=True,
)

_REQUEST_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

# Longest block a task can be scheduled as (one week)
MAX_SCHEDULE_MINUTES = 7 * 24 * 60


class TaskStatus(str, Enum):
    """Lifecycle of a task."""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    SCHEDULED = "SCHEDULED"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class Task(BaseModel):
    """Stored backlog item."""

    id: str = Field(..., description="Task ID")
    title: str = Field(..., description="Task title")
    description: Optional[str] = Field(default=None, description="Task description")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Lifecycle status")
    priority: int = Field(default=3, ge=0, le=5, description="0 is most urgent")
    parent_id: Optional[str] = Field(default=None, description="Parent task for subtasks")
    tags: list[str] = Field(default_factory=list, description="Free-form tags")
    due_date: Optional[datetime] = Field(default=None, description="Deadline")
    estimated_minutes: Optional[int] = Field(default=None, gt=0, description="Effort estimate")

    created_at: datetime = Field(default_factory=now_utc, description="Creation time")
    updated_at: Optional[datetime] = Field(default=None, description="Last modification time")

    model_config = _API_MODEL_CONFIG

    @field_validator("due_date", "created_at", "updated_at")
    @classmethod
    def _normalize_instant(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @field_serializer("due_date", "created_at", "updated_at", when_used="json-unless-none")
    def serialize_instant(self, dt: datetime) -> Optional[str]:
        return serialize_iso(dt)

    def to_api_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TaskCreate(BaseModel):
    """Validated payload for ``POST /tasks``."""

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: int = Field(default=3, ge=0, le=5)
    parent_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    estimated_minutes: Optional[int] = Field(default=None, gt=0)

    model_config = _REQUEST_CONFIG

    @field_validator("due_date")
    @classmethod
    def _normalize_due(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def to_task(self, task_id: str) -> Task:
        stamp = now_utc()
        return Task(id=task_id, created_at=stamp, updated_at=stamp, **self.model_dump())


class TaskUpdate(BaseModel):
    """Partial payload for ``PATCH /tasks/{id}``; unset fields stay unchanged."""

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[int] = Field(default=None, ge=0, le=5)
    parent_id: Optional[str] = None
    tags: Optional[list[str]] = None
    due_date: Optional[datetime] = None
    estimated_minutes: Optional[int] = Field(default=None, gt=0)

    model_config = _REQUEST_CONFIG

    @field_validator("due_date")
    @classmethod
    def _normalize_due(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def apply_to(self, task: Task) -> Task:
        """Return a re-validated copy of ``task`` with the explicitly set fields replaced."""
        merged = task.model_dump()
        merged.update(self.model_dump(exclude_unset=True))
        merged["updated_at"] = now_utc()
        return Task.model_validate(merged)


class TaskSchedule(BaseModel):
    """Payload for ``POST /tasks/{id}/schedule``."""

    starts_at: datetime
    duration: int = Field(
        default=60, gt=0, le=MAX_SCHEDULE_MINUTES, description="Event length in minutes"
    )
    keep_task_open: bool = Field(default=False, description="Leave the task status unchanged")

    model_config = _REQUEST_CONFIG

    @field_validator("starts_at")
    @classmethod
    def _normalize_start(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_end(self) -> "TaskSchedule":
        latest = datetime.max.replace(tzinfo=self.starts_at.tzinfo)
        if self.starts_at > latest - timedelta(minutes=self.duration):
            raise ValueError("scheduled block ends past the supported date range")
        return self

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration)


def reminder_minutes_for(duration_minutes: int) -> int:
    """Lead time of the reminder put on a scheduled task: shorter blocks get later nudges."""
    if duration_minutes <= 30:
        return 3
    if duration_minutes <= 60:
        return 5
    return 15


def event_for_task(task: Task, schedule: TaskSchedule) -> EventCreate:
    """Build the one-off event that puts ``task`` on the calendar."""
    return EventCreate(
        title=task.title,
        description=task.description,
        starts_at=schedule.starts_at,
        ends_at=schedule.ends_at,
        tags=list(task.tags),
        source_task_id=task.id,
        reminders=[
            Reminder(
                minutes_before=reminder_minutes_for(schedule.duration),
                channel=ReminderChannel.TELEGRAM,
            )
        ],
    )


class Reflection(BaseModel):
    """How an event actually went, recorded after the fact."""

    event_id: str = Field(..., description="Event the reflection belongs to")
    focus_pct: int = Field(..., ge=0, le=100, description="Share of the slot spent focused")
    goal_pct: int = Field(..., ge=0, le=100, description="Share of the goal achieved")
    mood: int = Field(..., ge=1, le=10, description="Mood score")
    note: Optional[str] = Field(default=None, description="Free-form note")
    actual_starts_at: Optional[datetime] = Field(default=None, description="Actual start")
    actual_ends_at: Optional[datetime] = Field(default=None, description="Actual end")
    was_completed: bool = Field(default=True)
    was_on_time: bool = Field(default=True)

    created_at: datetime = Field(default_factory=now_utc)
    updated_at: Optional[datetime] = None

    model_config = _API_MODEL_CONFIG

    @field_validator("actual_starts_at", "actual_ends_at", "created_at", "updated_at")
    @classmethod
    def _normalize_instant(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @field_serializer(
        "actual_starts_at", "actual_ends_at", "created_at", "updated_at", when_used="json-unless-none"
    )
    def serialize_instant(self, dt: datetime) -> Optional[str]:
        return serialize_iso(dt)

    def to_api_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ReflectionCreate(BaseModel):
    """Payload for ``POST /events/{id}/reflection``."""

    focus_pct: int = Field(..., ge=0, le=100)
    goal_pct: int = Field(..., ge=0, le=100)
    mood: int = Field(..., ge=1, le=10)
    note: Optional[str] = None
    actual_starts_at: Optional[datetime] = None
    actual_ends_at: Optional[datetime] = None
    was_completed: bool = True
    was_on_time: bool = True

    model_config = _REQUEST_CONFIG

    @field_validator("actual_starts_at", "actual_ends_at")
    @classmethod
    def _normalize_instant(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_actual_interval(self) -> "ReflectionCreate":
        if (
            self.actual_starts_at is not None
            and self.actual_ends_at is not None
            and self.actual_ends_at < self.actual_starts_at
        ):
            raise ValueError("actualEndsAt must not be before actualStartsAt")
        return self

    def to_reflection(self, event_id: str, previous: Optional[Reflection] = None) -> Reflection:
        """Build the stored reflection, keeping the creation time of one being replaced."""
        stamp = now_utc()
        return Reflection(
            event_id=event_id,
            created_at=previous.created_at if previous is not None else stamp,
            updated_at=stamp,
            **self.model_dump(),
        )

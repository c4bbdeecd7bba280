"""Data models for events, exceptions and materialized occurrences."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..core.timezone_utils import (
    ensure_utc,
    get_default_timezone,
    is_valid_timezone,
    now_utc,
    serialize_iso,
)
from .rrule_parser import RuleParseFailure, parse_recurrence_rule

# Shared config: snake_case in Python, camelCase on the wire
_API_MODEL_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    use_enum_values=True,
)


class ReminderChannel(str, Enum):
    """Delivery channels for event reminders."""

    TELEGRAM = "TELEGRAM"
    WEB = "WEB"
    DESKTOP = "DESKTOP"
    EMAIL = "EMAIL"


class Reminder(BaseModel):
    """Reminder attached to an event, fired ``minutes_before`` each occurrence."""

    minutes_before: int = Field(..., ge=0, description="Minutes before occurrence start")
    channel: ReminderChannel = Field(default=ReminderChannel.TELEGRAM, description="Channel")
    message: Optional[str] = Field(default=None, description="Custom reminder text")

    model_config = _API_MODEL_CONFIG


class EventException(BaseModel):
    """Per-occurrence override of a recurring event (skip/cancel only)."""

    master_event_id: str = Field(..., description="ID of the owning master event")
    occurrence: datetime = Field(..., description="Unmodified rule instant the override targets")
    skipped: bool = Field(default=True, description="When true the occurrence is not materialized")

    model_config = _API_MODEL_CONFIG

    @field_validator("occurrence")
    @classmethod
    def _normalize_occurrence(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_serializer("occurrence", when_used="json")
    def serialize_occurrence(self, dt: datetime) -> Optional[str]:
        """Serialize to ISO-8601 UTC."""
        return serialize_iso(dt)


class MasterEvent(BaseModel):
    """Stored calendar entry, possibly carrying a recurrence rule."""

    # Core properties
    id: str = Field(..., description="Event ID")
    title: str = Field(..., description="Event title")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    color: Optional[str] = Field(default=None, description="Display color")
    tags: list[str] = Field(default_factory=list, description="Free-form tags")

    # Time information (UTC-normalized)
    starts_at: datetime = Field(..., description="Template occurrence start")
    ends_at: datetime = Field(..., description="Template occurrence end")
    all_day: bool = Field(default=False, description="All-day event flag")

    # Recurrence
    rrule: Optional[str] = Field(default=None, description="RFC-5545 style RRULE text")
    tz: str = Field(
        default_factory=get_default_timezone,
        description="Civil timezone the rule's local-time fields resolve against",
    )
    exceptions: list[EventException] = Field(
        default_factory=list, description="Per-occurrence overrides"
    )

    # Links and reminders
    source_task_id: Optional[str] = Field(default=None, description="Task this event schedules")
    reminders: list[Reminder] = Field(default_factory=list, description="Reminder definitions")

    # Metadata
    created_at: Optional[datetime] = Field(default=None, description="Creation time")
    updated_at: Optional[datetime] = Field(default=None, description="Last modification time")

    model_config = _API_MODEL_CONFIG

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _normalize_instant(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_interval(self) -> "MasterEvent":
        if self.ends_at < self.starts_at:
            raise ValueError("endsAt must not be before startsAt")
        return self

    @property
    def duration(self) -> timedelta:
        """Template duration, applied unchanged to every occurrence."""
        return self.ends_at - self.starts_at

    @property
    def is_recurring(self) -> bool:
        """True when the event carries a (non-blank) recurrence rule."""
        return bool(self.rrule and self.rrule.strip())

    @property
    def is_multi_day(self) -> bool:
        """True when the template interval spans more than one UTC calendar day."""
        return self.starts_at.date() != self.ends_at.date()

    @field_serializer("starts_at", "ends_at", when_used="json")
    def serialize_interval(self, dt: datetime) -> Optional[str]:
        """Serialize interval bounds to ISO-8601 UTC."""
        return serialize_iso(dt)

    @field_serializer("created_at", "updated_at", when_used="json-unless-none")
    def serialize_metadata(self, dt: datetime) -> Optional[str]:
        """Serialize metadata timestamps to ISO-8601 UTC."""
        return serialize_iso(dt)

    def to_api_dict(self) -> dict[str, Any]:
        """Return the camelCase JSON representation used by the HTTP API."""
        payload = self.model_dump(mode="json", by_alias=True)
        payload["isMultiDay"] = self.is_multi_day
        return payload


class OccurrenceInstance(BaseModel):
    """One concrete materialization of a master event (never persisted)."""

    occurrence_id: str = Field(..., description="Deterministic per-occurrence identity")
    source_event_id: str = Field(..., description="ID of the master event")
    starts_at: datetime = Field(..., description="Concrete occurrence start")
    ends_at: datetime = Field(..., description="Concrete occurrence end")
    is_recurrence: bool = Field(default=True, description="False only for non-recurring masters")
    degraded: bool = Field(
        default=False, description="True when produced by the unparseable-rule fallback"
    )
    master: MasterEvent = Field(..., description="Master event (shared, not copied)")

    model_config = ConfigDict(frozen=True)

    @property
    def title(self) -> str:
        """Title of the master event."""
        return self.master.title

    @property
    def duration(self) -> timedelta:
        """Length of this occurrence (always the master duration)."""
        return self.ends_at - self.starts_at

    def to_api_dict(self) -> dict[str, Any]:
        """Flatten into the event-shaped JSON item returned by ``GET /events``.

        Display fields come from the master; identity and timing are the
        occurrence's own. Recurrences carry ``parentId`` pointing at the master.
        """
        payload = self.master.to_api_dict()
        payload["id"] = self.occurrence_id
        payload["startsAt"] = serialize_iso(self.starts_at)
        payload["endsAt"] = serialize_iso(self.ends_at)
        payload["isMultiDay"] = self.starts_at.date() != self.ends_at.date()
        payload["isRecurrence"] = self.is_recurrence
        if self.is_recurrence:
            payload["parentId"] = self.source_event_id
        if self.degraded:
            payload["degraded"] = True
        return payload


# Request schemas for the HTTP API


def _check_rule_text(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    parsed = parse_recurrence_rule(value)
    if isinstance(parsed, RuleParseFailure):
        raise ValueError(f"invalid rrule: {parsed.reason}")
    return value.strip()


def _check_timezone(value: str) -> str:
    if not is_valid_timezone(value):
        raise ValueError(f"unknown timezone {value!r}")
    return value


class EventCreate(BaseModel):
    """Validated payload for ``POST /events``."""

    title: str = Field(..., min_length=1)
    starts_at: datetime
    ends_at: datetime
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    color: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    rrule: Optional[str] = None
    tz: str = Field(default_factory=get_default_timezone)
    source_task_id: Optional[str] = None
    reminders: list[Reminder] = Field(default_factory=list)

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _normalize_instants(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("rrule")
    @classmethod
    def _validate_rrule(cls, value: Optional[str]) -> Optional[str]:
        return _check_rule_text(value)

    @field_validator("tz")
    @classmethod
    def _validate_tz(cls, value: str) -> str:
        return _check_timezone(value)

    @model_validator(mode="after")
    def _check_interval(self) -> "EventCreate":
        if self.ends_at < self.starts_at:
            raise ValueError("endsAt must not be before startsAt")
        return self

    def to_master(self, event_id: str) -> MasterEvent:
        """Build the stored master event for this payload."""
        stamp = now_utc()
        return MasterEvent(
            id=event_id,
            created_at=stamp,
            updated_at=stamp,
            **self.model_dump(),
        )


class EventUpdate(BaseModel):
    """Validated partial payload for ``PATCH /events/{id}``; unset fields stay unchanged."""

    title: Optional[str] = Field(default=None, min_length=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    all_day: Optional[bool] = None
    description: Optional[str] = None
    location: Optional[str] = None
    color: Optional[str] = None
    tags: Optional[list[str]] = None
    rrule: Optional[str] = None
    tz: Optional[str] = None
    source_task_id: Optional[str] = None
    reminders: Optional[list[Reminder]] = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _normalize_instants(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @field_validator("rrule")
    @classmethod
    def _validate_rrule(cls, value: Optional[str]) -> Optional[str]:
        return _check_rule_text(value)

    @field_validator("tz")
    @classmethod
    def _validate_tz(cls, value: Optional[str]) -> Optional[str]:
        return _check_timezone(value) if value is not None else None

    def apply_to(self, master: MasterEvent) -> MasterEvent:
        """Return a re-validated copy of ``master`` with the explicitly set fields replaced."""
        changes = self.model_dump(exclude_unset=True)
        merged = master.model_dump()
        merged.update(changes)
        merged["updated_at"] = now_utc()
        return MasterEvent.model_validate(merged)


class ExceptionCreate(BaseModel):
    """Payload for ``POST /events/{id}/exceptions``."""

    occurrence: datetime
    skipped: bool = True

    model_config = ConfigDict(extra="forbid")

    @field_validator("occurrence")
    @classmethod
    def _normalize_occurrence(cls, value: datetime) -> datetime:
        return ensure_utc(value)

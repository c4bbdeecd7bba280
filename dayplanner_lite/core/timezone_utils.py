"""Timezone resolution and instant normalization utilities for dayplanner_lite."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache
from typing import ClassVar

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

# Default civil zone for events that do not carry one
DEFAULT_TIMEZONE = "Europe/Moscow"


class TimezoneAliases:
    """Maps obsolete or shorthand zone names to canonical IANA identifiers."""

    TZ_ALIAS_MAP: ClassVar[dict[str, str]] = {
        "US/Pacific": "America/Los_Angeles",
        "US/Mountain": "America/Denver",
        "US/Central": "America/Chicago",
        "US/Eastern": "America/New_York",
        "US/Alaska": "America/Anchorage",
        "US/Hawaii": "Pacific/Honolulu",
        "UTC": "UTC",
        "GMT": "UTC",
        "Etc/UTC": "UTC",
        "Etc/GMT": "UTC",
        "Universal": "UTC",
        "Zulu": "UTC",
        "Europe/Kiev": "Europe/Kyiv",
        "Asia/Rangoon": "Asia/Yangon",
    }


class TimeProvider:
    """Provides current time with test time override support."""

    ENV_VAR = "DAYPLANNER_TEST_TIME"

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via the DAYPLANNER_TEST_TIME environment
        variable (ISO 8601, e.g. "2024-01-03T08:00:00+03:00"). Naive values are
        taken as UTC.
        """
        test_time = os.environ.get(self.ENV_VAR)
        if test_time:
            try:
                dt = date_parser.isoparse(test_time)
                if dt.tzinfo is not None:
                    return dt.astimezone(datetime.UTC)
                return dt.replace(tzinfo=datetime.UTC)
            except ValueError as e:
                logger.warning("Failed to parse %s=%r: %s", self.ENV_VAR, test_time, e)

        return datetime.datetime.now(datetime.UTC)


_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (honors DAYPLANNER_TEST_TIME)."""
    return _time_provider.now_utc()


def resolve_timezone_alias(tz_name: str) -> str:
    """Resolve timezone alias to canonical IANA timezone identifier.

    Examples:
        >>> resolve_timezone_alias("US/Pacific")
        'America/Los_Angeles'
        >>> resolve_timezone_alias("GMT")
        'UTC'
    """
    return TimezoneAliases.TZ_ALIAS_MAP.get(tz_name, tz_name)


def is_valid_timezone(tz_name: str | None) -> bool:
    """Return True when ``tz_name`` (or its alias) names a known IANA zone."""
    if not tz_name or not isinstance(tz_name, str):
        return False
    try:
        zoneinfo.ZoneInfo(resolve_timezone_alias(tz_name))
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        return False
    return True


def get_default_timezone(fallback: str = DEFAULT_TIMEZONE) -> str:
    """Get default timezone from environment with validation.

    Checks DAYPLANNER_DEFAULT_TIMEZONE first and falls back to ``fallback``
    when it is missing or not a valid IANA zone.
    """
    timezone = os.environ.get("DAYPLANNER_DEFAULT_TIMEZONE", fallback)
    if is_valid_timezone(timezone):
        return resolve_timezone_alias(timezone)

    logger.warning("Invalid timezone %r, falling back to %r", timezone, fallback)
    return fallback


@lru_cache(maxsize=64)
def resolve_zone(tz_name: str | None, fallback: str = DEFAULT_TIMEZONE) -> zoneinfo.ZoneInfo:
    """Return a ZoneInfo for ``tz_name``, falling back to ``fallback`` when invalid.

    Stored events may carry zone names that were valid when written but are no
    longer known to the host tz database; those resolve to the fallback with a
    warning instead of failing the read path.
    """
    if is_valid_timezone(tz_name):
        return zoneinfo.ZoneInfo(resolve_timezone_alias(tz_name))  # type: ignore[arg-type]

    logger.warning("Unknown timezone %r, using %r", tz_name, fallback)
    return zoneinfo.ZoneInfo(fallback)


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    """Normalize a datetime to an aware UTC datetime (naive values are taken as UTC).

    Raises:
        ValueError: If the instant falls outside the representable UTC range
            (e.g. ``0001-01-01T00:00:00+05:00``)
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.UTC)
    try:
        return dt.astimezone(datetime.UTC)
    except OverflowError:
        raise ValueError(f"{dt.isoformat()} is outside the representable UTC range") from None


def parse_iso_instant(value: str) -> datetime.datetime:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts ``Z`` or numeric offsets, and date-only values (midnight UTC).

    Raises:
        ValueError: If ``value`` is not a valid ISO-8601 instant
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("empty datetime value")
    return ensure_utc(date_parser.isoparse(value.strip()))


def serialize_iso(dt: datetime.datetime | None) -> str | None:
    """Serialize an instant to ISO-8601 UTC with a trailing ``Z`` and millisecond precision."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_epoch_ms(dt: datetime.datetime) -> int:
    """Return the integer millisecond epoch timestamp of an instant."""
    delta = ensure_utc(dt) - datetime.datetime(1970, 1, 1, tzinfo=datetime.UTC)
    return delta // datetime.timedelta(milliseconds=1)

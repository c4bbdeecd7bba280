"""Recurrence materialization: rule + window -> concrete occurrence start instants.

Rules are evaluated in the master event's civil timezone. The master start is
converted to local wall time, python-dateutil walks the rule in wall time, and
each local occurrence is converted back to an absolute UTC instant. A rule such
as "every day at 09:00" in Europe/Berlin therefore stays at 09:00 local across
DST changes.
"""

from __future__ import annotations

import datetime
import logging
import zoneinfo
from dataclasses import dataclass
from typing import Optional

from dateutil import rrule as du_rrule

from ..core.config_manager import DEFAULT_MAX_OCCURRENCES, DEFAULT_MAX_SCANNED_OCCURRENCES
from ..core.timezone_utils import DEFAULT_TIMEZONE, ensure_utc, resolve_zone
from .errors import InvalidWindowError, UnparseableRuleError
from .models import MasterEvent
from .rrule_parser import (
    Frequency,
    RecurrenceRule,
    RuleParseFailure,
    WeekdaySpec,
    parse_recurrence_rule,
)

logger = logging.getLogger(__name__)

_DATEUTIL_FREQ = {
    Frequency.YEARLY: du_rrule.YEARLY,
    Frequency.MONTHLY: du_rrule.MONTHLY,
    Frequency.WEEKLY: du_rrule.WEEKLY,
    Frequency.DAILY: du_rrule.DAILY,
    Frequency.HOURLY: du_rrule.HOURLY,
    Frequency.MINUTELY: du_rrule.MINUTELY,
    Frequency.SECONDLY: du_rrule.SECONDLY,
}

_DATEUTIL_WEEKDAYS = (
    du_rrule.MO,
    du_rrule.TU,
    du_rrule.WE,
    du_rrule.TH,
    du_rrule.FR,
    du_rrule.SA,
    du_rrule.SU,
)

# Fixed-length periods that allow jumping the rule start toward the window
_FIXED_PERIODS = {
    Frequency.WEEKLY: datetime.timedelta(weeks=1),
    Frequency.DAILY: datetime.timedelta(days=1),
    Frequency.HOURLY: datetime.timedelta(hours=1),
    Frequency.MINUTELY: datetime.timedelta(minutes=1),
    Frequency.SECONDLY: datetime.timedelta(seconds=1),
}

# Slack around the window in local wall time; covers any UTC offset difference
_LOCAL_MARGIN = datetime.timedelta(days=1, hours=2)

# The Gregorian calendar repeats every 400 years (146097 days, a whole number of weeks)
_CALENDAR_CYCLE_YEARS = 400


@dataclass(frozen=True)
class MaterializeResult:
    """Raw occurrence starts for one master event within one window.

    ``truncated`` is set when a cap stopped evaluation early; ``starts`` then
    holds the occurrences found up to that point.
    """

    starts: list[datetime.datetime]
    truncated: bool = False


def validate_window(
    window_start: datetime.datetime,
    window_end: datetime.datetime,
    max_window_days: Optional[int] = None,
) -> tuple[datetime.datetime, datetime.datetime]:
    """Normalize a query window to UTC and reject invalid ones.

    Raises:
        InvalidWindowError: If start is after end, or the span exceeds ``max_window_days``
    """
    start = ensure_utc(window_start)
    end = ensure_utc(window_end)
    if start > end:
        raise InvalidWindowError(
            f"window start {start.isoformat()} is after window end {end.isoformat()}"
        )
    if max_window_days is not None and end - start > datetime.timedelta(days=max_window_days):
        raise InvalidWindowError(
            f"window spans {(end - start).days} days, more than the {max_window_days} day limit"
        )
    return start, end


def in_window(
    instant: datetime.datetime, window_start: datetime.datetime, window_end: datetime.datetime
) -> bool:
    """Start-inclusion policy: both window bounds are inclusive."""
    return window_start <= instant <= window_end


def materialize(
    master: MasterEvent,
    window_start: datetime.datetime,
    window_end: datetime.datetime,
    *,
    rule: Optional[RecurrenceRule] = None,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
    max_scanned: int = DEFAULT_MAX_SCANNED_OCCURRENCES,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> MaterializeResult:
    """Produce the ascending occurrence start instants of ``master`` inside the window.

    Args:
        master: Master event; non-recurring masters yield their own start if it
            lies in the window
        window_start: Inclusive lower bound
        window_end: Inclusive upper bound
        rule: Already-parsed rule; parsed from ``master.rrule`` when omitted
        max_occurrences: Cap on returned occurrences
        max_scanned: Cap on candidate instants walked while evaluating the rule
        default_timezone: Zone used when ``master.tz`` is unknown

    Returns:
        MaterializeResult with strictly ascending, duplicate-free UTC instants

    Raises:
        InvalidWindowError: If ``window_start > window_end``
        UnparseableRuleError: If ``master.rrule`` is set but not parseable
    """
    window_start, window_end = validate_window(window_start, window_end)

    if rule is None:
        if not master.is_recurring:
            starts = [master.starts_at] if in_window(master.starts_at, window_start, window_end) else []
            return MaterializeResult(starts=starts)
        parsed = parse_recurrence_rule(master.rrule)
        if isinstance(parsed, RuleParseFailure):
            raise UnparseableRuleError(parsed)
        rule = parsed

    tz = resolve_zone(master.tz, default_timezone)
    return _walk_rule(
        rule,
        master.starts_at,
        tz,
        window_start,
        window_end,
        max_occurrences=max_occurrences,
        max_scanned=max_scanned,
    )


def _walk_rule(
    rule: RecurrenceRule,
    master_start: datetime.datetime,
    tz: zoneinfo.ZoneInfo,
    window_start: datetime.datetime,
    window_end: datetime.datetime,
    *,
    max_occurrences: int,
    max_scanned: int,
) -> MaterializeResult:
    dtstart_local = master_start.astimezone(tz).replace(tzinfo=None)
    lower_local = _local_bound(window_start, tz, -_LOCAL_MARGIN)
    upper_local = _local_bound(window_end, tz, _LOCAL_MARGIN)

    until_utc = _until_instant(rule, tz)
    if until_utc is not None:
        upper_local = min(upper_local, _local_bound(until_utc, tz, _LOCAL_MARGIN))
    if dtstart_local > upper_local:
        return MaterializeResult(starts=[])

    # dateutil stops at datetime.MAXYEAR, so walking the rule inside the last
    # calendar cycle bounds the periods it visits even when no candidate matches
    shift = _horizon_shift(upper_local)
    upper_local = _shift_years(upper_local, shift)
    dtstart_local = _fast_forward(
        rule, _shift_years(dtstart_local, shift), _shift_years(lower_local, shift)
    )
    evaluator = build_dateutil_rule(rule, dtstart_local)

    found: set[datetime.datetime] = set()
    scanned = 0
    truncated = False

    for local_occurrence in evaluator:
        if local_occurrence > upper_local:
            break
        scanned += 1
        if scanned > max_scanned:
            logger.warning(
                "Rule %r scanned more than %d candidates; stopping early", rule.raw, max_scanned
            )
            truncated = True
            break

        local_occurrence = _shift_years(local_occurrence, -shift)
        instant = local_occurrence.replace(tzinfo=tz).astimezone(datetime.UTC)
        if until_utc is not None and instant > until_utc:
            continue
        if not in_window(instant, window_start, window_end):
            continue

        found.add(instant)
        if len(found) > max_occurrences:
            truncated = True
            break

    starts = sorted(found)
    if truncated and len(starts) > max_occurrences:
        logger.warning(
            "Rule %r produced more than %d occurrences in window; truncating",
            rule.raw,
            max_occurrences,
        )
        starts = starts[:max_occurrences]

    return MaterializeResult(starts=starts, truncated=truncated)


def build_dateutil_rule(rule: RecurrenceRule, dtstart_local: datetime.datetime) -> du_rrule.rrule:
    """Translate a structured rule into a dateutil ``rrule`` anchored at a naive local start.

    UNTIL is not passed to dateutil; it is enforced on absolute instants by the caller.
    """
    kwargs: dict[str, object] = {
        "dtstart": dtstart_local,
        "interval": rule.interval,
        "wkst": _DATEUTIL_WEEKDAYS[WeekdaySpec(rule.week_start).index],
    }
    if rule.count is not None:
        kwargs["count"] = rule.count
    if rule.by_weekday:
        kwargs["byweekday"] = [_to_dateutil_weekday(spec) for spec in rule.by_weekday]
    if rule.by_month_day:
        kwargs["bymonthday"] = rule.by_month_day
    if rule.by_month:
        kwargs["bymonth"] = rule.by_month
    if rule.by_hour:
        kwargs["byhour"] = rule.by_hour
    if rule.by_minute:
        kwargs["byminute"] = rule.by_minute
    if rule.by_set_pos:
        kwargs["bysetpos"] = rule.by_set_pos
    return du_rrule.rrule(_DATEUTIL_FREQ[rule.freq], **kwargs)  # type: ignore[arg-type]


def _to_dateutil_weekday(spec: WeekdaySpec) -> du_rrule.weekday:
    weekday = _DATEUTIL_WEEKDAYS[spec.index]
    return weekday(spec.ordinal) if spec.ordinal is not None else weekday


def _until_instant(rule: RecurrenceRule, tz: zoneinfo.ZoneInfo) -> Optional[datetime.datetime]:
    """Resolve UNTIL to an absolute UTC instant (date-only means end of that local day)."""
    until = rule.until
    if until is None:
        return None
    if isinstance(until, datetime.datetime):
        if until.tzinfo is not None:
            return until.astimezone(datetime.UTC)
        return until.replace(tzinfo=tz).astimezone(datetime.UTC)
    end_of_day = datetime.datetime.combine(until, datetime.time(23, 59, 59))
    return end_of_day.replace(tzinfo=tz).astimezone(datetime.UTC)


def _fast_forward(
    rule: RecurrenceRule, dtstart_local: datetime.datetime, lower_local: datetime.datetime
) -> datetime.datetime:
    """Move the rule anchor forward by whole periods so evaluation starts near the window.

    Only applies to fixed-length frequencies without COUNT or BYSETPOS, where
    shifting the anchor by a multiple of ``interval`` periods leaves the set of
    later occurrences unchanged.
    """
    period = _FIXED_PERIODS.get(rule.freq)
    if period is None or rule.count is not None or rule.by_set_pos:
        return dtstart_local
    step = period * rule.interval
    if dtstart_local + step >= lower_local:
        return dtstart_local
    # Keep one full step of slack before the window
    periods = (lower_local - dtstart_local) // step - 1
    if periods <= 0:
        return dtstart_local
    return dtstart_local + step * periods


def _local_bound(
    instant: datetime.datetime, tz: zoneinfo.ZoneInfo, margin: datetime.timedelta
) -> datetime.datetime:
    """Naive local wall time of ``instant`` widened by ``margin``, clamped to the datetime range."""
    try:
        return instant.astimezone(tz).replace(tzinfo=None) + margin
    except OverflowError:
        return datetime.datetime.max if margin > datetime.timedelta(0) else datetime.datetime.min


def _horizon_shift(upper_local: datetime.datetime) -> int:
    """Whole calendar cycles (in years) that move ``upper_local`` into the last cycle before MAXYEAR."""
    cycles = (datetime.MAXYEAR - upper_local.year) // _CALENDAR_CYCLE_YEARS
    return cycles * _CALENDAR_CYCLE_YEARS


def _shift_years(value: datetime.datetime, years: int) -> datetime.datetime:
    if not years:
        return value
    return value.replace(year=value.year + years)

"""RRULE text parsing into a structured, tagged rule value.

``parse_recurrence_rule`` never raises for bad input: it returns either a
``RecurrenceRule`` or a ``RuleParseFailure``. Downstream code works with the
structured value and never re-parses the raw string.

Supported subset (RFC-5545 ``RRULE``): FREQ, INTERVAL, COUNT, UNTIL, BYDAY
(optionally ordinal-prefixed for MONTHLY/YEARLY), BYMONTHDAY, BYMONTH, BYHOUR,
BYMINUTE, BYSETPOS and WKST. Anything else fails closed.
"""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

logger = logging.getLogger(__name__)


class Frequency(str, Enum):
    """Recurrence frequencies, ordered from coarsest to finest."""

    YEARLY = "YEARLY"
    MONTHLY = "MONTHLY"
    WEEKLY = "WEEKLY"
    DAILY = "DAILY"
    HOURLY = "HOURLY"
    MINUTELY = "MINUTELY"
    SECONDLY = "SECONDLY"


WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

_BYDAY_RE = re.compile(r"^([+-]?)(\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")
_UNTIL_DATE_RE = re.compile(r"^\d{8}$")
_UNTIL_DATETIME_RE = re.compile(r"^\d{8}T\d{6}Z?$")

_SUPPORTED_KEYS = frozenset(
    {
        "FREQ",
        "INTERVAL",
        "COUNT",
        "UNTIL",
        "BYDAY",
        "BYMONTHDAY",
        "BYMONTH",
        "BYHOUR",
        "BYMINUTE",
        "BYSETPOS",
        "WKST",
    }
)

# Longest length of each month (leap February included)
_MONTH_LENGTHS = (31, 29, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)

# Upper bound on calendar days in one period of each frequency
_PERIOD_DAYS = {Frequency.YEARLY: 366, Frequency.MONTHLY: 31, Frequency.WEEKLY: 7}
_PERIOD_WEEKS = {Frequency.YEARLY: 53, Frequency.MONTHLY: 5, Frequency.WEEKLY: 1}


@dataclass(frozen=True)
class WeekdaySpec:
    """One BYDAY entry: weekday code plus optional ordinal (``-1FR`` = last Friday)."""

    code: str
    ordinal: int | None = None

    @property
    def index(self) -> int:
        """Weekday index with Monday == 0."""
        return WEEKDAY_CODES.index(self.code)


@dataclass(frozen=True)
class RecurrenceRule:
    """Structured recurrence rule.

    ``until`` keeps the form it was written in: a ``date`` (whole local day),
    a naive ``datetime`` (local wall time) or an aware UTC ``datetime``.
    """

    freq: Frequency
    interval: int = 1
    count: int | None = None
    until: datetime.date | datetime.datetime | None = None
    by_weekday: tuple[WeekdaySpec, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_month: tuple[int, ...] = ()
    by_hour: tuple[int, ...] = ()
    by_minute: tuple[int, ...] = ()
    by_set_pos: tuple[int, ...] = ()
    week_start: str = "MO"
    raw: str = ""

    @property
    def is_bounded(self) -> bool:
        """True when COUNT or UNTIL limits the rule."""
        return self.count is not None or self.until is not None


@dataclass(frozen=True)
class RuleParseFailure:
    """Typed parse failure carrying the offending text and a human-readable reason."""

    raw: str
    reason: str


ParsedRule = Union[RecurrenceRule, RuleParseFailure]


class _RuleSyntaxError(ValueError):
    """Internal signal used while walking rule parts; never escapes this module."""


def parse_recurrence_rule(text: str | None) -> ParsedRule:
    """Parse RRULE text into a ``RecurrenceRule`` or a ``RuleParseFailure``.

    Args:
        text: Rule text such as ``"FREQ=WEEKLY;BYDAY=MO,WE;UNTIL=20240201T000000Z"``,
            optionally prefixed with ``RRULE:``

    Returns:
        The structured rule, or a failure describing why the text was rejected
    """
    raw = text if isinstance(text, str) else ""
    try:
        return _parse(raw)
    except _RuleSyntaxError as exc:
        logger.debug("Rejected RRULE %r: %s", raw, exc)
        return RuleParseFailure(raw=raw, reason=str(exc))


def _parse(raw: str) -> RecurrenceRule:
    body = raw.strip()
    if not body:
        raise _RuleSyntaxError("empty rule")
    if "\n" in body or "\r" in body:
        raise _RuleSyntaxError("multi-line rule text is not supported")
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:") :]

    parts: dict[str, str] = {}
    for segment in body.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            raise _RuleSyntaxError(f"malformed part {segment!r}")
        key, value = segment.split("=", 1)
        key = key.strip().upper()
        value = value.strip().upper()
        if key not in _SUPPORTED_KEYS:
            raise _RuleSyntaxError(f"unsupported rule part {key!r}")
        if key in parts:
            raise _RuleSyntaxError(f"duplicate rule part {key!r}")
        if not value:
            raise _RuleSyntaxError(f"empty value for {key!r}")
        parts[key] = value

    if "FREQ" not in parts:
        raise _RuleSyntaxError("missing FREQ")
    try:
        freq = Frequency(parts["FREQ"])
    except ValueError:
        raise _RuleSyntaxError(f"unknown FREQ {parts['FREQ']!r}") from None

    if "COUNT" in parts and "UNTIL" in parts:
        raise _RuleSyntaxError("COUNT and UNTIL are mutually exclusive")

    by_weekday = _parse_byday(parts["BYDAY"], freq) if "BYDAY" in parts else ()
    by_set_pos = _int_list(parts, "BYSETPOS", -366, 366, nonzero=True)
    by_month_day = _int_list(parts, "BYMONTHDAY", -31, 31, nonzero=True)
    by_month = _int_list(parts, "BYMONTH", 1, 12)

    if by_set_pos and not (by_weekday or by_month_day or by_month):
        raise _RuleSyntaxError("BYSETPOS requires another BYxxx part")
    if freq is Frequency.WEEKLY and by_month_day:
        raise _RuleSyntaxError("BYMONTHDAY is not allowed with FREQ=WEEKLY")

    week_start = parts.get("WKST", "MO")
    if week_start not in WEEKDAY_CODES:
        raise _RuleSyntaxError(f"invalid WKST {week_start!r}")

    rule = RecurrenceRule(
        freq=freq,
        interval=_positive_int(parts, "INTERVAL", default=1),
        count=_positive_int(parts, "COUNT", default=None),
        until=_parse_until(parts["UNTIL"]) if "UNTIL" in parts else None,
        by_weekday=by_weekday,
        by_month_day=by_month_day,
        by_month=by_month,
        by_hour=_int_list(parts, "BYHOUR", 0, 23),
        by_minute=_int_list(parts, "BYMINUTE", 0, 59),
        by_set_pos=by_set_pos,
        week_start=week_start,
        raw=raw.strip(),
    )
    _check_satisfiable(rule)
    return rule


def _positive_int(parts: dict[str, str], key: str, default: int | None) -> int | None:
    if key not in parts:
        return default
    value = parts[key]
    if not value.isdigit() or int(value) < 1:
        raise _RuleSyntaxError(f"{key} must be a positive integer, got {value!r}")
    return int(value)


def _int_list(
    parts: dict[str, str], key: str, low: int, high: int, *, nonzero: bool = False
) -> tuple[int, ...]:
    if key not in parts:
        return ()
    values = []
    for item in parts[key].split(","):
        try:
            number = int(item)
        except ValueError:
            raise _RuleSyntaxError(f"invalid {key} value {item!r}") from None
        if number < low or number > high or (nonzero and number == 0):
            raise _RuleSyntaxError(f"{key} value {number} out of range")
        values.append(number)
    return tuple(values)


def _parse_byday(value: str, freq: Frequency) -> tuple[WeekdaySpec, ...]:
    specs = []
    for item in value.split(","):
        match = _BYDAY_RE.match(item.strip())
        if not match:
            raise _RuleSyntaxError(f"invalid BYDAY value {item!r}")
        sign, digits, code = match.groups()
        ordinal = None
        if digits:
            ordinal = int(digits) * (-1 if sign == "-" else 1)
            if ordinal == 0 or abs(ordinal) > 53:
                raise _RuleSyntaxError(f"BYDAY ordinal out of range in {item!r}")
            if freq not in (Frequency.MONTHLY, Frequency.YEARLY):
                raise _RuleSyntaxError("ordinal BYDAY requires FREQ=MONTHLY or FREQ=YEARLY")
        elif sign:
            raise _RuleSyntaxError(f"invalid BYDAY value {item!r}")
        specs.append(WeekdaySpec(code=code, ordinal=ordinal))
    return tuple(specs)


def _parse_until(value: str) -> datetime.date | datetime.datetime:
    try:
        if _UNTIL_DATE_RE.match(value):
            return datetime.datetime.strptime(value, "%Y%m%d").date()
        if _UNTIL_DATETIME_RE.match(value):
            if value.endswith("Z"):
                parsed = datetime.datetime.strptime(value, "%Y%m%dT%H%M%SZ")
                return parsed.replace(tzinfo=datetime.UTC)
            return datetime.datetime.strptime(value, "%Y%m%dT%H%M%S")
    except ValueError:
        raise _RuleSyntaxError(f"invalid UNTIL value {value!r}") from None
    raise _RuleSyntaxError(f"invalid UNTIL value {value!r}")


def _check_satisfiable(rule: RecurrenceRule) -> None:
    """Reject BYxxx combinations that can never produce an occurrence.

    Such rules would otherwise make the evaluator walk period after period
    without ever yielding a candidate.
    """
    if rule.by_month_day:
        months = rule.by_month or range(1, 13)
        if not any(
            abs(day) <= _MONTH_LENGTHS[month - 1] for month in months for day in rule.by_month_day
        ):
            raise _RuleSyntaxError(
                f"BYMONTHDAY {list(rule.by_month_day)} never falls in BYMONTH {list(months)}"
            )

    month_scoped = rule.freq is Frequency.MONTHLY or (
        rule.freq is Frequency.YEARLY and rule.by_month
    )
    if month_scoped:
        for spec in rule.by_weekday:
            if spec.ordinal is not None and abs(spec.ordinal) > 5:
                raise _RuleSyntaxError(
                    f"BYDAY ordinal {spec.ordinal}{spec.code} exceeds the weeks of a month"
                )

    if rule.by_set_pos:
        size = _max_set_size(rule)
        if all(abs(pos) > size for pos in rule.by_set_pos):
            raise _RuleSyntaxError(
                f"BYSETPOS {list(rule.by_set_pos)} exceeds the {size} candidate(s) per period"
            )


def _max_set_size(rule: RecurrenceRule) -> int:
    """Upper bound on the candidates one period can hold before BYSETPOS selects."""
    days = _PERIOD_DAYS.get(rule.freq, 1)
    if rule.by_weekday:
        plain = {spec.code for spec in rule.by_weekday if spec.ordinal is None}
        ordinal = sum(1 for spec in rule.by_weekday if spec.ordinal is not None)
        days = min(days, len(plain) * _PERIOD_WEEKS.get(rule.freq, 1) + ordinal)
    if rule.by_month_day:
        months = (len(rule.by_month) or 12) if rule.freq is Frequency.YEARLY else 1
        days = min(days, len(set(rule.by_month_day)) * months)

    if rule.freq in (Frequency.YEARLY, Frequency.MONTHLY, Frequency.WEEKLY, Frequency.DAILY):
        times = len(set(rule.by_hour) or {0}) * len(set(rule.by_minute) or {0})
    elif rule.freq is Frequency.HOURLY:
        times = len(set(rule.by_minute) or {0})
    else:
        times = 1
    return days * times

"""Tests for removal of skipped occurrences."""

from datetime import UTC, datetime, timedelta

import pytest

from dayplanner_lite.calendar.exception_filter import (
    filter_skipped,
    is_skipped,
    skipped_instants,
)
from dayplanner_lite.calendar.models import EventException

pytestmark = pytest.mark.unit


def utc(*args):
    return datetime(*args, tzinfo=UTC)


STARTS = [utc(2024, 1, 3, 9), utc(2024, 1, 4, 9), utc(2024, 1, 5, 9)]


def skip(instant, master_event_id="evt1", skipped=True):
    return EventException(master_event_id=master_event_id, occurrence=instant, skipped=skipped)


def test_exact_skip_removes_occurrence():
    kept = filter_skipped(STARTS, [skip(utc(2024, 1, 4, 9))])
    assert kept == [utc(2024, 1, 3, 9), utc(2024, 1, 5, 9)]


def test_skip_within_tolerance_still_matches():
    drifted = utc(2024, 1, 4, 9) + timedelta(seconds=30)

    kept = filter_skipped(STARTS, [skip(drifted)], tolerance_ms=60_000)

    assert utc(2024, 1, 4, 9) not in kept
    assert len(kept) == 2


def test_tolerance_comparison_is_strict():
    at_limit = utc(2024, 1, 4, 9) - timedelta(milliseconds=60_000)

    kept = filter_skipped(STARTS, [skip(at_limit)], tolerance_ms=60_000)

    assert kept == STARTS


def test_non_skip_exception_never_excludes():
    kept = filter_skipped(STARTS, [skip(utc(2024, 1, 4, 9), skipped=False)])
    assert kept == STARTS


def test_multiple_exceptions_combine():
    exceptions = [skip(utc(2024, 1, 3, 9)), skip(utc(2024, 1, 5, 9, 0, 10))]

    kept = filter_skipped(STARTS, exceptions)

    assert kept == [utc(2024, 1, 4, 9)]


def test_exceptions_of_other_events_are_ignored():
    exceptions = [skip(utc(2024, 1, 4, 9), master_event_id="other")]

    assert filter_skipped(STARTS, exceptions, master_event_id="evt1") == STARTS
    assert len(filter_skipped(STARTS, exceptions)) == 2


def test_input_order_is_preserved():
    unordered = [STARTS[2], STARTS[0], STARTS[1]]

    kept = filter_skipped(unordered, [skip(utc(2024, 1, 1))])

    assert kept == unordered


def test_skipped_instants_are_sorted_and_filtered():
    exceptions = [
        skip(utc(2024, 1, 5)),
        skip(utc(2024, 1, 1)),
        skip(utc(2024, 1, 3), skipped=False),
    ]

    assert skipped_instants(exceptions) == [utc(2024, 1, 1), utc(2024, 1, 5)]


def test_is_skipped_checks_both_neighbours():
    skipped = [utc(2024, 1, 1, 9), utc(2024, 1, 2, 9)]
    tolerance = timedelta(seconds=60)

    assert is_skipped(utc(2024, 1, 2, 8, 59, 30), skipped, tolerance)
    assert is_skipped(utc(2024, 1, 1, 9, 0, 30), skipped, tolerance)
    assert not is_skipped(utc(2024, 1, 1, 12), skipped, tolerance)
    assert not is_skipped(utc(2024, 1, 1, 12), [], tolerance)

"""Tests for batch expansion of master events."""

from datetime import UTC, datetime, timedelta

import pytest

from dayplanner_lite.calendar.errors import InvalidWindowError
from dayplanner_lite.core.config_manager import PlannerSettings
from dayplanner_lite.domain import expansion
from dayplanner_lite.domain.expansion import expand_event, expand_events

pytestmark = pytest.mark.unit


def utc(*args):
    return datetime(*args, tzinfo=UTC)


WINDOW = (utc(2024, 1, 3), utc(2024, 1, 5, 9))


def test_daily_series_in_window(make_master, settings):
    master = make_master(rrule="FREQ=DAILY")

    result = expand_events([master], *WINDOW, settings)

    assert [inst.starts_at for inst in result.instances] == [
        utc(2024, 1, 3, 9),
        utc(2024, 1, 4, 9),
        utc(2024, 1, 5, 9),
    ]
    assert all(inst.ends_at - inst.starts_at == timedelta(hours=1) for inst in result.instances)
    assert result.is_complete


def test_skipped_occurrence_is_removed(make_master, settings):
    master = make_master(rrule="FREQ=DAILY", skipped=(utc(2024, 1, 4, 9),))

    result = expand_events([master], *WINDOW, settings)

    assert [inst.starts_at for inst in result.instances] == [utc(2024, 1, 3, 9), utc(2024, 1, 5, 9)]


def test_drifted_skip_is_still_removed(make_master, settings):
    master = make_master(rrule="FREQ=DAILY", skipped=(utc(2024, 1, 4, 9, 0, 30),))

    result = expand_events([master], *WINDOW, settings)

    assert utc(2024, 1, 4, 9) not in [inst.starts_at for inst in result.instances]


def test_non_recurring_outside_window_is_empty(make_master, settings):
    master = make_master(start=utc(2024, 2, 1, 9))

    result = expand_events([master], *WINDOW, settings)

    assert result.instances == []
    assert result.events_in == 1


def test_inverted_window_is_rejected(make_master, settings):
    with pytest.raises(InvalidWindowError):
        expand_events([make_master(rrule="FREQ=DAILY")], utc(2024, 1, 5), utc(2024, 1, 3), settings)


def test_oversized_window_is_rejected(make_master):
    settings = PlannerSettings(default_timezone="UTC", max_window_days=2)

    with pytest.raises(InvalidWindowError):
        expand_events([make_master()], utc(2024, 1, 1), utc(2024, 1, 10), settings)


def test_unparseable_rule_degrades_to_master_instant(make_master, settings):
    master = make_master(start=utc(2024, 1, 4, 9), rrule="FREQ=DAILY;BOGUS=1")

    result = expand_events([master], *WINDOW, settings)

    assert result.degraded_event_ids == ["evt1"]
    [inst] = result.instances
    assert inst.degraded is True
    assert inst.starts_at == master.starts_at
    assert inst.occurrence_id == master.id
    assert any("unparseable rule" in w for w in result.warnings)
    assert not result.is_complete


def test_degraded_master_outside_window_yields_nothing(make_master, settings):
    master = make_master(start=utc(2023, 6, 1, 9), rrule="FREQ=DAILY;BOGUS=1")

    outcome = expand_event(master, *WINDOW, settings)

    assert outcome.degraded is True
    assert outcome.instances == []


def test_occurrence_cap_marks_result_partial(make_master):
    settings = PlannerSettings(default_timezone="UTC", max_occurrences=5)
    master = make_master(rrule="FREQ=HOURLY")

    result = expand_events([master], *WINDOW, settings)

    assert result.partial_event_ids == ["evt1"]
    assert len(result.instances) == 5


def test_failure_in_one_event_does_not_abort_batch(make_master, settings, monkeypatch):
    real_materialize = expansion.materialize

    def flaky_materialize(master, *args, **kwargs):
        if master.id == "broken":
            raise RuntimeError("boom")
        return real_materialize(master, *args, **kwargs)

    monkeypatch.setattr(expansion, "materialize", flaky_materialize)
    good = make_master("good", rrule="FREQ=DAILY")
    broken = make_master("broken", rrule="FREQ=DAILY")

    result = expand_events([broken, good], *WINDOW, settings)

    assert result.failed_event_ids == ["broken"]
    assert len(result.instances) == 3
    assert {inst.source_event_id for inst in result.instances} == {"good"}


def test_output_is_merged_in_chronological_order(make_master, settings):
    daily = make_master("daily", rrule="FREQ=DAILY")
    single = make_master("single", start=utc(2024, 1, 4, 8))
    same_time = make_master("another", start=utc(2024, 1, 4, 9))

    result = expand_events([daily, single, same_time], *WINDOW, settings)

    keys = [(inst.starts_at, inst.occurrence_id) for inst in result.instances]
    assert keys == sorted(keys)
    assert result.instances[1].occurrence_id == "single"
    # ties on start are broken by occurrence id
    assert [i.occurrence_id for i in result.instances[2:4]] == ["another", "daily_1704358800000"]


def test_expansion_is_deterministic(make_master, settings):
    masters = [
        make_master("a", rrule="FREQ=DAILY", skipped=(utc(2024, 1, 4, 9),)),
        make_master("b", rrule="FREQ=WEEKLY;BYDAY=WE,TH"),
        make_master("c", start=utc(2024, 1, 3, 12)),
    ]

    first = expand_events(masters, *WINDOW, settings).to_api_list()
    second = expand_events(masters, *WINDOW, settings).to_api_list()

    assert first == second


def test_api_list_tags_recurrences(make_master, settings):
    result = expand_events(
        [make_master("series", rrule="FREQ=DAILY"), make_master("one", start=utc(2024, 1, 3, 12))],
        *WINDOW,
        settings,
    )

    items = result.to_api_list()

    single = next(item for item in items if item["id"] == "one")
    assert single["isRecurrence"] is False
    assert "parentId" not in single
    assert all(item["parentId"] == "series" for item in items if item["isRecurrence"])

"""Exception hierarchy for the calendar core and event storage.

Each error maps onto one HTTP status in the API layer, which keeps handlers free
of generic ``except Exception`` branches for expected failures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .rrule_parser import RuleParseFailure


class PlannerError(Exception):
    """Base exception for all dayplanner_lite errors."""


class InvalidWindowError(PlannerError):
    """Query window rejected before any rule evaluation.

    Raised when:
    - window start is after window end
    - the window spans more days than the configured cap

    Should result in HTTP 400 Bad Request response.
    """


class UnparseableRuleError(PlannerError):
    """A stored recurrence rule does not conform to the supported syntax.

    Carries the typed parse failure so callers can log the reason without
    re-parsing the rule text.
    """

    def __init__(self, failure: RuleParseFailure) -> None:
        super().__init__(f"Unparseable recurrence rule {failure.raw!r}: {failure.reason}")
        self.failure = failure


class EventNotFoundError(PlannerError):
    """Requested event does not exist in the store.

    Should result in HTTP 404 Not Found response.
    """


class TaskNotFoundError(PlannerError):
    """Requested task does not exist in the store.

    Should result in HTTP 404 Not Found response when the task is the request
    target, and HTTP 400 when an event or subtask refers to it.
    """

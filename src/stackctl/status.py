"""Stack status classification.

CloudFormation reports the same status vocabulary for every resource,
nested stacks included. Only the target stack's own events may end an
operation: a nested stack reaching UPDATE_COMPLETE says nothing about
whether its parent has finished.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from .models import STACK_RESOURCE_TYPE, Operation, StackEvent


class Outcome(str, Enum):
    """Classification of a stack status."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


SUCCESS_STATUSES: frozenset[str] = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "DELETE_COMPLETE",
})

FAILURE_STATUSES: frozenset[str] = frozenset({
    "CREATE_FAILED",
    "UPDATE_FAILED",
    "DELETE_FAILED",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_FAILED",
    "ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "UPDATE_ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE",
})

# A stack in one of these states can be updated rather than created
EXISTS_STATUSES: frozenset[str] = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
})

# Settled states eligible for cleanup (nothing in progress)
CLEANUP_STATUSES: tuple[str, ...] = (
    "CREATE_COMPLETE",
    "CREATE_FAILED",
    "DELETE_FAILED",
    "ROLLBACK_COMPLETE",
    "UPDATE_COMPLETE",
)


def classify(status: str) -> Outcome:
    """Map a raw stack status to pending, success or failure."""
    if status in SUCCESS_STATUSES:
        return Outcome.SUCCESS
    if status in FAILURE_STATUSES:
        return Outcome.FAILURE
    return Outcome.PENDING


def is_authoritative(event: StackEvent, stack_name: str) -> bool:
    """Check if an event describes the target stack itself (not a nested stack)."""
    return event.resource_type == STACK_RESOURCE_TYPE and event.logical_id == stack_name


@dataclass(frozen=True)
class TerminalDecision:
    """Terminal outcome derived from one batch of events."""

    outcome: Outcome
    event: StackEvent

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def reason(self) -> str | None:
        return self.event.status_reason


def decide(events: Sequence[StackEvent], operation: Operation) -> TerminalDecision | None:
    """Decide whether a batch of events ends the operation.

    Looks at the last event of the batch only, and only when it belongs to the
    stack itself. A failure status that predates the operation is a leftover
    from an earlier operation and counts as success for this one.

    Args:
        events: New events, sorted ascending by timestamp.
        operation: The operation being tracked.

    Returns:
        A TerminalDecision, or None while the operation is still running.
    """
    if not events:
        return None

    latest = events[-1]
    if not is_authoritative(latest, operation.stack_name):
        return None

    outcome = classify(latest.status)
    current = operation.is_current(latest.timestamp)

    if outcome == Outcome.FAILURE:
        if current:
            return TerminalDecision(Outcome.FAILURE, latest)
        return TerminalDecision(Outcome.SUCCESS, latest)

    if outcome == Outcome.SUCCESS and current:
        return TerminalDecision(Outcome.SUCCESS, latest)

    return None

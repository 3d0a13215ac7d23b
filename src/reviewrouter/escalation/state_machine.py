"""Assignment state machine for ReviewRouter escalation.

This module defines the assignment lifecycle transitions and the pure
``next_transition`` function that decides, from elapsed time alone, whether
an open assignment is due for a reminder or an escalation.

Lifecycle:
    pending -> reminded -> escalated      (time-driven, by the sweep)
    pending | reminded | escalated -> approved | rejected   (reviewer action)

Terminal states (approved, rejected) have no outgoing transitions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from reviewrouter.clock import hours_between
from reviewrouter.database.models.assignment import AssignmentStatus, ReviewAssignment
from reviewrouter.errors import ReviewRouterError


class InvalidTransitionError(ReviewRouterError):
    """Raised when an invalid status transition is attempted.

    Attributes:
        current: The current assignment status.
        target: The attempted target status.
        assignment_id: The ID of the assignment that failed to transition.
    """

    def __init__(
        self,
        current: AssignmentStatus,
        target: AssignmentStatus,
        assignment_id: str | None = None,
    ):
        self.current = current
        self.target = target
        self.assignment_id = assignment_id
        msg = f"Invalid transition from {current.value} to {target.value}"
        if assignment_id:
            msg += f" for assignment {assignment_id}"
        super().__init__(msg)


_REVIEW_OUTCOMES = {AssignmentStatus.approved, AssignmentStatus.rejected}

# Authoritative state machine definition
VALID_TRANSITIONS: dict[AssignmentStatus, set[AssignmentStatus]] = {
    AssignmentStatus.pending: {AssignmentStatus.reminded} | _REVIEW_OUTCOMES,
    AssignmentStatus.reminded: {AssignmentStatus.escalated} | _REVIEW_OUTCOMES,
    AssignmentStatus.escalated: set(_REVIEW_OUTCOMES),
    AssignmentStatus.approved: set(),  # Terminal
    AssignmentStatus.rejected: set(),  # Terminal
}


def validate_transition(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    """Validate if a status transition is allowed.

    Args:
        current: Current assignment status.
        target: Target assignment status.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS.
    """
    return target in VALID_TRANSITIONS.get(current, set())


@dataclass(frozen=True)
class EscalationThresholds:
    """Reminder and escalation thresholds in hours since assignment."""

    reminder_hours: float = 24.0
    escalation_hours: float = 48.0

    def __post_init__(self) -> None:
        if self.reminder_hours <= 0:
            raise ValueError("reminder_hours must be positive")
        if self.escalation_hours <= self.reminder_hours:
            raise ValueError("escalation_hours must be greater than reminder_hours")

    @property
    def escalation_delay_hours(self) -> float:
        """Hours between the reminder and the escalation."""
        return self.escalation_hours - self.reminder_hours


class TransitionKind(enum.Enum):
    """Notification a time-driven transition calls for."""

    reminder = "reminder"
    escalation = "escalation"


@dataclass(frozen=True)
class Transition:
    """A time-driven transition decided for one assignment."""

    kind: TransitionKind
    from_status: AssignmentStatus
    to_status: AssignmentStatus
    hours_pending: float


def next_transition(
    assignment: ReviewAssignment,
    thresholds: EscalationThresholds,
    now: datetime,
) -> Transition | None:
    """Decide whether an assignment is due for a reminder or escalation.

    A pending assignment is reminded once ``reminder_hours`` have elapsed
    since assignment. A reminded assignment is escalated once
    ``escalation_hours - reminder_hours`` have elapsed since the reminder, so
    a late sweep never escalates in the same run that reminded. Escalated
    and terminal assignments are left alone.

    Args:
        assignment: Assignment to inspect (status, assigned_at,
            last_escalated_at are read).
        thresholds: Thresholds of the assignment's organization.
        now: Current time.

    Returns:
        The due Transition, or None.
    """
    hours_pending = hours_between(assignment.assigned_at, now)

    if assignment.status is AssignmentStatus.pending:
        if hours_pending >= thresholds.reminder_hours:
            return Transition(
                TransitionKind.reminder,
                AssignmentStatus.pending,
                AssignmentStatus.reminded,
                hours_pending,
            )
        return None

    if assignment.status is AssignmentStatus.reminded:
        if assignment.last_escalated_at is not None:
            since_reminder = hours_between(assignment.last_escalated_at, now)
        else:
            since_reminder = hours_pending - thresholds.reminder_hours
        if since_reminder >= thresholds.escalation_delay_hours:
            return Transition(
                TransitionKind.escalation,
                AssignmentStatus.reminded,
                AssignmentStatus.escalated,
                hours_pending,
            )
        return None

    return None

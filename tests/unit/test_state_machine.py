"""Unit tests for the assignment state machine.

Tests cover:
- Valid and invalid status transitions
- Threshold validation
- Time-driven reminder and escalation decisions
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from reviewrouter.database.models.assignment import AssignmentStatus, ReviewAssignment
from reviewrouter.escalation.state_machine import (
    VALID_TRANSITIONS,
    EscalationThresholds,
    InvalidTransitionError,
    TransitionKind,
    next_transition,
    validate_transition,
)

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
THRESHOLDS = EscalationThresholds(reminder_hours=24, escalation_hours=48)


def make_assignment(
    status: AssignmentStatus = AssignmentStatus.pending,
    assigned_at: datetime = T0,
    last_escalated_at: datetime | None = None,
) -> ReviewAssignment:
    return ReviewAssignment(
        id=uuid.uuid4(),
        organization_id=uuid.uuid4(),
        pull_request_id="acme/api#1",
        reviewer_id=uuid.uuid4(),
        status=status,
        assigned_at=assigned_at,
        last_escalated_at=last_escalated_at,
        repository="acme/api",
        pr_number=1,
    )


class TestValidTransitions:
    """Test the VALID_TRANSITIONS mapping and validation."""

    def test_valid_transitions_definition(self) -> None:
        """Verify VALID_TRANSITIONS includes all AssignmentStatus values."""
        assert set(VALID_TRANSITIONS) == set(AssignmentStatus)

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            (AssignmentStatus.pending, AssignmentStatus.reminded, True),
            (AssignmentStatus.reminded, AssignmentStatus.escalated, True),
            (AssignmentStatus.pending, AssignmentStatus.approved, True),
            (AssignmentStatus.reminded, AssignmentStatus.rejected, True),
            (AssignmentStatus.escalated, AssignmentStatus.approved, True),
            (AssignmentStatus.pending, AssignmentStatus.escalated, False),
            (AssignmentStatus.escalated, AssignmentStatus.reminded, False),
            (AssignmentStatus.reminded, AssignmentStatus.pending, False),
            (AssignmentStatus.approved, AssignmentStatus.rejected, False),
            (AssignmentStatus.rejected, AssignmentStatus.pending, False),
        ],
    )
    def test_validate_transition(
        self, current: AssignmentStatus, target: AssignmentStatus, expected: bool
    ) -> None:
        assert validate_transition(current, target) is expected

    def test_terminal_states_have_no_transitions(self) -> None:
        assert VALID_TRANSITIONS[AssignmentStatus.approved] == set()
        assert VALID_TRANSITIONS[AssignmentStatus.rejected] == set()

    def test_invalid_transition_error_message(self) -> None:
        error = InvalidTransitionError(
            AssignmentStatus.approved, AssignmentStatus.rejected, "a-1"
        )
        assert str(error) == "Invalid transition from approved to rejected for assignment a-1"
        assert error.current is AssignmentStatus.approved


class TestThresholds:
    """Test EscalationThresholds validation."""

    def test_escalation_delay(self) -> None:
        assert THRESHOLDS.escalation_delay_hours == 24

    @pytest.mark.parametrize("reminder,escalation", [(0, 10), (-1, 10), (24, 24), (48, 24)])
    def test_rejects_invalid(self, reminder: float, escalation: float) -> None:
        with pytest.raises(ValueError):
            EscalationThresholds(reminder, escalation)


class TestNextTransition:
    """Test time-driven transition decisions."""

    def test_pending_reminded_after_threshold(self) -> None:
        """Test that 25 hours pending calls for a reminder."""
        transition = next_transition(make_assignment(), THRESHOLDS, T0 + timedelta(hours=25))

        assert transition is not None
        assert transition.kind is TransitionKind.reminder
        assert transition.from_status is AssignmentStatus.pending
        assert transition.to_status is AssignmentStatus.reminded
        assert transition.hours_pending == pytest.approx(25)

    def test_pending_left_alone_before_threshold(self) -> None:
        """Test that 23 hours pending calls for nothing."""
        assert next_transition(make_assignment(), THRESHOLDS, T0 + timedelta(hours=23)) is None

    def test_reminder_exactly_at_threshold(self) -> None:
        transition = next_transition(make_assignment(), THRESHOLDS, T0 + timedelta(hours=24))
        assert transition is not None

    def test_reminded_escalated_after_delay(self) -> None:
        """Test that escalation is measured from the reminder time."""
        reminded_at = T0 + timedelta(hours=30)
        assignment = make_assignment(AssignmentStatus.reminded, last_escalated_at=reminded_at)

        assert next_transition(assignment, THRESHOLDS, T0 + timedelta(hours=50)) is None

        transition = next_transition(assignment, THRESHOLDS, T0 + timedelta(hours=54))
        assert transition is not None
        assert transition.kind is TransitionKind.escalation
        assert transition.to_status is AssignmentStatus.escalated

    def test_reminded_without_timestamp_uses_assignment_time(self) -> None:
        assignment = make_assignment(AssignmentStatus.reminded)
        assert next_transition(assignment, THRESHOLDS, T0 + timedelta(hours=47)) is None
        assert next_transition(assignment, THRESHOLDS, T0 + timedelta(hours=48)) is not None

    def test_late_sweep_only_reminds(self) -> None:
        """Test that a pending assignment far past both thresholds is only reminded."""
        transition = next_transition(make_assignment(), THRESHOLDS, T0 + timedelta(hours=100))
        assert transition is not None
        assert transition.kind is TransitionKind.reminder

    @pytest.mark.parametrize(
        "status",
        [AssignmentStatus.escalated, AssignmentStatus.approved, AssignmentStatus.rejected],
    )
    def test_no_transition_out_of_escalated_or_terminal(self, status: AssignmentStatus) -> None:
        assignment = make_assignment(status, last_escalated_at=T0)
        assert next_transition(assignment, THRESHOLDS, T0 + timedelta(days=30)) is None

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        """Test that naive datetimes read back from SQLite compare correctly."""
        assignment = make_assignment(assigned_at=T0.replace(tzinfo=None))
        assert next_transition(assignment, THRESHOLDS, T0 + timedelta(hours=25)) is not None

"""Reviewer actions on assignments.

Approving or rejecting ends an assignment's escalation lifecycle. The
status change uses the same compare-and-swap update as the sweep, so a
review recorded while a sweep is transitioning the assignment is never
lost or overwritten.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.database.models.assignment import AssignmentStatus, ReviewAssignment
from reviewrouter.database.queries.assignment import compare_and_set_status, get_assignment
from reviewrouter.errors import NotFoundError
from reviewrouter.escalation.state_machine import InvalidTransitionError, validate_transition

logger = structlog.get_logger(__name__)

_MAX_CAS_ATTEMPTS = 3


async def record_review_outcome(
    session: AsyncSession,
    assignment_id: uuid.UUID,
    approved: bool,
    now: datetime,
) -> ReviewAssignment:
    """Mark an open assignment approved or rejected.

    Args:
        session: Active async database session (caller's transaction).
        assignment_id: Assignment being reviewed.
        approved: True to approve, False to reject.
        now: Review timestamp stored in reviewed_at.

    Returns:
        The updated assignment.

    Raises:
        NotFoundError: If the assignment does not exist.
        InvalidTransitionError: If the assignment is already terminal.
    """
    target = AssignmentStatus.approved if approved else AssignmentStatus.rejected

    for _ in range(_MAX_CAS_ATTEMPTS):
        assignment = await get_assignment(session, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", str(assignment_id))
        current = assignment.status
        if not validate_transition(current, target):
            raise InvalidTransitionError(current, target, str(assignment_id))

        if await compare_and_set_status(
            session, assignment_id, expected=current, target=target, reviewed_at=now
        ):
            logger.info(
                "review_recorded",
                assignment_id=str(assignment_id),
                from_status=current.value,
                to_status=target.value,
            )
            return await get_assignment(session, assignment_id)

    raise InvalidTransitionError(current, target, str(assignment_id))

"""Review assignment query functions for ReviewRouter.

Provides assignment creation, the routing round claim and idempotency
lookups used by the assignment writer, the pending-assignment scan and
compare-and-swap status update used by the escalation sweep, and
notification bookkeeping.
Callers own the transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.database.models.assignment import (
    ACTIVE_STATUSES,
    AssignmentStatus,
    NotificationState,
    PullRequestRound,
    ReviewAssignment,
    RoutingFailure,
)
from reviewrouter.database.models.reviewer import Reviewer

logger = structlog.get_logger(__name__)


async def create_assignment(
    session: AsyncSession,
    organization_id: UUID,
    pull_request_id: str,
    reviewer_id: UUID,
    assigned_at: datetime,
    repository: str,
    pr_number: int,
    pr_title: str = "",
    pr_url: str | None = None,
    rule_id: UUID | None = None,
    routing_round: int = 1,
) -> ReviewAssignment:
    """Create a pending review assignment.

    Raises:
        sqlalchemy.exc.IntegrityError: If the (pull request, reviewer, round)
            triple already exists.
    """
    assignment = ReviewAssignment(
        organization_id=organization_id,
        pull_request_id=pull_request_id,
        reviewer_id=reviewer_id,
        rule_id=rule_id,
        routing_round=routing_round,
        status=AssignmentStatus.pending,
        assigned_at=assigned_at,
        repository=repository,
        pr_number=pr_number,
        pr_title=pr_title,
        pr_url=pr_url,
        notification_state=NotificationState.none,
        notification_attempts=0,
    )
    session.add(assignment)
    await session.flush()
    return assignment


async def claim_routing_round(
    session: AsyncSession,
    organization_id: UUID,
    pull_request_id: str,
    routing_round: int,
) -> PullRequestRound:
    """Claim a routing round of a pull request for the current transaction.

    On PostgreSQL a concurrent claim of the same round blocks until this
    transaction ends, then fails.

    Raises:
        sqlalchemy.exc.IntegrityError: If the round was already claimed.
    """
    claim = PullRequestRound(
        organization_id=organization_id,
        pull_request_id=pull_request_id,
        routing_round=routing_round,
    )
    session.add(claim)
    await session.flush()
    return claim


async def get_assignment(session: AsyncSession, assignment_id: UUID) -> ReviewAssignment | None:
    """Retrieve an assignment by ID, bypassing the identity map cache."""
    stmt = (
        select(ReviewAssignment)
        .where(ReviewAssignment.id == assignment_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_latest_round(
    session: AsyncSession, pull_request_id: str
) -> tuple[int, list[ReviewAssignment]]:
    """Return the latest routing round of a pull request and its assignments.

    Returns:
        ``(round, assignments)``; ``(0, [])`` if the pull request was never
        assigned.
    """
    round_stmt = select(func.max(ReviewAssignment.routing_round)).where(
        ReviewAssignment.pull_request_id == pull_request_id
    )
    latest = (await session.execute(round_stmt)).scalar_one_or_none()
    if latest is None:
        return 0, []

    stmt = (
        select(ReviewAssignment)
        .where(
            ReviewAssignment.pull_request_id == pull_request_id,
            ReviewAssignment.routing_round == latest,
        )
        .order_by(ReviewAssignment.assigned_at, ReviewAssignment.id)
    )
    result = await session.execute(stmt)
    return int(latest), list(result.scalars().all())


async def list_assignments(
    session: AsyncSession,
    organization_id: UUID | None = None,
    pull_request_id: str | None = None,
    statuses: Iterable[AssignmentStatus] | None = None,
) -> list[ReviewAssignment]:
    """List assignments with optional filters, oldest first."""
    stmt = select(ReviewAssignment)
    if organization_id is not None:
        stmt = stmt.where(ReviewAssignment.organization_id == organization_id)
    if pull_request_id is not None:
        stmt = stmt.where(ReviewAssignment.pull_request_id == pull_request_id)
    if statuses is not None:
        stmt = stmt.where(ReviewAssignment.status.in_(list(statuses)))
    stmt = stmt.order_by(ReviewAssignment.assigned_at, ReviewAssignment.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_pending_assignments(
    session: AsyncSession,
    cutoff: datetime,
    limit: int | None = None,
) -> list[tuple[UUID, UUID]]:
    """Find assignments that may be due for a reminder or escalation.

    Returns pending and reminded assignments assigned at or before
    ``cutoff``. Only identifiers are returned; the sweep re-reads each
    assignment in its own transaction.

    Args:
        session: Active async database session.
        cutoff: Latest assigned_at that can possibly be due.
        limit: Optional maximum number of rows.

    Returns:
        ``(assignment_id, organization_id)`` pairs, oldest first.
    """
    stmt = (
        select(ReviewAssignment.id, ReviewAssignment.organization_id)
        .where(
            ReviewAssignment.status.in_(
                [AssignmentStatus.pending, AssignmentStatus.reminded]
            ),
            ReviewAssignment.assigned_at <= cutoff,
        )
        .order_by(ReviewAssignment.assigned_at, ReviewAssignment.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def get_redelivery_candidates(
    session: AsyncSession,
    max_attempts: int,
) -> list[tuple[UUID, UUID]]:
    """Find transitioned assignments whose notification was not delivered.

    Returns reminded or escalated assignments whose notification is pending
    or failed and has been attempted fewer than ``max_attempts`` times.
    """
    stmt = (
        select(ReviewAssignment.id, ReviewAssignment.organization_id)
        .where(
            ReviewAssignment.status.in_(
                [AssignmentStatus.reminded, AssignmentStatus.escalated]
            ),
            ReviewAssignment.notification_state.in_(
                [NotificationState.pending, NotificationState.failed]
            ),
            ReviewAssignment.notification_attempts < max_attempts,
        )
        .order_by(ReviewAssignment.last_escalated_at, ReviewAssignment.id)
    )
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def compare_and_set_status(
    session: AsyncSession,
    assignment_id: UUID,
    expected: AssignmentStatus,
    target: AssignmentStatus,
    **values: Any,
) -> bool:
    """Conditionally move an assignment from ``expected`` to ``target``.

    Executes ``UPDATE ... WHERE id = :id AND status = :expected`` so that of
    two concurrent sweeps only one wins the transition.

    Args:
        session: Active async database session.
        assignment_id: Assignment to update.
        expected: Status the caller observed.
        target: Status to set.
        **values: Additional columns to set in the same statement.

    Returns:
        True if this call performed the transition.
    """
    stmt = (
        update(ReviewAssignment)
        .where(
            ReviewAssignment.id == assignment_id,
            ReviewAssignment.status == expected,
        )
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    swapped = result.rowcount == 1
    if not swapped:
        logger.debug(
            "status_compare_and_set_lost",
            assignment_id=str(assignment_id),
            expected=expected.value,
            target=target.value,
        )
    return swapped


async def record_notification_outcome(
    session: AsyncSession,
    assignment_id: UUID,
    delivered: bool,
    error: str | None = None,
    delivered_channels: Sequence[str] | None = None,
) -> None:
    """Record the result of one notification delivery attempt.

    Args:
        session: Active async database session.
        assignment_id: Assignment the notification belongs to.
        delivered: Whether every channel delivered.
        error: Failure message when not delivered.
        delivered_channels: Channels that delivered on a partial failure;
            left unchanged when None.
    """
    values: dict[str, Any] = {
        "notification_state": (
            NotificationState.delivered if delivered else NotificationState.failed
        ),
        "notification_attempts": ReviewAssignment.notification_attempts + 1,
        "last_notification_error": None if delivered else error,
    }
    if delivered_channels is not None:
        values["delivered_channels"] = sorted(set(delivered_channels))
    stmt = (
        update(ReviewAssignment)
        .where(ReviewAssignment.id == assignment_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def list_open_assignments_with_reviewers(
    session: AsyncSession, organization_id: UUID
) -> list[tuple[ReviewAssignment, Reviewer]]:
    """Open assignments of an organization joined with their reviewer."""
    stmt = (
        select(ReviewAssignment, Reviewer)
        .join(Reviewer, Reviewer.id == ReviewAssignment.reviewer_id)
        .where(
            ReviewAssignment.organization_id == organization_id,
            ReviewAssignment.status.in_(list(ACTIVE_STATUSES)),
        )
        .order_by(ReviewAssignment.assigned_at, ReviewAssignment.id)
    )
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def record_routing_failure(
    session: AsyncSession,
    organization_id: UUID,
    pull_request_id: str,
    reason: str,
    rule_id: UUID | None = None,
) -> RoutingFailure:
    """Persist a routing failure for visibility."""
    failure = RoutingFailure(
        organization_id=organization_id,
        pull_request_id=pull_request_id,
        rule_id=rule_id,
        reason=reason,
    )
    session.add(failure)
    await session.flush()
    return failure


async def list_routing_failures(
    session: AsyncSession, organization_id: UUID
) -> list[RoutingFailure]:
    """List an organization's routing failures, newest first."""
    stmt = (
        select(RoutingFailure)
        .where(RoutingFailure.organization_id == organization_id)
        .order_by(RoutingFailure.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())

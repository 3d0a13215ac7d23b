"""Reviewer query functions for ReviewRouter.

Provides reviewer CRUD, eligibility lookups, and the workload counts used
by least-busy selection. Callers own the transaction.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.database.models.assignment import WORKLOAD_STATUSES, ReviewAssignment
from reviewrouter.database.models.reviewer import Reviewer

logger = structlog.get_logger(__name__)


async def create_reviewer(
    session: AsyncSession,
    organization_id: UUID,
    name: str,
    github_username: str,
    slack_user_id: str | None = None,
    email: str | None = None,
    is_team_lead: bool = False,
    is_active: bool = True,
) -> Reviewer:
    """Create a reviewer in an organization.

    Returns:
        The newly created Reviewer instance.
    """
    reviewer = Reviewer(
        organization_id=organization_id,
        name=name,
        github_username=github_username,
        slack_user_id=slack_user_id,
        email=email,
        is_team_lead=is_team_lead,
        is_active=is_active,
    )
    session.add(reviewer)
    await session.flush()
    logger.info(
        "reviewer_created",
        reviewer_id=str(reviewer.id),
        organization_id=str(organization_id),
        github_username=github_username,
    )
    return reviewer


async def get_reviewer(session: AsyncSession, reviewer_id: UUID) -> Reviewer | None:
    """Retrieve a reviewer by ID."""
    return await session.get(Reviewer, reviewer_id)


async def update_reviewer(
    session: AsyncSession, reviewer_id: UUID, **kwargs: Any
) -> Reviewer | None:
    """Update reviewer fields such as is_active or slack_user_id."""
    reviewer = await session.get(Reviewer, reviewer_id)
    if reviewer is None:
        return None
    for key, value in kwargs.items():
        setattr(reviewer, key, value)
    await session.flush()
    return reviewer


async def get_reviewers(
    session: AsyncSession,
    organization_id: UUID,
    reviewer_ids: Iterable[UUID] | None = None,
    active_only: bool = False,
) -> list[Reviewer]:
    """List an organization's reviewers.

    Args:
        session: Active async database session.
        organization_id: Organization scope. Reviewers from other
            organizations are never returned, even if their ids are listed.
        reviewer_ids: Optional subset of reviewer ids.
        active_only: Only return active reviewers.

    Returns:
        Reviewers ordered by id.
    """
    stmt = select(Reviewer).where(Reviewer.organization_id == organization_id)
    if reviewer_ids is not None:
        ids = list(reviewer_ids)
        if not ids:
            return []
        stmt = stmt.where(Reviewer.id.in_(ids))
    if active_only:
        stmt = stmt.where(Reviewer.is_active.is_(True))
    stmt = stmt.order_by(Reviewer.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_team_leads(session: AsyncSession, organization_id: UUID) -> list[Reviewer]:
    """Active team leads of an organization, recipients of escalation alerts."""
    stmt = (
        select(Reviewer)
        .where(
            Reviewer.organization_id == organization_id,
            Reviewer.is_team_lead.is_(True),
            Reviewer.is_active.is_(True),
        )
        .order_by(Reviewer.name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_reviewer_workload(
    session: AsyncSession,
    organization_id: UUID,
    reviewer_ids: Iterable[UUID] | None = None,
) -> dict[UUID, int]:
    """Count open (pending or reminded) assignments per reviewer.

    Reviewers without open work are absent from the result; callers treat
    a missing key as zero.
    """
    stmt = (
        select(ReviewAssignment.reviewer_id, func.count(ReviewAssignment.id))
        .where(
            ReviewAssignment.organization_id == organization_id,
            ReviewAssignment.status.in_(list(WORKLOAD_STATUSES)),
        )
        .group_by(ReviewAssignment.reviewer_id)
    )
    if reviewer_ids is not None:
        stmt = stmt.where(ReviewAssignment.reviewer_id.in_(list(reviewer_ids)))
    result = await session.execute(stmt)
    return {row[0]: int(row[1]) for row in result.all()}

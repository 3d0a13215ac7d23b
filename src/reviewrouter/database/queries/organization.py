"""Organization, repository, and escalation policy query functions.

Like every module in this package, these functions never open or commit
transactions. Callers wrap them in ``async with session.begin():`` so that
routing and escalation can compose several queries atomically.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.database.models.organization import (
    EscalationPolicy,
    FallbackStrategy,
    Organization,
    Repository,
)
from reviewrouter.escalation.state_machine import EscalationThresholds

logger = structlog.get_logger(__name__)


async def create_organization(
    session: AsyncSession,
    name: str,
    timezone: str = "UTC",
    fallback_strategy: FallbackStrategy = FallbackStrategy.default_reviewer,
    default_reviewer_id: UUID | None = None,
) -> Organization:
    """Create a new organization.

    Args:
        session: Active async database session.
        name: Display name.
        timezone: IANA timezone name.
        fallback_strategy: Behaviour when no rule matches.
        default_reviewer_id: Organization default reviewer.

    Returns:
        The newly created Organization instance.
    """
    organization = Organization(
        name=name,
        timezone=timezone,
        fallback_strategy=fallback_strategy,
        default_reviewer_id=default_reviewer_id,
    )
    session.add(organization)
    await session.flush()
    logger.info("organization_created", organization_id=str(organization.id), name=name)
    return organization


async def get_organization(session: AsyncSession, organization_id: UUID) -> Organization | None:
    """Retrieve an organization by ID."""
    return await session.get(Organization, organization_id)


async def update_organization(
    session: AsyncSession,
    organization_id: UUID,
    **kwargs: Any,
) -> Organization | None:
    """Update routing-related organization fields.

    Args:
        session: Active async database session.
        organization_id: UUID of the organization to update.
        **kwargs: Column values to set (timezone, fallback_strategy,
            default_reviewer_id, name).

    Returns:
        The updated Organization, or None if it does not exist.
    """
    organization = await session.get(Organization, organization_id)
    if organization is None:
        return None
    for key, value in kwargs.items():
        setattr(organization, key, value)
    await session.flush()
    return organization


async def create_repository(
    session: AsyncSession,
    organization_id: UUID,
    full_name: str,
    default_reviewer_id: UUID | None = None,
) -> Repository:
    """Register a repository for an organization."""
    repository = Repository(
        organization_id=organization_id,
        full_name=full_name,
        default_reviewer_id=default_reviewer_id,
    )
    session.add(repository)
    await session.flush()
    return repository


async def get_repository(
    session: AsyncSession, organization_id: UUID, full_name: str
) -> Repository | None:
    """Look up a repository by name, case-insensitively."""
    stmt = select(Repository).where(
        Repository.organization_id == organization_id,
        func.lower(Repository.full_name) == full_name.lower(),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_repositories(session: AsyncSession, organization_id: UUID) -> list[Repository]:
    """List an organization's repositories ordered by name."""
    stmt = (
        select(Repository)
        .where(Repository.organization_id == organization_id)
        .order_by(Repository.full_name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_escalation_policy(
    session: AsyncSession, organization_id: UUID
) -> EscalationPolicy | None:
    """Retrieve the organization's escalation policy, if configured."""
    stmt = select(EscalationPolicy).where(EscalationPolicy.organization_id == organization_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_escalation_policy(
    session: AsyncSession,
    organization_id: UUID,
    reminder_hours: float,
    escalation_hours: float,
) -> EscalationPolicy:
    """Create or replace the organization's escalation thresholds."""
    policy = await get_escalation_policy(session, organization_id)
    if policy is None:
        policy = EscalationPolicy(organization_id=organization_id)
        session.add(policy)
    policy.reminder_hours = reminder_hours
    policy.escalation_hours = escalation_hours
    await session.flush()
    return policy


async def get_escalation_thresholds(
    session: AsyncSession,
    organization_id: UUID,
    default: EscalationThresholds,
) -> EscalationThresholds:
    """Resolve the thresholds that apply to an organization.

    Args:
        session: Active async database session.
        organization_id: Organization to resolve.
        default: Thresholds used when the organization has no policy.

    Returns:
        The organization's policy thresholds, or ``default``.
    """
    policy = await get_escalation_policy(session, organization_id)
    if policy is None:
        return default
    return EscalationThresholds(
        reminder_hours=policy.reminder_hours,
        escalation_hours=policy.escalation_hours,
    )


async def get_minimum_reminder_hours(session: AsyncSession, default: float) -> float:
    """Smallest reminder threshold across all policies and the default."""
    result = await session.execute(select(func.min(EscalationPolicy.reminder_hours)))
    smallest = result.scalar_one_or_none()
    if smallest is None:
        return default
    return min(float(smallest), default)

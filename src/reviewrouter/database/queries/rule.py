"""Routing rule query functions for ReviewRouter.

Provides rule CRUD, the priority rewrite used by reorder, the persisted
round-robin cursor, and ``load_rule_set`` which builds the immutable
RuleSet served by the rule cache.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.database.models.organization import Organization, Repository
from reviewrouter.database.models.rule import RotationCursor, RoutingRule
from reviewrouter.errors import NotFoundError
from reviewrouter.routing.conditions import parse_conditions
from reviewrouter.routing.directive import parse_directive
from reviewrouter.routing.models import RuleSet, RuleSnapshot

logger = structlog.get_logger(__name__)


async def create_rule(
    session: AsyncSession,
    organization_id: UUID,
    name: str,
    priority: int,
    directive: dict[str, Any],
    conditions: list[dict[str, Any]] | None = None,
    repository_full_name: str | None = None,
    description: str | None = None,
    is_active: bool = True,
) -> RoutingRule:
    """Create a routing rule.

    Args:
        session: Active async database session.
        organization_id: Owning organization.
        name: Rule name.
        priority: Evaluation order, lower first.
        directive: Directive document.
        conditions: Condition documents (AND semantics).
        repository_full_name: Optional repository scope.
        description: Optional description.
        is_active: Whether the rule participates in routing.

    Returns:
        The newly created RoutingRule instance.
    """
    rule = RoutingRule(
        organization_id=organization_id,
        name=name,
        priority=priority,
        directive=directive,
        conditions=conditions or [],
        repository_full_name=repository_full_name,
        description=description,
        is_active=is_active,
    )
    session.add(rule)
    await session.flush()
    logger.info(
        "rule_created",
        rule_id=str(rule.id),
        organization_id=str(organization_id),
        priority=priority,
    )
    return rule


async def get_rule(session: AsyncSession, rule_id: UUID) -> RoutingRule | None:
    """Retrieve a rule by ID."""
    return await session.get(RoutingRule, rule_id)


async def list_rules(
    session: AsyncSession,
    organization_id: UUID,
    active_only: bool = False,
) -> list[RoutingRule]:
    """List an organization's rules in evaluation order.

    Rules are ordered by priority, then creation time, then id.
    """
    stmt = select(RoutingRule).where(RoutingRule.organization_id == organization_id)
    if active_only:
        stmt = stmt.where(RoutingRule.is_active.is_(True))
    stmt = stmt.order_by(RoutingRule.priority, RoutingRule.created_at, RoutingRule.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_rule_by_priority(
    session: AsyncSession, organization_id: UUID, priority: int
) -> RoutingRule | None:
    """Find the rule holding a given priority in an organization."""
    stmt = select(RoutingRule).where(
        RoutingRule.organization_id == organization_id,
        RoutingRule.priority == priority,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def update_rule(session: AsyncSession, rule_id: UUID, **kwargs: Any) -> RoutingRule | None:
    """Update rule columns.

    Returns:
        The updated rule, or None if it does not exist.
    """
    rule = await session.get(RoutingRule, rule_id)
    if rule is None:
        return None
    for key, value in kwargs.items():
        setattr(rule, key, value)
    await session.flush()
    return rule


async def delete_rule(session: AsyncSession, rule_id: UUID) -> bool:
    """Delete a rule. Returns True if a row was deleted."""
    result = await session.execute(delete(RoutingRule).where(RoutingRule.id == rule_id))
    return result.rowcount == 1


async def set_rule_priorities(
    session: AsyncSession,
    organization_id: UUID,
    priorities: Mapping[UUID, int],
) -> None:
    """Rewrite rule priorities without violating the per-org unique constraint.

    Every rule is first moved to a distinct placeholder above all current and
    target priorities, then to its final value, so no intermediate state
    holds two rules at one priority.

    Args:
        session: Active async database session.
        organization_id: Organization whose rules are rewritten.
        priorities: Final priority per rule id.
    """
    rules = await list_rules(session, organization_id)
    offset = max([r.priority for r in rules] + list(priorities.values()) + [0]) + 1

    for index, rule_id in enumerate(priorities):
        await session.execute(
            update(RoutingRule)
            .where(
                RoutingRule.id == rule_id,
                RoutingRule.organization_id == organization_id,
            )
            .values(priority=offset + index)
            .execution_options(synchronize_session=False)
        )
    for rule_id, priority in priorities.items():
        await session.execute(
            update(RoutingRule)
            .where(
                RoutingRule.id == rule_id,
                RoutingRule.organization_id == organization_id,
            )
            .values(priority=priority)
            .execution_options(synchronize_session=False)
        )
    # Identity-mapped rules still carry their old priority
    for rule in rules:
        if rule.id in priorities:
            await session.refresh(rule)


async def advance_rotation_cursor(
    session: AsyncSession, rule_id: UUID, pool_size: int
) -> int:
    """Return the next round-robin index for a rule and advance the cursor.

    The cursor row is locked with ``SELECT ... FOR UPDATE`` on backends that
    support it, so concurrent routings of the same rule serialize on it.

    Args:
        session: Active async database session (caller's transaction).
        rule_id: Rule whose rotation is advanced.
        pool_size: Number of eligible reviewers in the rotation.

    Returns:
        Index into the eligible pool, in ``range(pool_size)``.
    """
    if pool_size <= 0:
        raise ValueError("pool_size must be positive")

    stmt = select(RotationCursor).where(RotationCursor.rule_id == rule_id).with_for_update()
    result = await session.execute(stmt)
    cursor = result.scalar_one_or_none()
    if cursor is None:
        cursor = RotationCursor(rule_id=rule_id, position=0)
        session.add(cursor)

    index = cursor.position % pool_size
    cursor.position = (index + 1) % pool_size
    await session.flush()
    return index


def _snapshot(rule: RoutingRule) -> RuleSnapshot:
    try:
        directive = parse_directive(rule.directive)
    except ValidationError as e:
        logger.warning("rule_directive_invalid", rule_id=str(rule.id), error=str(e))
        directive = None
    return RuleSnapshot(
        id=rule.id,
        organization_id=rule.organization_id,
        name=rule.name,
        priority=rule.priority,
        created_at=rule.created_at,
        conditions=parse_conditions(rule.conditions),
        directive=directive,
        repository_full_name=rule.repository_full_name,
        is_active=rule.is_active,
    )


async def load_rule_set(session: AsyncSession, organization_id: UUID) -> RuleSet:
    """Load an organization's active rules and routing profile.

    Args:
        session: Active async database session.
        organization_id: Organization to load.

    Returns:
        Immutable RuleSet with rules in evaluation order.

    Raises:
        NotFoundError: If the organization does not exist.
    """
    organization = await session.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("organization", str(organization_id))

    rules = await list_rules(session, organization_id, active_only=True)

    repo_stmt = select(Repository.full_name, Repository.default_reviewer_id).where(
        Repository.organization_id == organization_id,
        Repository.default_reviewer_id.is_not(None),
    )
    repo_rows = (await session.execute(repo_stmt)).all()

    return RuleSet(
        organization_id=organization_id,
        rules=tuple(_snapshot(rule) for rule in rules),
        timezone=organization.timezone,
        fallback_strategy=organization.fallback_strategy,
        default_reviewer_id=organization.default_reviewer_id,
        repository_defaults=tuple((name.lower(), reviewer_id) for name, reviewer_id in repo_rows),
    )

"""Rule management for ReviewRouter.

RuleService is the only supported way to mutate routing configuration:
rules, their order, repository default reviewers, organization routing
settings, and escalation policies. Every successful mutation invalidates
the organization's RuleCache entry before returning, which is what keeps
the TTL-less cache correct.

Priorities are unique per organization. Creating or updating a rule onto
a taken priority is rejected with DuplicatePriorityError; reorder rewrites
all priorities to ``0..n-1`` in one transaction and must name every rule of
the organization exactly once.
"""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Sequence
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.database.models.organization import (
    EscalationPolicy,
    FallbackStrategy,
    Organization,
    Repository,
)
from reviewrouter.database.models.rule import RoutingRule
from reviewrouter.database.queries import organization as org_queries
from reviewrouter.database.queries import reviewer as reviewer_queries
from reviewrouter.database.queries import rule as rule_queries
from reviewrouter.errors import (
    DuplicatePriorityError,
    InvalidReorderError,
    NotFoundError,
    RuleValidationError,
)
from reviewrouter.escalation.state_machine import EscalationThresholds
from reviewrouter.routing.cache import RuleCache
from reviewrouter.routing.conditions import validate_conditions
from reviewrouter.routing.directive import dump_directive, parse_directive

logger = structlog.get_logger(__name__)

_UNSET: Any = object()


class RuleService:
    """Creates, updates, deletes, and reorders routing rules.

    Args:
        session_factory: Factory for store sessions.
        cache: Rule cache to invalidate after each mutation.
        default_fallback_strategy: Fallback given to new organizations.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: RuleCache,
        default_fallback_strategy: FallbackStrategy | str = FallbackStrategy.default_reviewer,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache
        self.default_fallback_strategy = self._parse_fallback(default_fallback_strategy)

    async def create_organization(
        self,
        name: str,
        timezone: str = "UTC",
        fallback_strategy: FallbackStrategy | str | None = None,
    ) -> Organization:
        """Create an organization with the configured default fallback.

        Raises:
            RuleValidationError: If the timezone or fallback strategy is unknown.
        """
        self._validate_timezone(timezone)
        strategy = (
            self.default_fallback_strategy
            if fallback_strategy is None
            else self._parse_fallback(fallback_strategy)
        )
        async with self.session_factory() as session:
            async with session.begin():
                organization = await org_queries.create_organization(
                    session, name, timezone=timezone, fallback_strategy=strategy
                )

        logger.info(
            "organization_created",
            organization_id=str(organization.id),
            fallback_strategy=strategy.value,
        )
        return organization

    async def list_rules(self, organization_id: uuid.UUID) -> list[RoutingRule]:
        """List all rules (active and inactive) in evaluation order."""
        async with self.session_factory() as session:
            await self._require_organization(session, organization_id)
            return await rule_queries.list_rules(session, organization_id)

    async def create_rule(
        self,
        organization_id: uuid.UUID,
        name: str,
        directive: dict[str, Any],
        conditions: list[dict[str, Any]] | None = None,
        priority: int | None = None,
        repository_full_name: str | None = None,
        description: str | None = None,
        is_active: bool = True,
    ) -> RoutingRule:
        """Create a rule.

        Args:
            organization_id: Owning organization.
            name: Rule name.
            directive: Directive document (strategy + reviewer_ids).
            conditions: Condition documents.
            priority: Explicit priority; None appends after the last rule.
            repository_full_name: Optional repository scope.
            description: Optional description.
            is_active: Whether the rule participates in routing.

        Returns:
            The created rule.

        Raises:
            NotFoundError: If the organization does not exist.
            RuleValidationError: If conditions, directive, or reviewers are invalid.
            DuplicatePriorityError: If the priority is already taken.
        """
        clean_conditions = self._validate_conditions(conditions or [])
        clean_directive = self._validate_directive(directive)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._require_organization(session, organization_id)
                    await self._validate_reviewers(session, organization_id, clean_directive)
                    if priority is None:
                        existing = await rule_queries.list_rules(session, organization_id)
                        priority = max((r.priority for r in existing), default=-1) + 1
                    else:
                        await self._check_priority_free(session, organization_id, priority)
                    rule = await rule_queries.create_rule(
                        session,
                        organization_id=organization_id,
                        name=name,
                        priority=priority,
                        directive=clean_directive,
                        conditions=clean_conditions,
                        repository_full_name=repository_full_name,
                        description=description,
                        is_active=is_active,
                    )
        except IntegrityError as e:
            raise DuplicatePriorityError(str(organization_id), priority or 0) from e

        self.cache.invalidate(organization_id)
        return rule

    async def update_rule(
        self,
        organization_id: uuid.UUID,
        rule_id: uuid.UUID,
        name: str = _UNSET,
        directive: dict[str, Any] = _UNSET,
        conditions: list[dict[str, Any]] = _UNSET,
        priority: int = _UNSET,
        repository_full_name: str | None = _UNSET,
        description: str | None = _UNSET,
        is_active: bool = _UNSET,
    ) -> RoutingRule:
        """Update selected fields of a rule.

        Only the arguments that are passed are changed.

        Raises:
            NotFoundError: If the rule does not belong to the organization.
            RuleValidationError: If the new values are invalid.
            DuplicatePriorityError: If the new priority is already taken.
        """
        changes: dict[str, Any] = {}
        if name is not _UNSET:
            changes["name"] = name
        if description is not _UNSET:
            changes["description"] = description
        if repository_full_name is not _UNSET:
            changes["repository_full_name"] = repository_full_name
        if is_active is not _UNSET:
            changes["is_active"] = is_active
        if conditions is not _UNSET:
            changes["conditions"] = self._validate_conditions(conditions)
        if directive is not _UNSET:
            changes["directive"] = self._validate_directive(directive)
        if priority is not _UNSET:
            if priority < 0:
                raise RuleValidationError("priority must be >= 0")
            changes["priority"] = priority

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    rule = await self._require_rule(session, organization_id, rule_id)
                    if "directive" in changes:
                        await self._validate_reviewers(
                            session, organization_id, changes["directive"]
                        )
                    if "priority" in changes and changes["priority"] != rule.priority:
                        await self._check_priority_free(
                            session, organization_id, changes["priority"]
                        )
                    rule = await rule_queries.update_rule(session, rule_id, **changes)
        except IntegrityError as e:
            raise DuplicatePriorityError(
                str(organization_id), changes.get("priority", -1)
            ) from e

        self.cache.invalidate(organization_id)
        logger.info("rule_updated", rule_id=str(rule_id), fields=sorted(changes))
        return rule

    async def delete_rule(self, organization_id: uuid.UUID, rule_id: uuid.UUID) -> None:
        """Delete a rule.

        Assignments created by the rule keep its id; it resolves to an
        unknown rule from then on.

        Raises:
            NotFoundError: If the rule does not belong to the organization.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await self._require_rule(session, organization_id, rule_id)
                await rule_queries.delete_rule(session, rule_id)

        self.cache.invalidate(organization_id)
        logger.info("rule_deleted", rule_id=str(rule_id), organization_id=str(organization_id))

    async def reorder_rules(
        self,
        organization_id: uuid.UUID,
        rule_ids: Sequence[uuid.UUID],
    ) -> list[RoutingRule]:
        """Set rule priorities to their position in ``rule_ids``.

        The list must contain every rule of the organization exactly once;
        anything else is rejected without changing any priority.

        Returns:
            The organization's rules in their new order.

        Raises:
            NotFoundError: If the organization does not exist.
            InvalidReorderError: If the list does not cover exactly the
                organization's rules.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await self._require_organization(session, organization_id)
                existing = await rule_queries.list_rules(session, organization_id)
                existing_ids = {r.id for r in existing}

                counts = Counter(rule_ids)
                duplicated = [str(rid) for rid, n in counts.items() if n > 1]
                unknown = [str(rid) for rid in counts if rid not in existing_ids]
                missing = [str(rid) for rid in existing_ids if rid not in counts]
                if duplicated or unknown or missing:
                    raise InvalidReorderError(
                        str(organization_id),
                        missing=missing,
                        unknown=unknown,
                        duplicated=duplicated,
                    )

                await rule_queries.set_rule_priorities(
                    session,
                    organization_id,
                    {rule_id: index for index, rule_id in enumerate(rule_ids)},
                )
                reordered = await rule_queries.list_rules(session, organization_id)

        self.cache.invalidate(organization_id)
        logger.info(
            "rules_reordered",
            organization_id=str(organization_id),
            rule_count=len(rule_ids),
        )
        return reordered

    async def update_organization_routing(
        self,
        organization_id: uuid.UUID,
        timezone: str = _UNSET,
        fallback_strategy: FallbackStrategy = _UNSET,
        default_reviewer_id: uuid.UUID | None = _UNSET,
    ) -> Organization:
        """Change the organization's routing profile.

        Raises:
            NotFoundError: If the organization does not exist.
            RuleValidationError: If the timezone or reviewer is invalid.
        """
        changes: dict[str, Any] = {}
        if timezone is not _UNSET:
            self._validate_timezone(timezone)
            changes["timezone"] = timezone
        if fallback_strategy is not _UNSET:
            changes["fallback_strategy"] = self._parse_fallback(fallback_strategy)
        if default_reviewer_id is not _UNSET:
            changes["default_reviewer_id"] = default_reviewer_id

        async with self.session_factory() as session:
            async with session.begin():
                await self._require_organization(session, organization_id)
                if changes.get("default_reviewer_id") is not None:
                    await self._require_reviewer(
                        session, organization_id, changes["default_reviewer_id"]
                    )
                organization = await org_queries.update_organization(
                    session, organization_id, **changes
                )

        self.cache.invalidate(organization_id)
        logger.info(
            "organization_routing_updated",
            organization_id=str(organization_id),
            fields=sorted(changes),
        )
        return organization

    async def set_repository_default_reviewer(
        self,
        organization_id: uuid.UUID,
        full_name: str,
        default_reviewer_id: uuid.UUID | None,
    ) -> Repository:
        """Register a repository or change its default reviewer.

        Raises:
            NotFoundError: If the organization or reviewer does not exist.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await self._require_organization(session, organization_id)
                if default_reviewer_id is not None:
                    await self._require_reviewer(session, organization_id, default_reviewer_id)
                repository = await org_queries.get_repository(session, organization_id, full_name)
                if repository is None:
                    repository = await org_queries.create_repository(
                        session, organization_id, full_name, default_reviewer_id
                    )
                else:
                    repository.default_reviewer_id = default_reviewer_id
                    await session.flush()

        self.cache.invalidate(organization_id)
        return repository

    async def set_escalation_policy(
        self,
        organization_id: uuid.UUID,
        reminder_hours: float,
        escalation_hours: float,
    ) -> EscalationPolicy:
        """Set the organization's reminder and escalation thresholds.

        Raises:
            NotFoundError: If the organization does not exist.
            RuleValidationError: Unless escalation_hours > reminder_hours > 0.
        """
        try:
            EscalationThresholds(reminder_hours, escalation_hours)
        except ValueError as e:
            raise RuleValidationError(str(e)) from e

        async with self.session_factory() as session:
            async with session.begin():
                await self._require_organization(session, organization_id)
                policy = await org_queries.upsert_escalation_policy(
                    session, organization_id, reminder_hours, escalation_hours
                )

        self.cache.invalidate(organization_id)
        logger.info(
            "escalation_policy_updated",
            organization_id=str(organization_id),
            reminder_hours=reminder_hours,
            escalation_hours=escalation_hours,
        )
        return policy

    # -- validation helpers ---------------------------------------------

    @staticmethod
    def _parse_fallback(value: FallbackStrategy | str) -> FallbackStrategy:
        try:
            return FallbackStrategy(value)
        except ValueError as e:
            raise RuleValidationError(f"Unknown fallback strategy: {value}") from e

    @staticmethod
    def _validate_conditions(conditions: list[dict[str, Any]]) -> list[dict[str, Any]]:
        try:
            return validate_conditions(conditions)
        except ValidationError as e:
            raise RuleValidationError(f"Invalid conditions: {e}") from e

    @staticmethod
    def _validate_directive(directive: dict[str, Any]) -> dict[str, Any]:
        try:
            return dump_directive(parse_directive(directive))
        except ValidationError as e:
            raise RuleValidationError(f"Invalid directive: {e}") from e

    @staticmethod
    def _validate_timezone(timezone: str) -> None:
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise RuleValidationError(f"Unknown timezone: {timezone}") from e

    @staticmethod
    async def _require_organization(
        session: AsyncSession, organization_id: uuid.UUID
    ) -> Organization:
        organization = await org_queries.get_organization(session, organization_id)
        if organization is None:
            raise NotFoundError("organization", str(organization_id))
        return organization

    @staticmethod
    async def _require_rule(
        session: AsyncSession, organization_id: uuid.UUID, rule_id: uuid.UUID
    ) -> RoutingRule:
        rule = await rule_queries.get_rule(session, rule_id)
        if rule is None or rule.organization_id != organization_id:
            raise NotFoundError("rule", str(rule_id))
        return rule

    @staticmethod
    async def _require_reviewer(
        session: AsyncSession, organization_id: uuid.UUID, reviewer_id: uuid.UUID
    ) -> None:
        reviewer = await reviewer_queries.get_reviewer(session, reviewer_id)
        if reviewer is None or reviewer.organization_id != organization_id:
            raise NotFoundError("reviewer", str(reviewer_id))

    @staticmethod
    async def _validate_reviewers(
        session: AsyncSession,
        organization_id: uuid.UUID,
        directive: dict[str, Any],
    ) -> None:
        wanted = {uuid.UUID(rid) for rid in directive["reviewer_ids"]}
        found = await reviewer_queries.get_reviewers(session, organization_id, wanted)
        unknown = wanted - {r.id for r in found}
        if unknown:
            raise RuleValidationError(
                f"Unknown reviewers for organization {organization_id}: "
                f"{sorted(str(u) for u in unknown)}"
            )

    @staticmethod
    async def _check_priority_free(
        session: AsyncSession, organization_id: uuid.UUID, priority: int
    ) -> None:
        if priority < 0:
            raise RuleValidationError("priority must be >= 0")
        taken = await rule_queries.find_rule_by_priority(session, organization_id, priority)
        if taken is not None:
            raise DuplicatePriorityError(str(organization_id), priority)

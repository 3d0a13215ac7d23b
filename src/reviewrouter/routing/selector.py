"""Reviewer selection for routing directives.

Turns a directive into concrete reviewers. Candidates are always narrowed
to active reviewers of the event's organization, and the pull request
author is never assigned to review their own change.

Strategies:
    explicit: every listed reviewer; if any is ineligible, the least busy
        of the remaining eligible ones.
    round_robin: the next reviewer in a persisted per-rule rotation.
    least_busy: the reviewer with the fewest pending or reminded
        assignments, ties broken by reviewer id.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.database.models.reviewer import Reviewer
from reviewrouter.database.queries.reviewer import get_reviewer_workload, get_reviewers
from reviewrouter.database.queries.rule import advance_rotation_cursor
from reviewrouter.errors import NoEligibleReviewer
from reviewrouter.routing.directive import (
    Directive,
    ExplicitDirective,
    LeastBusyDirective,
    RoundRobinDirective,
)
from reviewrouter.routing.models import SelectedReviewer

logger = structlog.get_logger(__name__)


def _selected(reviewer: Reviewer) -> SelectedReviewer:
    return SelectedReviewer(
        id=reviewer.id,
        name=reviewer.name,
        github_username=reviewer.github_username,
        slack_user_id=reviewer.slack_user_id,
        email=reviewer.email,
    )


def _eligible(
    reviewers: Iterable[Reviewer], exclude_usernames: Iterable[str]
) -> list[Reviewer]:
    excluded = {u.lower() for u in exclude_usernames}
    return [r for r in reviewers if r.github_username.lower() not in excluded]


class ReviewerSelector:
    """Resolves directives to reviewers inside the caller's transaction."""

    async def select(
        self,
        session: AsyncSession,
        directive: Directive,
        organization_id: uuid.UUID,
        rule_id: uuid.UUID | None = None,
        exclude_usernames: Sequence[str] = (),
    ) -> list[SelectedReviewer]:
        """Select reviewers for a directive.

        Args:
            session: Store session; round-robin cursors advance in its
                transaction.
            directive: Directive to resolve.
            organization_id: Organization scope of eligible reviewers.
            rule_id: Rule that produced the directive (required for
                round-robin rotation; None for fallback directives).
            exclude_usernames: Logins that must not be selected (the author).

        Returns:
            Selected reviewers, in directive order for explicit directives.

        Raises:
            NoEligibleReviewer: If no listed reviewer is eligible.
        """
        candidates = await get_reviewers(
            session, organization_id, directive.reviewer_ids, active_only=True
        )
        eligible = _eligible(candidates, exclude_usernames)
        position = {rid: i for i, rid in enumerate(directive.reviewer_ids)}
        eligible.sort(key=lambda r: position[r.id])

        if not eligible:
            logger.warning(
                "no_eligible_reviewer",
                organization_id=str(organization_id),
                rule_id=str(rule_id) if rule_id else None,
                strategy=directive.strategy,
                listed=len(directive.reviewer_ids),
            )
            raise NoEligibleReviewer(
                str(organization_id),
                str(rule_id) if rule_id else None,
                reason="no_active_reviewer" if not candidates else "author_only",
            )

        if isinstance(directive, ExplicitDirective):
            if len(eligible) == len(set(directive.reviewer_ids)):
                return [_selected(r) for r in eligible]
            logger.info(
                "explicit_directive_fell_through",
                rule_id=str(rule_id) if rule_id else None,
                eligible=len(eligible),
                listed=len(set(directive.reviewer_ids)),
            )
            return [await self._least_busy(session, organization_id, eligible)]

        if isinstance(directive, RoundRobinDirective) and rule_id is not None:
            index = await advance_rotation_cursor(session, rule_id, len(eligible))
            chosen = eligible[index]
            logger.debug(
                "round_robin_selected",
                rule_id=str(rule_id),
                reviewer_id=str(chosen.id),
                index=index,
                pool_size=len(eligible),
            )
            return [_selected(chosen)]

        return [await self._least_busy(session, organization_id, eligible)]

    async def select_from_pool(
        self,
        session: AsyncSession,
        organization_id: uuid.UUID,
        exclude_usernames: Sequence[str] = (),
    ) -> list[SelectedReviewer]:
        """Select the least busy active reviewer of the whole organization.

        Raises:
            NoEligibleReviewer: If the organization has no eligible reviewer.
        """
        reviewers = await get_reviewers(session, organization_id, active_only=True)
        eligible = _eligible(reviewers, exclude_usernames)
        if not eligible:
            raise NoEligibleReviewer(str(organization_id), None, reason="empty_pool")
        directive = LeastBusyDirective(reviewer_ids=tuple(r.id for r in eligible))
        return await self.select(
            session, directive, organization_id, exclude_usernames=exclude_usernames
        )

    async def _least_busy(
        self,
        session: AsyncSession,
        organization_id: uuid.UUID,
        eligible: Sequence[Reviewer],
    ) -> SelectedReviewer:
        workload = await get_reviewer_workload(
            session, organization_id, [r.id for r in eligible]
        )
        chosen = min(eligible, key=lambda r: (workload.get(r.id, 0), str(r.id)))
        logger.debug(
            "least_busy_selected",
            reviewer_id=str(chosen.id),
            open_assignments=workload.get(chosen.id, 0),
        )
        return _selected(chosen)

"""Routing pipeline: event in, persisted assignments out.

RoutingService is the single entry point used by the HTTP endpoint and the
CLI. For each event it asks the engine for a decision, then runs the
idempotency check, reviewer selection, and assignment write in one store
transaction bounded by the configured timeout.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.clock import Clock, utc_now
from reviewrouter.database.connection import bounded_store_call
from reviewrouter.database.models.organization import FallbackStrategy
from reviewrouter.database.queries.assignment import record_routing_failure
from reviewrouter.errors import NoEligibleReviewer
from reviewrouter.logging import bind_routing_context, clear_routing_context
from reviewrouter.routing.directive import Directive
from reviewrouter.routing.engine import RoutingEngine
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.models import (
    RoutingDecision,
    RoutingOutcome,
    RoutingResult,
    SelectedReviewer,
)
from reviewrouter.routing.selector import ReviewerSelector
from reviewrouter.routing.writer import AssignmentWriter, DuplicateAssignment

logger = structlog.get_logger(__name__)


class RoutingService:
    """Routes pull-request events to reviewers.

    Args:
        session_factory: Factory for store sessions.
        engine: Rule engine (owns the rule cache).
        selector: Reviewer selector.
        writer: Assignment writer.
        store_timeout: Upper bound in seconds for the routing transaction.
        clock: Source of the assignment timestamp.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: RoutingEngine,
        selector: ReviewerSelector | None = None,
        writer: AssignmentWriter | None = None,
        store_timeout: float = 10.0,
        clock: Clock = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine
        self.selector = selector or ReviewerSelector()
        self.writer = writer or AssignmentWriter()
        self.store_timeout = store_timeout
        self.clock = clock

    async def route_event(self, event: PullRequestEvent) -> RoutingResult:
        """Route one event and persist the resulting assignments.

        Returns:
            RoutingResult describing what happened. A pull request no
            reviewer can take is reported with outcome
            ``no_eligible_reviewer`` and recorded as a routing failure.

        Raises:
            NotFoundError: If the event's organization does not exist.
            StoreUnavailable: If the store fails or times out.
        """
        bind_routing_context(str(event.organization_id), event.pull_request_id)
        try:
            decision = await self.engine.route(event)
            try:
                result = await bounded_store_call(
                    self._apply(event, decision), self.store_timeout, "route_event"
                )
            except DuplicateAssignment as e:
                logger.info("assignment_duplicate_delivery", routing_round=e.routing_round)
                return RoutingResult(RoutingOutcome.duplicate, decision=decision)
            except NoEligibleReviewer as e:
                await bounded_store_call(
                    self._record_failure(event, e), self.store_timeout, "record_routing_failure"
                )
                logger.warning(
                    "routing_failed",
                    reason=e.reason,
                    rule_id=e.rule_id,
                )
                return RoutingResult(
                    RoutingOutcome.no_eligible_reviewer, decision=decision, reason=e.reason
                )

            logger.info(
                "event_routed",
                outcome=result.outcome.value,
                rule_id=str(decision.rule_id) if decision.rule_id else None,
                reviewer_count=len(result.reviewers),
            )
            return result
        finally:
            clear_routing_context()

    async def _apply(self, event: PullRequestEvent, decision: RoutingDecision) -> RoutingResult:
        async with self.session_factory() as session:
            async with session.begin():
                check = await self.writer.check(session, event)
                if not check.should_assign:
                    return RoutingResult(
                        RoutingOutcome.duplicate,
                        decision=decision,
                        assignment_ids=tuple(a.id for a in check.existing),
                        routing_round=check.routing_round,
                    )

                if decision.assigns_nobody:
                    return RoutingResult(
                        RoutingOutcome.unassigned,
                        decision=decision,
                        reason=(
                            "no_default_reviewer"
                            if decision.fallback is FallbackStrategy.default_reviewer
                            else "fallback_none"
                        ),
                    )

                exclude = (event.author,)
                if decision.directive is None:
                    reviewers = await self.selector.select_from_pool(
                        session, event.organization_id, exclude_usernames=exclude
                    )
                else:
                    reviewers = await self._select(session, event, decision)

                assignments = await self.writer.assign(
                    session,
                    event,
                    decision,
                    reviewers,
                    routing_round=check.routing_round,
                    now=self.clock(),
                )
                return RoutingResult(
                    RoutingOutcome.assigned,
                    decision=decision,
                    assignment_ids=tuple(a.id for a in assignments),
                    reviewers=tuple(reviewers),
                    routing_round=check.routing_round,
                )

    async def _select(
        self,
        session: AsyncSession,
        event: PullRequestEvent,
        decision: RoutingDecision,
    ) -> list[SelectedReviewer]:
        """Resolve the decision's directive, then each alternative in order.

        Raises:
            NoEligibleReviewer: From the last directive when none yields
                an eligible reviewer.
        """

        async def select(directive: Directive) -> list[SelectedReviewer]:
            return await self.selector.select(
                session,
                directive,
                event.organization_id,
                rule_id=decision.rule_id,
                exclude_usernames=(event.author,),
            )

        *earlier, last = (decision.directive, *decision.alternatives)
        for directive in earlier:
            try:
                return await select(directive)
            except NoEligibleReviewer as e:
                logger.info(
                    "default_reviewer_skipped",
                    reviewer_ids=[str(r) for r in directive.reviewer_ids],
                    reason=e.reason,
                )
        return await select(last)

    async def _record_failure(self, event: PullRequestEvent, error: NoEligibleReviewer) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await record_routing_failure(
                    session,
                    organization_id=event.organization_id,
                    pull_request_id=event.pull_request_id,
                    reason=error.reason,
                    rule_id=uuid.UUID(error.rule_id) if error.rule_id else None,
                )

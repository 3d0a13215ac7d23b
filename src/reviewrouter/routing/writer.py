"""Idempotent persistence of review assignments.

Event sources deliver at least once, so the writer decides from what is
already stored whether an event creates assignments:

- no assignment for the pull request yet: routing round 1;
- an open (pending, reminded, escalated) assignment in the latest round:
  duplicate, nothing is written;
- the latest round is fully reviewed and the event is newer than the last
  review: a new routing round (re-review);
- otherwise: duplicate.

``check`` runs before reviewer selection so a re-delivered event never
advances a round-robin cursor. Deliveries that race past ``check`` are
stopped by ``assign``, which claims the round in ``pull_request_rounds``
before writing; the losing transaction rolls back with its cursor advance.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.clock import as_utc
from reviewrouter.database.models.assignment import ACTIVE_STATUSES, ReviewAssignment
from reviewrouter.database.queries.assignment import (
    claim_routing_round,
    create_assignment,
    get_latest_round,
)
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.models import RoutingDecision, SelectedReviewer

logger = structlog.get_logger(__name__)


class AssignmentVerdict(enum.Enum):
    """Whether an event should produce assignments."""

    new = "new"
    rereview = "rereview"
    duplicate = "duplicate"


@dataclass(frozen=True)
class AssignmentCheck:
    """Result of the idempotency check for one event.

    Attributes:
        verdict: What the writer will do with the event.
        routing_round: Round new assignments would be written to.
        existing: Assignments of the latest stored round.
    """

    verdict: AssignmentVerdict
    routing_round: int
    existing: tuple[ReviewAssignment, ...] = ()

    @property
    def should_assign(self) -> bool:
        return self.verdict is not AssignmentVerdict.duplicate


class DuplicateAssignment(Exception):
    """A concurrent delivery already wrote this routing round."""

    def __init__(self, pull_request_id: str, routing_round: int) -> None:
        self.pull_request_id = pull_request_id
        self.routing_round = routing_round
        super().__init__(
            f"Assignments for {pull_request_id} round {routing_round} already exist"
        )


class AssignmentWriter:
    """Checks and writes review assignments within the caller's transaction."""

    async def check(self, session: AsyncSession, event: PullRequestEvent) -> AssignmentCheck:
        """Decide whether the event creates assignments and in which round."""
        latest_round, rows = await get_latest_round(session, event.pull_request_id)
        if latest_round == 0:
            return AssignmentCheck(AssignmentVerdict.new, 1)

        existing = tuple(rows)
        if any(row.status in ACTIVE_STATUSES for row in rows):
            return AssignmentCheck(AssignmentVerdict.duplicate, latest_round, existing)

        reviewed = [as_utc(row.reviewed_at) for row in rows if row.reviewed_at is not None]
        last_review = max(reviewed) if reviewed else None
        if last_review is None or event.effective_updated_at > last_review:
            return AssignmentCheck(AssignmentVerdict.rereview, latest_round + 1, existing)
        return AssignmentCheck(AssignmentVerdict.duplicate, latest_round, existing)

    async def assign(
        self,
        session: AsyncSession,
        event: PullRequestEvent,
        decision: RoutingDecision,
        reviewers: list[SelectedReviewer],
        routing_round: int,
        now: datetime,
    ) -> list[ReviewAssignment]:
        """Write one pending assignment per selected reviewer.

        Args:
            session: Store session (caller's transaction).
            event: Pull request being assigned.
            decision: Engine decision (records the winning rule id).
            reviewers: Reviewers returned by the selector.
            routing_round: Round from ``check``.
            now: Assignment timestamp.

        Returns:
            The created assignments.

        Raises:
            DuplicateAssignment: If another delivery already claimed the
                round; the caller must roll back its transaction.
        """
        created: list[ReviewAssignment] = []
        try:
            await claim_routing_round(
                session, event.organization_id, event.pull_request_id, routing_round
            )
            for reviewer in reviewers:
                created.append(
                    await create_assignment(
                        session,
                        organization_id=event.organization_id,
                        pull_request_id=event.pull_request_id,
                        reviewer_id=reviewer.id,
                        assigned_at=now,
                        repository=event.repository,
                        pr_number=event.number,
                        pr_title=event.title,
                        pr_url=event.html_url,
                        rule_id=decision.rule_id,
                        routing_round=routing_round,
                    )
                )
        except IntegrityError as e:
            raise DuplicateAssignment(event.pull_request_id, routing_round) from e

        for assignment in created:
            logger.info(
                "assignment_created",
                assignment_id=str(assignment.id),
                reviewer_id=str(assignment.reviewer_id),
                rule_id=str(decision.rule_id) if decision.rule_id else None,
                routing_round=routing_round,
            )
        return created

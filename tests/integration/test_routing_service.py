"""Integration tests for the routing pipeline.

Tests cover:
- Priority-ordered rule selection
- Idempotent delivery and re-review rounds
- Explicit, round-robin and least-busy reviewer selection
- Organization fallbacks and routing failures
"""

from __future__ import annotations

import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from reviewrouter.database.models.assignment import AssignmentStatus
from reviewrouter.database.models.organization import FallbackStrategy
from reviewrouter.database.queries.assignment import list_assignments, list_routing_failures
from reviewrouter.database.queries.organization import update_organization
from reviewrouter.errors import NotFoundError
from reviewrouter.escalation.reviews import record_review_outcome
from reviewrouter.routing.models import RoutingOutcome, SelectedReviewer
from reviewrouter.routing.service import RoutingService
from reviewrouter.routing.writer import (
    AssignmentCheck,
    AssignmentVerdict,
    AssignmentWriter,
    DuplicateAssignment,
)

pytestmark = pytest.mark.integration

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


async def _set_org_default(session_factory, organization_id: uuid.UUID, reviewer_id) -> None:
    async with session_factory() as session:
        async with session.begin():
            await update_organization(session, organization_id, default_reviewer_id=reviewer_id)


class StaleCheckWriter(AssignmentWriter):
    """Writer whose check runs before any other delivery has committed."""

    async def check(self, session, event) -> AssignmentCheck:
        return AssignmentCheck(AssignmentVerdict.new, 1)


class TestRuleSelection:
    """Test that the lowest-priority matching rule decides."""

    @pytest.mark.asyncio
    async def test_priority_order(
        self, routing_service: RoutingService, seed, make_event, db_session
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        security = await seed.rule(
            org.id, 0, [bob.id], conditions=[{"type": "label", "labels": ["security"]}]
        )
        catch_all = await seed.rule(org.id, 1, [alice.id])

        flagged = await routing_service.route_event(
            make_event(org.id, pull_request_id="acme/api#1", labels=("Security",))
        )
        plain = await routing_service.route_event(
            make_event(org.id, pull_request_id="acme/api#2", number=2)
        )

        assert flagged.outcome is RoutingOutcome.assigned
        assert [r.id for r in flagged.reviewers] == [bob.id]
        assert flagged.decision.rule_id == security.id
        assert [r.id for r in plain.reviewers] == [alice.id]
        assert plain.decision.rule_id == catch_all.id

        rows = await list_assignments(db_session, pull_request_id="acme/api#1")
        assert len(rows) == 1
        assert rows[0].rule_id == security.id
        assert rows[0].status is AssignmentStatus.pending
        assert rows[0].routing_round == 1

    @pytest.mark.asyncio
    async def test_explicit_directive_assigns_everyone_listed(
        self, routing_service: RoutingService, seed, make_event
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await seed.rule(org.id, 0, [bob.id, alice.id])

        result = await routing_service.route_event(make_event(org.id))

        assert [r.id for r in result.reviewers] == [bob.id, alice.id]
        assert len(result.assignment_ids) == 2

    @pytest.mark.asyncio
    async def test_unknown_organization(
        self, routing_service: RoutingService, make_event
    ) -> None:
        with pytest.raises(NotFoundError):
            await routing_service.route_event(make_event(uuid.uuid4()))


class TestIdempotency:
    """Test duplicate deliveries and re-review rounds."""

    @pytest.mark.asyncio
    async def test_duplicate_delivery_creates_nothing(
        self, routing_service: RoutingService, seed, make_event, db_session
    ) -> None:
        """Test that redelivering an event leaves exactly one assignment."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        await seed.rule(org.id, 0, [alice.id])
        event = make_event(org.id)

        first = await routing_service.route_event(event)
        second = await routing_service.route_event(event)
        third = await routing_service.route_event(
            event.model_copy(update={"action": "synchronize"})
        )

        assert first.outcome is RoutingOutcome.assigned
        assert second.outcome is RoutingOutcome.duplicate
        assert third.outcome is RoutingOutcome.duplicate
        assert second.assignment_ids == first.assignment_ids
        assert len(await list_assignments(db_session, pull_request_id=event.pull_request_id)) == 1

    @pytest.mark.asyncio
    async def test_second_write_of_a_round_is_rejected(
        self, routing_service: RoutingService, seed, make_event, session_factory, db_session
    ) -> None:
        """Test that a round cannot be written twice, whichever reviewer is chosen."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await seed.rule(org.id, 0, [alice.id, bob.id], strategy="round_robin")
        event = make_event(org.id)
        first = await routing_service.route_event(event)

        with pytest.raises(DuplicateAssignment) as exc_info:
            async with session_factory() as session:
                async with session.begin():
                    await AssignmentWriter().assign(
                        session,
                        event,
                        first.decision,
                        [SelectedReviewer(id=bob.id, name="Bob", github_username="bob")],
                        routing_round=1,
                        now=T0,
                    )

        assert exc_info.value.routing_round == 1
        rows = await list_assignments(db_session, pull_request_id=event.pull_request_id)
        assert [(r.reviewer_id, r.status) for r in rows] == [
            (alice.id, AssignmentStatus.pending)
        ]

    @pytest.mark.asyncio
    async def test_delivery_racing_past_check_is_duplicate(
        self, routing_service: RoutingService, seed, make_event, session_factory, db_session
    ) -> None:
        """Test a delivery that passed the check before the first one committed.

        It must report a duplicate, write nothing, and leave the rotation
        where the first delivery put it.
        """
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await seed.rule(org.id, 0, [alice.id, bob.id], strategy="round_robin")
        event = make_event(org.id)
        racing = RoutingService(
            session_factory,
            routing_service.engine,
            writer=StaleCheckWriter(),
            clock=lambda: T0,
        )

        first = await routing_service.route_event(event)
        second = await racing.route_event(event)
        next_pr = await routing_service.route_event(
            make_event(org.id, pull_request_id="acme/api#2", number=2)
        )

        assert [r.id for r in first.reviewers] == [alice.id]
        assert second.outcome is RoutingOutcome.duplicate
        assert second.assignment_ids == ()
        rows = await list_assignments(db_session, pull_request_id=event.pull_request_id)
        assert len(rows) == 1
        assert [r.id for r in next_pr.reviewers] == [bob.id]

    @pytest.mark.asyncio
    async def test_rereview_after_review_opens_new_round(
        self, routing_service: RoutingService, seed, make_event, session_factory, db_session
    ) -> None:
        """Test that an update newer than the last review is routed again."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        await seed.rule(org.id, 0, [alice.id])
        event = make_event(org.id)

        first = await routing_service.route_event(event)
        async with session_factory() as session:
            async with session.begin():
                await record_review_outcome(
                    session, first.assignment_ids[0], approved=False, now=T0 + timedelta(hours=2)
                )

        stale = await routing_service.route_event(
            event.model_copy(update={"updated_at": T0 + timedelta(hours=1)})
        )
        assert stale.outcome is RoutingOutcome.duplicate

        rerouted = await routing_service.route_event(
            event.model_copy(
                update={"updated_at": T0 + timedelta(hours=3), "action": "synchronize"}
            )
        )
        assert rerouted.outcome is RoutingOutcome.assigned
        assert rerouted.routing_round == 2

        rows = await list_assignments(db_session, pull_request_id=event.pull_request_id)
        assert sorted((r.routing_round, r.status.value) for r in rows) == [
            (1, "rejected"),
            (2, "pending"),
        ]


class TestSelection:
    """Test reviewer selection strategies against the store."""

    @pytest.mark.asyncio
    async def test_round_robin_is_fair(
        self, routing_service: RoutingService, seed, make_event
    ) -> None:
        """Test that a rotation spreads pull requests evenly."""
        org = await seed.organization()
        reviewers = [await seed.reviewer(org.id, name) for name in ("alice", "bob", "carol")]
        await seed.rule(org.id, 0, [r.id for r in reviewers], strategy="round_robin")

        counts: Counter[uuid.UUID] = Counter()
        sequence = []
        for n in range(1, 301):
            result = await routing_service.route_event(
                make_event(org.id, pull_request_id=f"acme/api#{n}", number=n)
            )
            counts[result.reviewers[0].id] += 1
            sequence.append(result.reviewers[0].id)

        assert set(counts.values()) == {100}
        assert sequence[:3] == [r.id for r in reviewers]

    @pytest.mark.asyncio
    async def test_round_robin_skips_author(
        self, routing_service: RoutingService, seed, make_event
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await seed.rule(org.id, 0, [alice.id, bob.id], strategy="round_robin")

        for n in range(1, 5):
            result = await routing_service.route_event(
                make_event(org.id, pull_request_id=f"acme/api#{n}", number=n, author="Alice")
            )
            assert [r.id for r in result.reviewers] == [bob.id]

    @pytest.mark.asyncio
    async def test_least_busy(self, routing_service: RoutingService, seed, make_event) -> None:
        """Test that the reviewer with fewer open assignments is chosen."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await seed.rule(
            org.id, 0, [alice.id], conditions=[{"type": "label", "labels": ["hotfix"]}]
        )
        await seed.rule(org.id, 1, [alice.id, bob.id], strategy="least_busy")

        await routing_service.route_event(
            make_event(org.id, pull_request_id="acme/api#1", labels=("hotfix",))
        )
        result = await routing_service.route_event(
            make_event(org.id, pull_request_id="acme/api#2", number=2)
        )

        assert [r.id for r in result.reviewers] == [bob.id]

    @pytest.mark.asyncio
    async def test_explicit_falls_through_when_reviewer_inactive(
        self, routing_service: RoutingService, seed, make_event
    ) -> None:
        """Test that an inactive listed reviewer sends the PR to one available reviewer."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        carol = await seed.reviewer(org.id, "carol", is_active=False)
        await seed.rule(org.id, 0, [alice.id, bob.id, carol.id])

        result = await routing_service.route_event(make_event(org.id))

        assert result.outcome is RoutingOutcome.assigned
        expected = min((alice.id, bob.id), key=str)
        assert [r.id for r in result.reviewers] == [expected]

    @pytest.mark.asyncio
    async def test_author_never_reviews_own_pr(
        self, routing_service: RoutingService, seed, make_event
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await seed.rule(org.id, 0, [alice.id, bob.id])

        result = await routing_service.route_event(make_event(org.id, author="alice"))

        assert [r.id for r in result.reviewers] == [bob.id]

    @pytest.mark.asyncio
    async def test_author_only_candidate(
        self, routing_service: RoutingService, seed, make_event, db_session
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        rule = await seed.rule(org.id, 0, [alice.id])

        result = await routing_service.route_event(make_event(org.id, author="alice"))

        assert result.outcome is RoutingOutcome.no_eligible_reviewer
        assert result.reason == "author_only"
        failures = await list_routing_failures(db_session, org.id)
        assert [(f.reason, f.rule_id) for f in failures] == [("author_only", rule.id)]

    @pytest.mark.asyncio
    async def test_all_reviewers_inactive(
        self, routing_service: RoutingService, seed, make_event, db_session
    ) -> None:
        """Test that an unassignable PR is reported and recorded, not dropped."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice", is_active=False)
        bob = await seed.reviewer(org.id, "bob", is_active=False)
        rule = await seed.rule(org.id, 0, [alice.id, bob.id], strategy="round_robin")
        event = make_event(org.id)

        result = await routing_service.route_event(event)

        assert result.outcome is RoutingOutcome.no_eligible_reviewer
        assert result.reason == "no_active_reviewer"
        assert await list_assignments(db_session, pull_request_id=event.pull_request_id) == []
        failures = await list_routing_failures(db_session, org.id)
        assert len(failures) == 1
        assert failures[0].rule_id == rule.id
        assert failures[0].pull_request_id == event.pull_request_id


class TestFallback:
    """Test organization fallback when no rule matches."""

    @pytest.mark.asyncio
    async def test_repository_default_reviewer(
        self, routing_service: RoutingService, seed, make_event, session_factory, db_session
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await _set_org_default(session_factory, org.id, alice.id)
        await seed.repository(org.id, "acme/api", default_reviewer_id=bob.id)

        result = await routing_service.route_event(make_event(org.id))

        assert result.outcome is RoutingOutcome.assigned
        assert result.decision.fallback is FallbackStrategy.default_reviewer
        assert [r.id for r in result.reviewers] == [bob.id]
        rows = await list_assignments(db_session, organization_id=org.id)
        assert rows[0].rule_id is None

    @pytest.mark.asyncio
    async def test_repository_default_author_falls_back_to_organization_default(
        self, routing_service: RoutingService, seed, make_event, session_factory
    ) -> None:
        """Test that a maintainer's own pull request goes to the organization default."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await _set_org_default(session_factory, org.id, alice.id)
        await seed.repository(org.id, "acme/api", default_reviewer_id=bob.id)

        result = await routing_service.route_event(make_event(org.id, author="Bob"))

        assert result.outcome is RoutingOutcome.assigned
        assert [r.id for r in result.reviewers] == [alice.id]

    @pytest.mark.asyncio
    async def test_inactive_repository_default_falls_back_to_organization_default(
        self, routing_service: RoutingService, seed, make_event, session_factory
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob", is_active=False)
        await _set_org_default(session_factory, org.id, alice.id)
        await seed.repository(org.id, "acme/api", default_reviewer_id=bob.id)

        result = await routing_service.route_event(make_event(org.id))

        assert [r.id for r in result.reviewers] == [alice.id]

    @pytest.mark.asyncio
    async def test_no_eligible_default_reviewer(
        self, routing_service: RoutingService, seed, make_event, db_session
    ) -> None:
        org = await seed.organization()
        bob = await seed.reviewer(org.id, "bob")
        await seed.repository(org.id, "acme/api", default_reviewer_id=bob.id)

        result = await routing_service.route_event(make_event(org.id, author="bob"))

        assert result.outcome is RoutingOutcome.no_eligible_reviewer
        assert result.reason == "author_only"
        assert await list_assignments(db_session, organization_id=org.id) == []

    @pytest.mark.asyncio
    async def test_organization_default_reviewer(
        self, routing_service: RoutingService, seed, make_event, session_factory
    ) -> None:
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        await _set_org_default(session_factory, org.id, alice.id)

        result = await routing_service.route_event(make_event(org.id, repository="acme/web"))

        assert [r.id for r in result.reviewers] == [alice.id]

    @pytest.mark.asyncio
    async def test_no_default_reviewer_leaves_pr_unassigned(
        self, routing_service: RoutingService, seed, make_event, db_session
    ) -> None:
        org = await seed.organization()
        await seed.reviewer(org.id, "alice")

        result = await routing_service.route_event(make_event(org.id))

        assert result.outcome is RoutingOutcome.unassigned
        assert result.reason == "no_default_reviewer"
        assert await list_assignments(db_session, organization_id=org.id) == []

    @pytest.mark.asyncio
    async def test_fallback_none(self, routing_service: RoutingService, seed, make_event) -> None:
        org = await seed.organization(fallback_strategy=FallbackStrategy.none)
        await seed.reviewer(org.id, "alice")

        result = await routing_service.route_event(make_event(org.id))

        assert result.outcome is RoutingOutcome.unassigned
        assert result.reason == "fallback_none"

    @pytest.mark.asyncio
    async def test_least_busy_pool(
        self, routing_service: RoutingService, seed, make_event
    ) -> None:
        """Test that the pool fallback picks an active reviewer other than the author."""
        org = await seed.organization(fallback_strategy=FallbackStrategy.least_busy_pool)
        await seed.reviewer(org.id, "alice")
        bob = await seed.reviewer(org.id, "bob")
        await seed.reviewer(org.id, "carol", is_active=False)

        result = await routing_service.route_event(make_event(org.id, author="alice"))

        assert result.outcome is RoutingOutcome.assigned
        assert [r.id for r in result.reviewers] == [bob.id]

    @pytest.mark.asyncio
    async def test_empty_pool(
        self, routing_service: RoutingService, seed, make_event, db_session
    ) -> None:
        org = await seed.organization(fallback_strategy=FallbackStrategy.least_busy_pool)

        result = await routing_service.route_event(make_event(org.id))

        assert result.outcome is RoutingOutcome.no_eligible_reviewer
        assert result.reason == "empty_pool"
        failures = await list_routing_failures(db_session, org.id)
        assert failures[0].rule_id is None

"""Integration tests for escalation sweeps, reviews and summaries.

Assignments are created through the routing service with a fixed clock at
T0; sweeps are run at explicit times after that.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from reviewrouter.config import EscalationConfig
from reviewrouter.database.models.assignment import AssignmentStatus, NotificationState
from reviewrouter.database.queries.assignment import get_assignment
from reviewrouter.database.queries.organization import upsert_escalation_policy
from reviewrouter.errors import NotFoundError, NotificationFailed
from reviewrouter.escalation.processor import EscalationProcessor
from reviewrouter.escalation.reviews import record_review_outcome
from reviewrouter.escalation.scheduler import EscalationScheduler
from reviewrouter.escalation.state_machine import EscalationThresholds, InvalidTransitionError
from reviewrouter.escalation.summary import get_escalation_summary
from reviewrouter.notifications import FanOutNotifier
from reviewrouter.notifications.base import NoticeKind
from reviewrouter.routing.cache import RuleCache, store_loader
from reviewrouter.routing.engine import RoutingEngine
from reviewrouter.routing.service import RoutingService

pytestmark = pytest.mark.integration

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


def hours(n: float) -> datetime:
    return T0 + timedelta(hours=n)


@pytest.fixture
def notifier() -> MagicMock:
    mock = MagicMock()
    mock.notify_reviewer = AsyncMock()
    mock.notify_team_leads = AsyncMock()
    return mock


@pytest.fixture
def processor(session_factory, notifier: MagicMock) -> EscalationProcessor:
    return EscalationProcessor(session_factory, notifier, EscalationConfig())


async def _assign(
    routing_service: RoutingService, seed, make_event, pull_requests: int = 1
) -> tuple[uuid.UUID, list[uuid.UUID]]:
    """Seed an org with one reviewer and two leads, and assign pull requests at T0."""
    org = await seed.organization()
    alice = await seed.reviewer(org.id, "alice", slack_user_id="U_ALICE")
    await seed.reviewer(org.id, "lead1", is_team_lead=True)
    await seed.reviewer(org.id, "lead2", is_team_lead=True)
    await seed.reviewer(org.id, "retired", is_team_lead=True, is_active=False)
    await seed.rule(org.id, 0, [alice.id])

    assignment_ids = []
    for n in range(1, pull_requests + 1):
        result = await routing_service.route_event(
            make_event(org.id, pull_request_id=f"acme/api#{n}", number=n)
        )
        assignment_ids.extend(result.assignment_ids)
    return org.id, assignment_ids


def _channel_notifier(channel: str) -> MagicMock:
    mock = MagicMock()
    mock.channel = channel
    mock.notify_reviewer = AsyncMock()
    mock.notify_team_leads = AsyncMock()
    return mock


def _routing_service_at(session_factory, at: datetime) -> RoutingService:
    cache = RuleCache(store_loader(session_factory, timeout=5.0))
    return RoutingService(session_factory, RoutingEngine(cache), clock=lambda: at)


async def _status(session_factory, assignment_id: uuid.UUID):
    async with session_factory() as session:
        return await get_assignment(session, assignment_id)


class TestReminders:
    """Test the pending -> reminded transition."""

    @pytest.mark.asyncio
    async def test_reminded_after_25_hours(
        self, processor, notifier, routing_service, seed, make_event, session_factory
    ) -> None:
        """Test that a 25 hour old assignment is reminded and its reviewer notified."""
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)

        stats = await processor.run(now=hours(25))

        assert stats.reminded_count == 1
        assert stats.escalated_count == 0
        assert stats.errors == []
        notifier.notify_reviewer.assert_awaited_once()
        recipient, notice = notifier.notify_reviewer.await_args.args
        assert recipient.github_username == "alice"
        assert recipient.slack_user_id == "U_ALICE"
        assert notice.kind is NoticeKind.reminder
        assert notice.hours_pending == pytest.approx(25)

        row = await _status(session_factory, assignment_id)
        assert row.status is AssignmentStatus.reminded
        assert row.notification_state is NotificationState.delivered
        assert row.notification_attempts == 1

    @pytest.mark.asyncio
    async def test_not_reminded_at_23_hours(
        self, processor, notifier, routing_service, seed, make_event, session_factory
    ) -> None:
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)

        stats = await processor.run(now=hours(23))

        assert stats.reminded_count == 0
        notifier.notify_reviewer.assert_not_awaited()
        assert (await _status(session_factory, assignment_id)).status is AssignmentStatus.pending

    @pytest.mark.asyncio
    async def test_one_transition_per_sweep(
        self, processor, notifier, routing_service, seed, make_event, session_factory
    ) -> None:
        """Test that an assignment far past both thresholds is only reminded."""
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)

        stats = await processor.run(now=hours(100))

        assert (stats.reminded_count, stats.escalated_count) == (1, 0)
        notifier.notify_team_leads.assert_not_awaited()
        assert (await _status(session_factory, assignment_id)).status is AssignmentStatus.reminded

    @pytest.mark.asyncio
    async def test_repeated_sweep_does_not_remind_twice(
        self, processor, notifier, routing_service, seed, make_event
    ) -> None:
        await _assign(routing_service, seed, make_event)

        await processor.run(now=hours(25))
        stats = await processor.run(now=hours(26))

        assert stats.reminded_count == 0
        assert notifier.notify_reviewer.await_count == 1

    @pytest.mark.asyncio
    async def test_reviewed_assignments_are_ignored(
        self, processor, notifier, routing_service, seed, make_event, session_factory
    ) -> None:
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)
        async with session_factory() as session:
            async with session.begin():
                await record_review_outcome(session, assignment_id, True, now=hours(1))

        stats = await processor.run(now=hours(100))

        assert stats.processed_count == 0
        notifier.notify_reviewer.assert_not_awaited()


class TestEscalation:
    """Test the reminded -> escalated transition."""

    @pytest.mark.asyncio
    async def test_escalated_after_delay_since_reminder(
        self, processor, notifier, routing_service, seed, make_event, session_factory
    ) -> None:
        """Test that escalation waits the escalation delay after the reminder."""
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)
        await processor.run(now=hours(30))

        early = await processor.run(now=hours(50))
        assert early.escalated_count == 0

        stats = await processor.run(now=hours(54))

        assert stats.escalated_count == 1
        organization_id, leads, notice = notifier.notify_team_leads.await_args.args
        assert sorted(lead.github_username for lead in leads) == ["lead1", "lead2"]
        assert notice.kind is NoticeKind.escalation
        assert notice.reviewer_name == "Alice"
        row = await _status(session_factory, assignment_id)
        assert row.status is AssignmentStatus.escalated
        assert row.organization_id == organization_id

    @pytest.mark.asyncio
    async def test_escalated_is_final_for_sweeps(
        self, processor, notifier, routing_service, seed, make_event
    ) -> None:
        await _assign(routing_service, seed, make_event)
        await processor.run(now=hours(25))
        await processor.run(now=hours(49))

        stats = await processor.run(now=hours(500))

        assert (stats.reminded_count, stats.escalated_count) == (0, 0)
        assert notifier.notify_team_leads.await_count == 1

    @pytest.mark.asyncio
    async def test_organization_policy_overrides_defaults(
        self, processor, notifier, routing_service, seed, make_event, session_factory
    ) -> None:
        org_id, _ = await _assign(routing_service, seed, make_event)
        async with session_factory() as session:
            async with session.begin():
                await upsert_escalation_policy(session, org_id, 2, 4)

        reminded = await processor.run(now=hours(3))
        escalated = await processor.run(now=hours(5))

        assert reminded.reminded_count == 1
        assert escalated.escalated_count == 1


class TestNotificationFailures:
    """Test failure isolation and redelivery."""

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_redelivered(
        self, processor, notifier, routing_service, seed, make_event, session_factory
    ) -> None:
        """Test that a failed reminder keeps its transition and is retried next sweep."""
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)
        notifier.notify_reviewer.side_effect = NotificationFailed("slack", "alice", "down")

        failed = await processor.run(now=hours(25))

        assert failed.reminded_count == 1
        assert [(e.stage, e.assignment_id) for e in failed.errors] == [
            ("notify", str(assignment_id))
        ]
        row = await _status(session_factory, assignment_id)
        assert row.status is AssignmentStatus.reminded
        assert row.notification_state is NotificationState.failed
        assert "down" in row.last_notification_error

        notifier.notify_reviewer.side_effect = None
        retried = await processor.run(now=hours(26))

        assert retried.reminded_count == 0
        assert retried.redelivered_count == 1
        assert notifier.notify_reviewer.await_count == 2
        row = await _status(session_factory, assignment_id)
        assert row.notification_state is NotificationState.delivered
        assert row.notification_attempts == 2

    @pytest.mark.asyncio
    async def test_redelivery_skips_channels_that_delivered(
        self, session_factory, routing_service, seed, make_event
    ) -> None:
        """Test that a partly failed fan-out is retried only on the failed channel."""
        slack = _channel_notifier("slack")
        webhook = _channel_notifier("webhook")
        webhook.notify_reviewer.side_effect = [NotificationFailed("webhook", "hook", "502"), None]
        processor = EscalationProcessor(
            session_factory, FanOutNotifier([slack, webhook]), EscalationConfig()
        )
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)

        await processor.run(now=hours(25))

        row = await _status(session_factory, assignment_id)
        assert row.notification_state is NotificationState.failed
        assert row.delivered_channels == ["slack"]

        retried = await processor.run(now=hours(26))

        assert retried.redelivered_count == 1
        assert slack.notify_reviewer.await_count == 1
        assert webhook.notify_reviewer.await_count == 2
        row = await _status(session_factory, assignment_id)
        assert row.notification_state is NotificationState.delivered

        escalated = await processor.run(now=hours(50))

        assert escalated.escalated_count == 1
        slack.notify_team_leads.assert_awaited_once()
        webhook.notify_team_leads.assert_awaited_once()
        assert (await _status(session_factory, assignment_id)).delivered_channels == []

    @pytest.mark.asyncio
    async def test_redelivery_stops_after_max_attempts(
        self, session_factory, notifier, routing_service, seed, make_event
    ) -> None:
        processor = EscalationProcessor(
            session_factory, notifier, EscalationConfig(max_notification_attempts=2)
        )
        await _assign(routing_service, seed, make_event)
        notifier.notify_reviewer.side_effect = NotificationFailed("slack", "alice", "down")

        await processor.run(now=hours(25))
        await processor.run(now=hours(26))
        third = await processor.run(now=hours(27))

        assert notifier.notify_reviewer.await_count == 2
        assert third.errors == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(
        self, processor, notifier, routing_service, seed, make_event
    ) -> None:
        await _assign(routing_service, seed, make_event, pull_requests=3)
        notifier.notify_reviewer.side_effect = [
            None,
            RuntimeError("unexpected"),
            None,
        ]

        stats = await processor.run(now=hours(25))

        assert stats.reminded_count == 3
        assert len(stats.errors) == 1
        assert "RuntimeError" in stats.errors[0].error

    @pytest.mark.asyncio
    async def test_stop_event_halts_sweep(
        self, processor, notifier, routing_service, seed, make_event
    ) -> None:
        await _assign(routing_service, seed, make_event, pull_requests=2)
        stop = asyncio.Event()
        stop.set()

        stats = await processor.run(now=hours(25), stop_event=stop)

        assert stats.stopped
        assert stats.processed_count == 0
        notifier.notify_reviewer.assert_not_awaited()


class TestReviews:
    """Test recording review outcomes."""

    @pytest.mark.asyncio
    async def test_approve_from_escalated(
        self, processor, routing_service, seed, make_event, session_factory
    ) -> None:
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)
        await processor.run(now=hours(25))
        await processor.run(now=hours(49))

        async with session_factory() as session:
            async with session.begin():
                row = await record_review_outcome(session, assignment_id, True, now=hours(50))

        assert row.status is AssignmentStatus.approved
        assert row.reviewed_at is not None

    @pytest.mark.asyncio
    async def test_terminal_assignment_rejected(
        self, routing_service, seed, make_event, session_factory
    ) -> None:
        _, (assignment_id,) = await _assign(routing_service, seed, make_event)
        async with session_factory() as session:
            async with session.begin():
                await record_review_outcome(session, assignment_id, False, now=hours(1))

        with pytest.raises(InvalidTransitionError):
            async with session_factory() as session:
                async with session.begin():
                    await record_review_outcome(session, assignment_id, True, now=hours(2))

    @pytest.mark.asyncio
    async def test_unknown_assignment(self, session_factory) -> None:
        with pytest.raises(NotFoundError):
            async with session_factory() as session:
                async with session.begin():
                    await record_review_outcome(session, uuid.uuid4(), True, now=T0)


class TestSummary:
    """Test the organization escalation summary."""

    @pytest.mark.asyncio
    async def test_counts_and_ordering(
        self, seed, make_event, session_factory, db_session
    ) -> None:
        """Test overdue counts against thresholds, longest waiting first."""
        org = await seed.organization()
        alice = await seed.reviewer(org.id, "alice")
        await seed.rule(org.id, 0, [alice.id])

        for n, assigned_hours in enumerate((-50, -30, -1), start=1):
            service = _routing_service_at(session_factory, hours(assigned_hours))
            await service.route_event(
                make_event(org.id, pull_request_id=f"acme/api#{n}", number=n)
            )

        summary = await get_escalation_summary(
            db_session, org.id, EscalationThresholds(24, 48), now=T0
        )

        assert summary.pending_reviews == 3
        assert summary.overdue_reminder == 2
        assert summary.overdue_escalation == 1
        assert [a.pull_request_id for a in summary.assignments] == [
            "acme/api#1",
            "acme/api#2",
            "acme/api#3",
        ]
        assert summary.assignments[0].hours_pending == 50.0
        assert summary.assignments[0].reviewer_name == "Alice"

    @pytest.mark.asyncio
    async def test_empty_organization(self, seed, db_session) -> None:
        org = await seed.organization()
        summary = await get_escalation_summary(
            db_session, org.id, EscalationThresholds(), now=T0
        )
        assert summary.pending_reviews == 0
        assert summary.assignments == []


class TestScheduler:
    """Test the background sweep loop."""

    @pytest.mark.asyncio
    async def test_run_once(
        self, session_factory, notifier, routing_service, seed, make_event
    ) -> None:
        await _assign(routing_service, seed, make_event)
        processor = EscalationProcessor(session_factory, notifier, clock=lambda: hours(25))
        scheduler = EscalationScheduler(processor, interval_seconds=3600)

        stats = await scheduler.run_once()

        assert stats.reminded_count == 1
        assert scheduler.last_stats is stats
        assert scheduler.sweeps == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory, notifier) -> None:
        """Test that the loop sweeps immediately and stops promptly."""
        processor = EscalationProcessor(session_factory, notifier, clock=lambda: T0)
        scheduler = EscalationScheduler(processor, interval_seconds=3600)

        await scheduler.start()
        assert scheduler.running
        for _ in range(200):
            if scheduler.sweeps:
                break
            await asyncio.sleep(0.01)
        await asyncio.wait_for(scheduler.stop(), timeout=5)

        assert not scheduler.running
        assert scheduler.sweeps == 1
        assert scheduler.last_stats.processed_count == 0

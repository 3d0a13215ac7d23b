"""Escalation sweep for stale review assignments.

``process_escalations`` is a single, stateless sweep over open
assignments. It is invoked by the cron endpoint, the manual trigger, the
CLI, and the EscalationScheduler loop, all of which receive the same
EscalationStats.

Each assignment is handled as an independent unit of work:

1. In a fresh transaction, re-read the assignment, decide the transition
   with ``next_transition``, and apply it with a compare-and-swap update
   that also marks the notification as pending. Commit.
2. Deliver the notification (reviewer reminder or team-lead escalation).
3. In a second transaction, record whether delivery succeeded.

A failure on one assignment (store timeout, store error, notification
failure) is appended to the stats and the sweep moves on. Assignments
whose notification is still pending or failed are re-notified on later
sweeps without transitioning again, until ``max_notification_attempts``
is reached.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.clock import Clock, hours_between, utc_now
from reviewrouter.config import EscalationConfig
from reviewrouter.database.connection import bounded_store_call
from reviewrouter.database.models.assignment import (
    AssignmentStatus,
    NotificationState,
    ReviewAssignment,
)
from reviewrouter.database.queries.assignment import (
    compare_and_set_status,
    get_assignment,
    get_pending_assignments,
    get_redelivery_candidates,
    record_notification_outcome,
)
from reviewrouter.database.queries.organization import (
    get_escalation_thresholds,
    get_minimum_reminder_hours,
)
from reviewrouter.database.queries.reviewer import get_reviewer, list_team_leads
from reviewrouter.errors import NotificationFailed, StoreUnavailable
from reviewrouter.escalation.state_machine import (
    EscalationThresholds,
    TransitionKind,
    next_transition,
)
from reviewrouter.notifications.base import NoticeKind, Notifier, Recipient, ReviewNotice

logger = structlog.get_logger(__name__)


class EscalationError(BaseModel):
    """One failure recorded during a sweep."""

    assignment_id: str | None = Field(default=None, description="Affected assignment")
    stage: str = Field(..., description="scan, transition, notify, or record")
    error: str = Field(..., description="Error message")


class EscalationStats(BaseModel):
    """Outcome of one escalation sweep.

    Attributes:
        reminded_count: Assignments moved pending -> reminded.
        escalated_count: Assignments moved reminded -> escalated.
        redelivered_count: Earlier notifications delivered on this sweep.
        processed_count: Assignments examined.
        errors: Failures encountered; the sweep continued past each.
        stopped: True if the sweep was stopped before finishing.
    """

    reminded_count: int = 0
    escalated_count: int = 0
    redelivered_count: int = 0
    processed_count: int = 0
    errors: list[EscalationError] = Field(default_factory=list)
    stopped: bool = False


@dataclass(frozen=True)
class _Delivery:
    assignment_id: uuid.UUID
    kind: NoticeKind
    notice: ReviewNotice
    reviewer: Recipient
    leads: tuple[Recipient, ...]


async def _build_delivery(
    session: AsyncSession,
    assignment: ReviewAssignment,
    kind: NoticeKind,
    now: datetime,
    delivered_channels: tuple[str, ...] = (),
) -> _Delivery | None:
    reviewer = await get_reviewer(session, assignment.reviewer_id)
    if reviewer is None:
        return None
    leads: tuple[Recipient, ...] = ()
    if kind is NoticeKind.escalation:
        leads = tuple(
            Recipient.from_reviewer(r)
            for r in await list_team_leads(session, assignment.organization_id)
        )
    notice = ReviewNotice(
        kind=kind,
        assignment_id=assignment.id,
        organization_id=assignment.organization_id,
        pull_request_id=assignment.pull_request_id,
        repository=assignment.repository,
        pr_number=assignment.pr_number,
        pr_title=assignment.pr_title,
        pr_url=assignment.pr_url,
        reviewer_id=reviewer.id,
        reviewer_name=reviewer.name,
        hours_pending=max(hours_between(assignment.assigned_at, now), 0.0),
        delivered_channels=delivered_channels,
    )
    return _Delivery(
        assignment_id=assignment.id,
        kind=kind,
        notice=notice,
        reviewer=Recipient.from_reviewer(reviewer),
        leads=leads,
    )


class _Sweep:
    """State of one sweep; not reused across runs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        now: datetime,
        default_thresholds: EscalationThresholds,
        store_timeout: float,
        notification_timeout: float,
        max_notification_attempts: int,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.now = now
        self.default_thresholds = default_thresholds
        self.store_timeout = store_timeout
        self.notification_timeout = notification_timeout
        self.max_notification_attempts = max_notification_attempts
        self.stats = EscalationStats()
        self.transitioned: set[uuid.UUID] = set()

    def record_error(
        self, stage: str, error: Exception | str, assignment_id: uuid.UUID | None
    ) -> None:
        self.stats.errors.append(
            EscalationError(
                assignment_id=str(assignment_id) if assignment_id else None,
                stage=stage,
                error=str(error),
            )
        )

    async def _store(self, coro, operation: str):
        return await bounded_store_call(coro, self.store_timeout, operation)

    async def scan(self) -> tuple[list[uuid.UUID], list[uuid.UUID]]:
        async def _read() -> tuple[list[uuid.UUID], list[uuid.UUID]]:
            async with self.session_factory() as session:
                async with session.begin():
                    min_reminder = await get_minimum_reminder_hours(
                        session, self.default_thresholds.reminder_hours
                    )
                    cutoff = self.now - timedelta(hours=min_reminder)
                    due = await get_pending_assignments(session, cutoff)
                    redeliver = await get_redelivery_candidates(
                        session, self.max_notification_attempts
                    )
            return [row[0] for row in due], [row[0] for row in redeliver]

        return await self._store(_read(), "scan_assignments")

    async def advance(self, assignment_id: uuid.UUID) -> None:
        """Transition one assignment if due, then notify and record."""

        async def _transition() -> _Delivery | None:
            async with self.session_factory() as session:
                async with session.begin():
                    assignment = await get_assignment(session, assignment_id)
                    if assignment is None:
                        return None
                    thresholds = await get_escalation_thresholds(
                        session, assignment.organization_id, self.default_thresholds
                    )
                    transition = next_transition(assignment, thresholds, self.now)
                    if transition is None:
                        return None
                    swapped = await compare_and_set_status(
                        session,
                        assignment_id,
                        expected=transition.from_status,
                        target=transition.to_status,
                        last_escalated_at=self.now,
                        notification_state=NotificationState.pending,
                        notification_attempts=0,
                        last_notification_error=None,
                        delivered_channels=[],
                    )
                    if not swapped:
                        return None
                    kind = (
                        NoticeKind.reminder
                        if transition.kind is TransitionKind.reminder
                        else NoticeKind.escalation
                    )
                    logger.info(
                        "escalation_transition",
                        assignment_id=str(assignment_id),
                        organization_id=str(assignment.organization_id),
                        from_status=transition.from_status.value,
                        to_status=transition.to_status.value,
                        hours_pending=round(transition.hours_pending, 2),
                    )
                    return await _build_delivery(session, assignment, kind, self.now)

        self.stats.processed_count += 1
        try:
            delivery = await self._store(_transition(), "transition_assignment")
        except (StoreUnavailable, SQLAlchemyError) as e:
            logger.error(
                "escalation_transition_failed", assignment_id=str(assignment_id), error=str(e)
            )
            self.record_error("transition", e, assignment_id)
            return
        if delivery is None:
            return

        self.transitioned.add(assignment_id)
        if delivery.kind is NoticeKind.reminder:
            self.stats.reminded_count += 1
        else:
            self.stats.escalated_count += 1
        await self.deliver(delivery)

    async def redeliver(self, assignment_id: uuid.UUID) -> None:
        """Retry the notification of an already transitioned assignment."""

        async def _load() -> _Delivery | None:
            async with self.session_factory() as session:
                async with session.begin():
                    assignment = await get_assignment(session, assignment_id)
                    if (
                        assignment is None
                        or assignment.notification_state
                        not in (NotificationState.pending, NotificationState.failed)
                        or assignment.notification_attempts >= self.max_notification_attempts
                    ):
                        return None
                    if assignment.status is AssignmentStatus.reminded:
                        kind = NoticeKind.reminder
                    elif assignment.status is AssignmentStatus.escalated:
                        kind = NoticeKind.escalation
                    else:
                        return None
                    return await _build_delivery(
                        session,
                        assignment,
                        kind,
                        self.now,
                        delivered_channels=tuple(assignment.delivered_channels or ()),
                    )

        self.stats.processed_count += 1
        try:
            delivery = await self._store(_load(), "load_redelivery")
        except (StoreUnavailable, SQLAlchemyError) as e:
            self.record_error("redeliver", e, assignment_id)
            return
        if delivery is None:
            return

        logger.info(
            "notification_redelivery",
            assignment_id=str(assignment_id),
            kind=delivery.kind.value,
        )
        if await self.deliver(delivery):
            self.stats.redelivered_count += 1

    async def deliver(self, delivery: _Delivery) -> bool:
        """Send the notification and record the outcome. Returns success."""
        error: str | None = None
        delivered_channels: tuple[str, ...] | None = None
        try:
            if delivery.kind is NoticeKind.reminder:
                coro = self.notifier.notify_reviewer(delivery.reviewer, delivery.notice)
            else:
                coro = self.notifier.notify_team_leads(
                    delivery.notice.organization_id, delivery.leads, delivery.notice
                )
            await asyncio.wait_for(coro, self.notification_timeout)
        except asyncio.TimeoutError:
            error = f"notification timed out after {self.notification_timeout}s"
        except NotificationFailed as e:
            error = str(e)
            if e.delivered:
                delivered_channels = e.delivered
        except Exception as e:
            logger.error(
                "notifier_unexpected_error",
                assignment_id=str(delivery.assignment_id),
                error=str(e),
                exc_info=True,
            )
            error = f"{type(e).__name__}: {e}"

        if error is not None:
            logger.warning(
                "notification_failed",
                assignment_id=str(delivery.assignment_id),
                kind=delivery.kind.value,
                error=error,
            )
            self.record_error("notify", error, delivery.assignment_id)

        async def _record() -> None:
            async with self.session_factory() as session:
                async with session.begin():
                    await record_notification_outcome(
                        session,
                        delivery.assignment_id,
                        delivered=error is None,
                        error=error,
                        delivered_channels=delivered_channels,
                    )

        try:
            await self._store(_record(), "record_notification_outcome")
        except (StoreUnavailable, SQLAlchemyError) as e:
            self.record_error("record", e, delivery.assignment_id)
        return error is None


async def process_escalations(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    now: datetime,
    default_thresholds: EscalationThresholds | None = None,
    store_timeout: float = 10.0,
    notification_timeout: float = 15.0,
    max_notification_attempts: int = 5,
    stop_event: asyncio.Event | None = None,
) -> EscalationStats:
    """Run one escalation sweep.

    Args:
        session_factory: Factory for store sessions.
        notifier: Delivers reminders and escalations.
        now: Sweep time; elapsed time is measured against it.
        default_thresholds: Thresholds for organizations without a policy.
        store_timeout: Upper bound in seconds per store transaction.
        notification_timeout: Upper bound in seconds per notification.
        max_notification_attempts: Delivery attempts before redelivery stops.
        stop_event: When set, the sweep stops before the next assignment.

    Returns:
        EscalationStats for the sweep.
    """
    sweep = _Sweep(
        session_factory,
        notifier,
        now,
        default_thresholds or EscalationThresholds(),
        store_timeout,
        notification_timeout,
        max_notification_attempts,
    )
    log = logger.bind(sweep_at=now.isoformat())

    try:
        due, redeliver = await sweep.scan()
    except (StoreUnavailable, SQLAlchemyError) as e:
        log.error("escalation_scan_failed", error=str(e))
        sweep.record_error("scan", e, None)
        return sweep.stats

    log.info("escalation_sweep_started", due=len(due), redelivery=len(redeliver))

    for assignment_id in due:
        if stop_event is not None and stop_event.is_set():
            sweep.stats.stopped = True
            break
        await sweep.advance(assignment_id)

    for assignment_id in redeliver:
        if stop_event is not None and stop_event.is_set():
            sweep.stats.stopped = True
            break
        if assignment_id in sweep.transitioned:
            continue
        await sweep.redeliver(assignment_id)

    stats = sweep.stats
    log.info(
        "escalation_sweep_finished",
        reminded=stats.reminded_count,
        escalated=stats.escalated_count,
        redelivered=stats.redelivered_count,
        processed=stats.processed_count,
        errors=len(stats.errors),
        stopped=stats.stopped,
    )
    return stats


class EscalationProcessor:
    """Runs escalation sweeps with configured thresholds and timeouts.

    Args:
        session_factory: Factory for store sessions.
        notifier: Delivers reminders and escalations.
        config: Escalation configuration section.
        clock: Source of the sweep time.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        config: EscalationConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.config = config or EscalationConfig()
        self.clock = clock

    @property
    def default_thresholds(self) -> EscalationThresholds:
        return EscalationThresholds(
            reminder_hours=self.config.reminder_hours,
            escalation_hours=self.config.escalation_hours,
        )

    async def run(
        self,
        now: datetime | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> EscalationStats:
        """Run one sweep at ``now`` (defaults to the clock)."""
        return await process_escalations(
            self.session_factory,
            self.notifier,
            now or self.clock(),
            default_thresholds=self.default_thresholds,
            store_timeout=self.config.store_timeout_seconds,
            notification_timeout=self.config.notification_timeout_seconds,
            max_notification_attempts=self.config.max_notification_attempts,
            stop_event=stop_event,
        )

"""Review assignment and routing failure models.

Defines the ReviewAssignment table with its status lifecycle
(pending -> reminded -> escalated, terminal approved/rejected) and
notification delivery bookkeeping, the PullRequestRound table that
lets exactly one delivery claim each routing round of a pull request, and
the RoutingFailure table that records pull requests the engine could not
assign.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from reviewrouter.database.models.base import Base, TimestampMixin


class AssignmentStatus(enum.Enum):
    """Lifecycle of a review assignment.

    States:
        pending: Assigned, reviewer has not acted.
        reminded: Reminder sent to the reviewer.
        escalated: Team leads alerted.
        approved: Reviewer approved (terminal).
        rejected: Reviewer requested changes (terminal).
    """

    pending = "pending"
    reminded = "reminded"
    escalated = "escalated"
    approved = "approved"
    rejected = "rejected"


ACTIVE_STATUSES = frozenset(
    {AssignmentStatus.pending, AssignmentStatus.reminded, AssignmentStatus.escalated}
)
TERMINAL_STATUSES = frozenset({AssignmentStatus.approved, AssignmentStatus.rejected})
# Statuses counted as open work for least-busy selection
WORKLOAD_STATUSES = frozenset({AssignmentStatus.pending, AssignmentStatus.reminded})


class NotificationState(enum.Enum):
    """Delivery state of the notification tied to the latest transition."""

    none = "none"
    pending = "pending"
    delivered = "delivered"
    failed = "failed"


class ReviewAssignment(TimestampMixin, Base):
    """A reviewer assigned to a pull request in one routing round.

    Attributes:
        organization_id: Owning organization.
        pull_request_id: Stable identifier of the pull request.
        reviewer_id: Assigned reviewer.
        rule_id: Rule that produced the assignment; None for fallback. Not a
            foreign key so assignments survive rule deletion.
        routing_round: Incremented when a reviewed pull request is re-routed.
        status: Current lifecycle state.
        assigned_at: When the assignment was created.
        reviewed_at: When the reviewer approved or rejected.
        last_escalated_at: When the last reminder/escalation transition happened.
        repository: ``owner/repo`` of the pull request.
        pr_number: Pull request number.
        pr_title: Pull request title.
        pr_url: Pull request URL.
        notification_state: Delivery state of the latest notification.
        notification_attempts: Delivery attempts for the latest notification.
        last_notification_error: Last delivery error message.
        delivered_channels: Channels that already delivered the latest
            notification; redelivery skips them.
    """

    __tablename__ = "review_assignments"
    __table_args__ = (
        UniqueConstraint(
            "pull_request_id",
            "reviewer_id",
            "routing_round",
            name="uq_review_assignments_pr_reviewer_round",
        ),
        Index("ix_review_assignments_status_assigned_at", "status", "assigned_at"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pull_request_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("reviewers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    routing_round: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[AssignmentStatus] = mapped_column(
        default=AssignmentStatus.pending,
        nullable=False,
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_escalated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    repository: Mapped[str] = mapped_column(Text, nullable=False)
    pr_number: Mapped[int] = mapped_column(Integer, nullable=False)
    pr_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    pr_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    notification_state: Mapped[NotificationState] = mapped_column(
        default=NotificationState.none,
        nullable=False,
    )
    notification_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    last_notification_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_channels: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    def __repr__(self) -> str:
        return (
            f"<ReviewAssignment(id={self.id}, pull_request_id={self.pull_request_id!r}, "
            f"status={self.status.value})>"
        )


class PullRequestRound(TimestampMixin, Base):
    """Claim on one routing round of a pull request.

    The assignment writer inserts this row before any assignment of the
    round. The unique key makes a second delivery of the same event fail
    at insert time, whichever reviewers it selected.
    """

    __tablename__ = "pull_request_rounds"
    __table_args__ = (
        UniqueConstraint(
            "pull_request_id",
            "routing_round",
            name="uq_pull_request_rounds_pr_round",
        ),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pull_request_id: Mapped[str] = mapped_column(Text, nullable=False)
    routing_round: Mapped[int] = mapped_column(Integer, nullable=False)


class RoutingFailure(TimestampMixin, Base):
    """A pull request the engine could not assign to anyone."""

    __tablename__ = "routing_failures"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pull_request_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    rule_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

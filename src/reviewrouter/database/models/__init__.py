"""SQLAlchemy ORM models for ReviewRouter.

This module defines the database schema including organizations,
repositories, reviewers, routing rules, rotation cursors, review
assignments, routing round claims, escalation policies, and routing failures.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from reviewrouter.database.models.assignment import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    WORKLOAD_STATUSES,
    AssignmentStatus,
    NotificationState,
    PullRequestRound,
    ReviewAssignment,
    RoutingFailure,
)
from reviewrouter.database.models.base import Base, TimestampMixin
from reviewrouter.database.models.organization import (
    EscalationPolicy,
    FallbackStrategy,
    Organization,
    Repository,
)
from reviewrouter.database.models.reviewer import Reviewer
from reviewrouter.database.models.rule import RotationCursor, RoutingRule

__all__ = [
    "Base",
    "TimestampMixin",
    "Organization",
    "Repository",
    "EscalationPolicy",
    "FallbackStrategy",
    "Reviewer",
    "RoutingRule",
    "RotationCursor",
    "ReviewAssignment",
    "PullRequestRound",
    "AssignmentStatus",
    "NotificationState",
    "RoutingFailure",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "WORKLOAD_STATUSES",
]

"""Organization, repository, and escalation policy models.

An organization is the tenant boundary: every rule, reviewer, repository,
and assignment belongs to exactly one organization. Deleting an
organization cascades to everything it owns at the database level.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Float,
    ForeignKey,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from reviewrouter.database.models.base import Base, TimestampMixin


class FallbackStrategy(enum.Enum):
    """What to do when no routing rule matches a pull request.

    States:
        default_reviewer: Assign the repository default reviewer, falling
            back to the organization default reviewer.
        least_busy_pool: Assign the least busy active reviewer.
        none: Leave the pull request unassigned.
    """

    default_reviewer = "default_reviewer"
    least_busy_pool = "least_busy_pool"
    none = "none"


class Organization(TimestampMixin, Base):
    """A tenant owning rules, reviewers, and repositories.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        name: Display name.
        timezone: IANA timezone used by time-window conditions that do not
            specify their own.
        fallback_strategy: Behaviour when no rule matches.
        default_reviewer_id: Organization-wide fallback reviewer.
    """

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default="UTC")
    fallback_strategy: Mapped[FallbackStrategy] = mapped_column(
        default=FallbackStrategy.default_reviewer,
        nullable=False,
    )
    default_reviewer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class Repository(TimestampMixin, Base):
    """A source repository known to an organization.

    Attributes:
        organization_id: Owning organization.
        full_name: ``owner/repo`` name, unique within the organization.
        default_reviewer_id: Repository-level fallback reviewer.
    """

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("organization_id", "full_name", name="uq_repositories_org_name"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    default_reviewer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
    )


class EscalationPolicy(TimestampMixin, Base):
    """Per-organization reminder and escalation thresholds, in hours."""

    __tablename__ = "escalation_policies"
    __table_args__ = (
        CheckConstraint("reminder_hours > 0", name="ck_escalation_reminder_positive"),
        CheckConstraint(
            "escalation_hours > reminder_hours",
            name="ck_escalation_after_reminder",
        ),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    reminder_hours: Mapped[float] = mapped_column(Float, nullable=False, default=24.0)
    escalation_hours: Mapped[float] = mapped_column(Float, nullable=False, default=48.0)

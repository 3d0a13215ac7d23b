"""Reviewer model for ReviewRouter."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from reviewrouter.database.models.base import Base, TimestampMixin


class Reviewer(TimestampMixin, Base):
    """A person who can be assigned pull-request reviews.

    Attributes:
        organization_id: Owning organization.
        name: Display name.
        github_username: Login used to match pull-request authors.
        slack_user_id: Slack member id for direct messages.
        email: Contact address.
        is_team_lead: Receives escalation alerts.
        is_active: Inactive reviewers are never selected.
    """

    __tablename__ = "reviewers"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "github_username", name="uq_reviewers_org_username"
        ),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    github_username: Mapped[str] = mapped_column(Text, nullable=False)
    slack_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_team_lead: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Reviewer(id={self.id}, github_username={self.github_username!r})>"

"""Routing rule and rotation cursor models.

Rules are stored with their conditions and directive as JSON documents;
the routing layer parses them into typed models on load.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from reviewrouter.database.models.base import Base, TimestampMixin


class RoutingRule(TimestampMixin, Base):
    """An organization-defined routing rule.

    Attributes:
        organization_id: Owning organization.
        repository_full_name: Restrict the rule to one repository; None
            applies it to every repository.
        name: Human-readable rule name.
        description: Optional longer description.
        conditions: Ordered list of condition documents (AND semantics).
        directive: Reviewer selection directive document.
        priority: Evaluation order, lower first. Unique per organization.
        is_active: Inactive rules are skipped during routing.
    """

    __tablename__ = "routing_rules"
    __table_args__ = (
        UniqueConstraint("organization_id", "priority", name="uq_routing_rules_org_priority"),
        CheckConstraint("priority >= 0", name="ck_routing_rules_priority_non_negative"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    repository_full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    directive: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<RoutingRule(id={self.id}, name={self.name!r}, priority={self.priority})>"


class RotationCursor(TimestampMixin, Base):
    """Persisted round-robin position for one rule."""

    __tablename__ = "rotation_cursors"

    rule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("routing_rules.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

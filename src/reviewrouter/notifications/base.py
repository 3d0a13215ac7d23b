"""Notification contract for reminders and escalations.

The escalation sweep hands a resolved recipient and a ReviewNotice to a
Notifier. Notifiers return normally on delivery and raise
NotificationFailed otherwise; the sweep records the outcome and retries
failed deliveries on later sweeps.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, Field

from reviewrouter.database.models.reviewer import Reviewer


class NoticeKind(str, enum.Enum):
    """Kind of notice being delivered."""

    reminder = "reminder"
    escalation = "escalation"


@dataclass(frozen=True)
class Recipient:
    """Contact details of a notification recipient."""

    id: uuid.UUID
    name: str
    github_username: str
    slack_user_id: str | None = None
    email: str | None = None

    @classmethod
    def from_reviewer(cls, reviewer: Reviewer) -> Recipient:
        return cls(
            id=reviewer.id,
            name=reviewer.name,
            github_username=reviewer.github_username,
            slack_user_id=reviewer.slack_user_id,
            email=reviewer.email,
        )


class ReviewNotice(BaseModel):
    """Payload describing a stale review assignment."""

    kind: NoticeKind = Field(..., description="Reminder or escalation")
    assignment_id: uuid.UUID = Field(..., description="Assignment being notified about")
    organization_id: uuid.UUID
    pull_request_id: str
    repository: str
    pr_number: int
    pr_title: str = ""
    pr_url: str | None = None
    reviewer_id: uuid.UUID
    reviewer_name: str
    hours_pending: float = Field(..., ge=0, description="Hours since assignment")
    delivered_channels: tuple[str, ...] = Field(
        default=(), exclude=True, description="Channels that already delivered this notice"
    )

    @property
    def rounded_hours(self) -> int:
        return int(self.hours_pending)


class Notifier(Protocol):
    """Delivers reminder and escalation notices.

    Attributes:
        channel: Name recorded when this notifier delivers a notice.
    """

    channel: str

    async def notify_reviewer(self, reviewer: Recipient, notice: ReviewNotice) -> None:
        """Remind the assigned reviewer.

        Raises:
            NotificationFailed: If delivery failed.
        """
        ...

    async def notify_team_leads(
        self,
        organization_id: uuid.UUID,
        leads: Sequence[Recipient],
        notice: ReviewNotice,
    ) -> None:
        """Alert the organization's team leads about an escalated review.

        Raises:
            NotificationFailed: If delivery failed.
        """
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...

"""Notifier that only writes structured log events.

Used when neither Slack nor a webhook is configured, so reminders and
escalations remain visible in the logs.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

import structlog

from reviewrouter.notifications.base import Recipient, ReviewNotice

logger = structlog.get_logger(__name__)


class LoggingNotifier:
    """Logs notices instead of delivering them."""

    channel = "log"

    async def notify_reviewer(self, reviewer: Recipient, notice: ReviewNotice) -> None:
        logger.info(
            "reviewer_reminder",
            reviewer_id=str(reviewer.id),
            reviewer=reviewer.github_username,
            assignment_id=str(notice.assignment_id),
            repository=notice.repository,
            pr_number=notice.pr_number,
            hours_pending=round(notice.hours_pending, 1),
        )

    async def notify_team_leads(
        self,
        organization_id: uuid.UUID,
        leads: Sequence[Recipient],
        notice: ReviewNotice,
    ) -> None:
        logger.warning(
            "review_escalated",
            organization_id=str(organization_id),
            leads=[lead.github_username for lead in leads],
            assignment_id=str(notice.assignment_id),
            reviewer=notice.reviewer_name,
            repository=notice.repository,
            pr_number=notice.pr_number,
            hours_pending=round(notice.hours_pending, 1),
        )

    async def close(self) -> None:
        return None

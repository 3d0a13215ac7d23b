"""Notification delivery for reminders and escalations.

``build_notifier`` picks the configured channels: Slack when a bot token is
set, a webhook when a URL is set, both when both are set, and the logging
notifier otherwise.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Sequence

import structlog

from reviewrouter.config import ReviewRouterConfig
from reviewrouter.errors import NotificationFailed
from reviewrouter.notifications.base import (
    NoticeKind,
    Notifier,
    Recipient,
    ReviewNotice,
)
from reviewrouter.notifications.log import LoggingNotifier
from reviewrouter.notifications.slack import SlackNotifier
from reviewrouter.notifications.webhook import WebhookNotifier

logger = structlog.get_logger(__name__)


class FanOutNotifier:
    """Delivers each notice through several notifiers.

    A notice counts as delivered only if every channel delivered it.
    Channels listed in ``notice.delivered_channels`` are skipped, and a
    partial failure reports the channels that did deliver so that
    redelivery only retries the failed ones.
    """

    channel = "fanout"

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers = list(notifiers)

    async def notify_reviewer(self, reviewer: Recipient, notice: ReviewNotice) -> None:
        await self._fan_out(
            notice,
            str(reviewer.id),
            lambda notifier: notifier.notify_reviewer(reviewer, notice),
        )

    async def notify_team_leads(
        self,
        organization_id: uuid.UUID,
        leads: Sequence[Recipient],
        notice: ReviewNotice,
    ) -> None:
        await self._fan_out(
            notice,
            str(organization_id),
            lambda notifier: notifier.notify_team_leads(organization_id, leads, notice),
        )

    async def close(self) -> None:
        for notifier in self.notifiers:
            await notifier.close()

    async def _fan_out(
        self,
        notice: ReviewNotice,
        recipient: str,
        send: Callable[[Notifier], Awaitable[None]],
    ) -> None:
        delivered = list(notice.delivered_channels)
        failures: list[NotificationFailed] = []
        for notifier in self.notifiers:
            if notifier.channel in delivered:
                logger.debug(
                    "notification_channel_skipped",
                    channel=notifier.channel,
                    assignment_id=str(notice.assignment_id),
                )
                continue
            try:
                await send(notifier)
            except NotificationFailed as e:
                failures.append(e)
            else:
                delivered.append(notifier.channel)

        if failures:
            raise NotificationFailed(
                "+".join(f.channel for f in failures),
                recipient,
                "; ".join(f.detail for f in failures),
                delivered=tuple(delivered),
            )


def build_notifier(config: ReviewRouterConfig) -> Notifier:
    """Create the notifier for the configured channels."""
    notifiers: list[Notifier] = []
    if config.slack.bot_token:
        notifiers.append(SlackNotifier.from_config(config.slack))
    if config.webhook.url:
        notifiers.append(WebhookNotifier.from_config(config.webhook))

    if not notifiers:
        logger.info("notifier_selected", channels=["log"])
        return LoggingNotifier()
    if len(notifiers) == 1:
        logger.info("notifier_selected", channels=[type(notifiers[0]).__name__])
        return notifiers[0]
    logger.info("notifier_selected", channels=[type(n).__name__ for n in notifiers])
    return FanOutNotifier(notifiers)


__all__ = [
    "FanOutNotifier",
    "LoggingNotifier",
    "NoticeKind",
    "Notifier",
    "Recipient",
    "ReviewNotice",
    "SlackNotifier",
    "WebhookNotifier",
    "build_notifier",
]

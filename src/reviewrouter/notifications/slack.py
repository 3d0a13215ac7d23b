"""Slack notifier using the Slack Web API.

Reminders are sent as direct messages to the assigned reviewer's Slack
user id. Escalations go to the configured escalation channel, or, when no
channel is configured, as direct messages to every team lead with a Slack
user id.

Delivery uses ``chat.postMessage`` over httpx. Transport errors, HTTP 5xx
and rate limiting are retried with exponential backoff; a Slack API
response with ``ok: false`` is a permanent failure for that attempt.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from reviewrouter.config import SlackConfig
from reviewrouter.errors import NotificationFailed
from reviewrouter.notifications.base import Recipient, ReviewNotice
from reviewrouter.notifications.messages import escalation_message, reminder_message

logger = structlog.get_logger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class SlackNotifier:
    """Delivers notices through Slack ``chat.postMessage``.

    Attributes:
        bot_token: Slack bot token.
        api_base_url: Web API base URL.
        escalation_channel_id: Channel for escalations (None for lead DMs).
        retry_count: Retries per message after the first attempt.
        timeout_seconds: Per-request timeout.
        backoff_seconds: Base delay of the exponential backoff.
    """

    channel = "slack"

    def __init__(
        self,
        bot_token: str,
        api_base_url: str = "https://slack.com/api",
        escalation_channel_id: str | None = None,
        retry_count: int = 2,
        timeout_seconds: float = 10,
        backoff_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.api_base_url = api_base_url.rstrip("/")
        self.escalation_channel_id = escalation_channel_id
        self.retry_count = retry_count
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds
        self.logger = logger.bind(component="slack_notifier")
        self._client = client

    @classmethod
    def from_config(cls, config: SlackConfig) -> SlackNotifier:
        """Build a notifier from the slack configuration section."""
        if not config.bot_token:
            raise ValueError("Slack bot_token is not configured")
        return cls(
            bot_token=config.bot_token,
            api_base_url=config.api_base_url,
            escalation_channel_id=config.escalation_channel_id,
            retry_count=config.retry_count,
            timeout_seconds=config.timeout_seconds,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Post a message to a channel or user id.

        Returns:
            The decoded Slack API response.

        Raises:
            NotificationFailed: If the message could not be delivered.
        """
        client = await self._get_client()
        body: dict[str, Any] = {
            "channel": channel,
            "text": text,
            "unfurl_links": False,
            "unfurl_media": False,
        }
        if blocks:
            body["blocks"] = blocks
        headers = {
            "Authorization": f"Bearer {self.bot_token}",
            "Content-Type": "application/json; charset=utf-8",
        }

        last_error = "unknown error"
        for attempt in range(self.retry_count + 1):
            try:
                response = await client.post(
                    f"{self.api_base_url}/chat.postMessage",
                    json=body,
                    headers=headers,
                    timeout=self.timeout_seconds,
                )
            except httpx.RequestError as e:
                last_error = f"{type(e).__name__}: {e}"
                self.logger.warning(
                    "slack_request_failed", channel=channel, attempt=attempt + 1, error=last_error
                )
            else:
                if response.status_code in _RETRYABLE_STATUS:
                    last_error = f"HTTP {response.status_code}"
                    self.logger.warning(
                        "slack_request_retryable",
                        channel=channel,
                        attempt=attempt + 1,
                        status_code=response.status_code,
                    )
                elif not response.is_success:
                    raise NotificationFailed("slack", channel, f"HTTP {response.status_code}")
                else:
                    payload = response.json()
                    if payload.get("ok"):
                        self.logger.info(
                            "slack_message_sent", channel=channel, attempt=attempt + 1
                        )
                        return payload
                    error = str(payload.get("error", "unknown_error"))
                    if error != "ratelimited":
                        raise NotificationFailed("slack", channel, error)
                    last_error = error

            if attempt < self.retry_count:
                await asyncio.sleep(self.backoff_seconds * 2**attempt)

        raise NotificationFailed("slack", channel, last_error)

    async def notify_reviewer(self, reviewer: Recipient, notice: ReviewNotice) -> None:
        """Send a reminder DM to the reviewer.

        Raises:
            NotificationFailed: If the reviewer has no Slack user id or the
                message could not be delivered.
        """
        if not reviewer.slack_user_id:
            raise NotificationFailed("slack", str(reviewer.id), "reviewer has no slack_user_id")
        text, blocks = reminder_message(notice)
        await self.post_message(reviewer.slack_user_id, text, blocks)

    async def notify_team_leads(
        self,
        organization_id: uuid.UUID,
        leads: Sequence[Recipient],
        notice: ReviewNotice,
    ) -> None:
        """Send an escalation to the escalation channel or to each lead.

        Raises:
            NotificationFailed: If no destination exists or any delivery failed.
        """
        text, blocks = escalation_message(notice)
        if self.escalation_channel_id:
            await self.post_message(self.escalation_channel_id, text, blocks)
            return

        targets = [lead.slack_user_id for lead in leads if lead.slack_user_id]
        if not targets:
            raise NotificationFailed(
                "slack", str(organization_id), "no team lead with a slack_user_id"
            )

        failures: list[str] = []
        for target in targets:
            try:
                await self.post_message(target, text, blocks)
            except NotificationFailed as e:
                failures.append(f"{target}: {e.detail}")
        if failures:
            raise NotificationFailed("slack", str(organization_id), "; ".join(failures))

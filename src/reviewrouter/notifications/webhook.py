"""Webhook notifier for ReviewRouter escalation events.

Posts reminder and escalation notices as JSON to an external endpoint.
It supports:
- HMAC-SHA256 signature over the raw body for payload authenticity
- Retry logic with exponential backoff on delivery failures
- Structured payloads with event type and timestamp

Headers sent with every delivery:
    X-ReviewRouter-Event: assignment.reminder | assignment.escalation
    X-ReviewRouter-Timestamp: unix seconds
    X-ReviewRouter-Signature: hex HMAC-SHA256 (only when a secret is set)

Example:
    notifier = WebhookNotifier(url="https://hooks.example.com/review", secret="s3cret")
    await notifier.notify_reviewer(recipient, notice)
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from reviewrouter.config import WebhookConfig
from reviewrouter.errors import NotificationFailed
from reviewrouter.notifications.base import Recipient, ReviewNotice

logger = structlog.get_logger(__name__)


class WebhookEvent(str, Enum):
    """Types of webhook events that can be dispatched."""

    REMINDER = "assignment.reminder"
    ESCALATION = "assignment.escalation"


class WebhookPayload(BaseModel):
    """Structured payload for webhook delivery.

    Attributes:
        event: The type of event being delivered.
        timestamp: ISO 8601 timestamp when the event occurred.
        data: Event-specific data payload.
    """

    event: WebhookEvent = Field(..., description="The webhook event type")
    timestamp: str = Field(..., description="ISO 8601 timestamp of the event")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific data")


def sign_payload(payload: str, secret: str) -> str:
    """Generate the hex HMAC-SHA256 signature of a payload."""
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


class WebhookNotifier:
    """Delivers notices to a single webhook endpoint.

    Attributes:
        url: Destination URL.
        secret: Optional signing secret.
        retry_count: Retries after the first attempt.
        timeout_seconds: Per-request timeout.
        backoff_seconds: Base delay of the exponential backoff.
    """

    channel = "webhook"

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        retry_count: int = 3,
        timeout_seconds: float = 30,
        backoff_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self.retry_count = retry_count
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds
        self.logger = logger.bind(component="webhook_notifier")
        self._client = client

    @classmethod
    def from_config(cls, config: WebhookConfig) -> WebhookNotifier:
        """Build a notifier from the webhook configuration section."""
        if not config.url:
            raise ValueError("Webhook url is not configured")
        return cls(
            url=config.url,
            secret=config.secret,
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

    def _build_headers(self, event: WebhookEvent, payload_str: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-ReviewRouter-Event": event.value,
            "X-ReviewRouter-Timestamp": str(int(datetime.now(timezone.utc).timestamp())),
        }
        if self.secret:
            headers["X-ReviewRouter-Signature"] = sign_payload(payload_str, self.secret)
        return headers

    async def send(self, event: WebhookEvent, data: dict[str, Any]) -> None:
        """Deliver one event, retrying transient failures.

        Raises:
            NotificationFailed: If every attempt failed.
        """
        payload = WebhookPayload(
            event=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data,
        )
        payload_str = payload.model_dump_json()
        headers = self._build_headers(event, payload_str)
        client = await self._get_client()

        last_error = "unknown error"
        for attempt in range(self.retry_count + 1):
            try:
                response = await client.post(
                    self.url,
                    content=payload_str,
                    headers=headers,
                    timeout=self.timeout_seconds,
                )
                if response.is_success:
                    self.logger.info(
                        "webhook_delivered",
                        url=self.url,
                        event_type=event.value,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                    )
                    return
                last_error = f"HTTP {response.status_code}"
                self.logger.warning(
                    "webhook_non_success_status",
                    url=self.url,
                    event_type=event.value,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )
            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
                self.logger.warning(
                    "webhook_timed_out", url=self.url, event_type=event.value, attempt=attempt + 1
                )
            except httpx.RequestError as e:
                last_error = str(e)
                self.logger.warning(
                    "webhook_request_failed",
                    url=self.url,
                    event_type=event.value,
                    attempt=attempt + 1,
                    error=str(e),
                )

            if attempt < self.retry_count:
                await asyncio.sleep(self.backoff_seconds * 2**attempt)

        self.logger.error(
            "webhook_delivery_exhausted",
            url=self.url,
            event_type=event.value,
            retry_count=self.retry_count,
            error=last_error,
        )
        raise NotificationFailed("webhook", self.url, last_error)

    async def notify_reviewer(self, reviewer: Recipient, notice: ReviewNotice) -> None:
        data = notice.model_dump(mode="json")
        data["recipient"] = {
            "id": str(reviewer.id),
            "name": reviewer.name,
            "github_username": reviewer.github_username,
            "email": reviewer.email,
        }
        await self.send(WebhookEvent.REMINDER, data)

    async def notify_team_leads(
        self,
        organization_id: uuid.UUID,
        leads: Sequence[Recipient],
        notice: ReviewNotice,
    ) -> None:
        data = notice.model_dump(mode="json")
        data["team_leads"] = [
            {"id": str(lead.id), "name": lead.name, "github_username": lead.github_username}
            for lead in leads
        ]
        await self.send(WebhookEvent.ESCALATION, data)

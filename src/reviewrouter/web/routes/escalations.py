"""Escalation endpoints.

- ``GET /cron/escalations``: scheduled trigger. When ``web.cron_secret`` is
  configured the request must carry ``Authorization: Bearer <secret>``.
- ``POST /cron/escalations``: manual trigger. A bearer token is always
  required and must match ``web.cron_secret`` when one is configured.
- ``GET /organizations/{organization_id}/escalations``: open review summary.

Both triggers run one sweep and answer with the sweep statistics.
"""

from __future__ import annotations

import hmac
import time
from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.clock import utc_now
from reviewrouter.config import ReviewRouterConfig
from reviewrouter.database.connection import bounded_store_call
from reviewrouter.database.queries.organization import (
    get_escalation_thresholds,
    get_organization,
)
from reviewrouter.errors import NotFoundError
from reviewrouter.escalation.processor import EscalationProcessor, EscalationStats
from reviewrouter.escalation.summary import EscalationSummary, get_escalation_summary
from reviewrouter.web.dependencies import get_config, get_processor, get_session_factory

logger = structlog.get_logger(__name__)


class EscalationRunResponse(EscalationStats):
    """Sweep statistics plus run metadata."""

    success: bool = True
    duration_ms: float
    timestamp: datetime
    triggered_by: str


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer ") :].strip()


def _check_secret(token: str | None, secret: str | None, required: bool) -> None:
    if secret is None:
        if required and not token:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return
    if token is None or not hmac.compare_digest(token, secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _run_sweep(processor: EscalationProcessor, triggered_by: str) -> EscalationRunResponse:
    logger.info("escalation_run_started", triggered_by=triggered_by)
    start = time.perf_counter()
    stats = await processor.run()
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    logger.info(
        "escalation_run_completed",
        triggered_by=triggered_by,
        reminded=stats.reminded_count,
        escalated=stats.escalated_count,
        errors=len(stats.errors),
        duration_ms=duration_ms,
    )
    return EscalationRunResponse(
        **stats.model_dump(),
        duration_ms=duration_ms,
        timestamp=utc_now(),
        triggered_by=triggered_by,
    )


def create_escalations_router() -> APIRouter:
    """Create the escalation router.

    Routes:
        GET /cron/escalations - Scheduled sweep
        POST /cron/escalations - Manual sweep
        GET /organizations/{organization_id}/escalations - Open review summary
    """
    router = APIRouter(tags=["escalations"])

    @router.get("/cron/escalations", response_model=EscalationRunResponse)
    async def cron_escalations(
        authorization: str | None = Header(default=None),
        config: ReviewRouterConfig = Depends(get_config),  # noqa: B008
        processor: EscalationProcessor = Depends(get_processor),  # noqa: B008
    ) -> EscalationRunResponse:
        _check_secret(_bearer_token(authorization), config.web.cron_secret, required=False)
        return await _run_sweep(processor, "cron")

    @router.post("/cron/escalations", response_model=EscalationRunResponse)
    async def manual_escalations(
        authorization: str | None = Header(default=None),
        config: ReviewRouterConfig = Depends(get_config),  # noqa: B008
        processor: EscalationProcessor = Depends(get_processor),  # noqa: B008
    ) -> EscalationRunResponse:
        _check_secret(_bearer_token(authorization), config.web.cron_secret, required=True)
        return await _run_sweep(processor, "manual")

    @router.get(
        "/organizations/{organization_id}/escalations",
        response_model=EscalationSummary,
    )
    async def escalation_summary(
        organization_id: UUID,
        config: ReviewRouterConfig = Depends(get_config),  # noqa: B008
        processor: EscalationProcessor = Depends(get_processor),  # noqa: B008
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> EscalationSummary:
        """Summarize an organization's open reviews against its thresholds.

        Raises:
            HTTPException: 404 if the organization does not exist.
        """

        async def _read() -> EscalationSummary:
            async with session_factory() as session:
                if await get_organization(session, organization_id) is None:
                    raise NotFoundError("organization", str(organization_id))
                thresholds = await get_escalation_thresholds(
                    session, organization_id, processor.default_thresholds
                )
                return await get_escalation_summary(
                    session, organization_id, thresholds, processor.clock()
                )

        try:
            return await bounded_store_call(
                _read(), config.routing.store_timeout_seconds, "escalation_summary"
            )
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    return router

"""Liveness and readiness endpoints.

``/health/ready`` checks that the store answers ``SELECT 1`` and reports how
many organizations currently have a rule set loaded in the routing cache.
A cold cache is normal after startup or a rule change; it is reported, not
treated as unready.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.logging import get_logger
from reviewrouter.routing.cache import RuleCache
from reviewrouter.web.dependencies import get_rule_cache, get_session_factory

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    """Readiness of the routing service.

    Attributes:
        status: "ok" or "unhealthy".
        database: "connected" or "disconnected".
        cached_rule_sets: Organizations with a loaded rule set, or None
            while routing services are not installed yet.
    """

    status: str
    database: str
    cached_rule_sets: int | None = None


def create_health_router() -> APIRouter:
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        cache: RuleCache | None = Depends(get_rule_cache),  # noqa: B008
    ) -> dict[str, Any]:
        cached = cache.size if cache is not None else None
        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.warning(
                "readiness_check_failed", error=str(exc), cached_rule_sets=cached
            )
            return {"status": "unhealthy", "database": "disconnected", "cached_rule_sets": cached}

        logger.debug("readiness_check_passed", cached_rule_sets=cached)
        return {"status": "ok", "database": "connected", "cached_rule_sets": cached}

    return router

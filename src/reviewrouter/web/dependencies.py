"""FastAPI dependencies resolving shared objects from ``app.state``."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewrouter.config import ReviewRouterConfig
    from reviewrouter.escalation.processor import EscalationProcessor
    from reviewrouter.routing.cache import RuleCache
    from reviewrouter.routing.rules import RuleService
    from reviewrouter.routing.service import RoutingService


def get_config(request: Request) -> ReviewRouterConfig:
    return request.app.state.config  # type: ignore[no-any-return]


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory  # type: ignore[no-any-return]


def get_rule_cache(request: Request) -> RuleCache | None:
    """Shared rule cache, or None before services are installed."""
    return getattr(request.app.state, "cache", None)


def get_routing_service(request: Request) -> RoutingService:
    return request.app.state.routing_service  # type: ignore[no-any-return]


def get_rule_service(request: Request) -> RuleService:
    return request.app.state.rule_service  # type: ignore[no-any-return]


def get_processor(request: Request) -> EscalationProcessor:
    return request.app.state.processor  # type: ignore[no-any-return]

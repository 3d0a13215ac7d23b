"""Wiring of the routing and escalation services.

Both the web application and the CLI need the same object graph: a rule
cache backed by the store, the routing engine and service on top of it,
the rule management service sharing that cache, and the escalation
processor with its notifier. ``build_services`` assembles it once from a
configuration and a session factory.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.config import ReviewRouterConfig
from reviewrouter.escalation.processor import EscalationProcessor
from reviewrouter.notifications import Notifier, build_notifier
from reviewrouter.routing.cache import RuleCache, store_loader
from reviewrouter.routing.engine import RoutingEngine
from reviewrouter.routing.rules import RuleService
from reviewrouter.routing.service import RoutingService


@dataclass
class Services:
    """Long-lived service objects shared by one process."""

    config: ReviewRouterConfig
    session_factory: async_sessionmaker[AsyncSession]
    cache: RuleCache
    routing: RoutingService
    rules: RuleService
    processor: EscalationProcessor
    notifier: Notifier

    async def close(self) -> None:
        await self.notifier.close()


def build_services(
    config: ReviewRouterConfig,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier | None = None,
) -> Services:
    """Assemble the services for a configuration.

    Args:
        config: Loaded configuration.
        session_factory: Factory for store sessions.
        notifier: Notifier override; built from the configuration when None.

    Returns:
        Services sharing a single rule cache.
    """
    cache = RuleCache(store_loader(session_factory, config.routing.store_timeout_seconds))
    notifier = notifier or build_notifier(config)
    return Services(
        config=config,
        session_factory=session_factory,
        cache=cache,
        routing=RoutingService(
            session_factory,
            RoutingEngine(cache),
            store_timeout=config.routing.store_timeout_seconds,
        ),
        rules=RuleService(
            session_factory,
            cache,
            default_fallback_strategy=config.routing.default_fallback_strategy,
        ),
        processor=EscalationProcessor(session_factory, notifier, config.escalation),
        notifier=notifier,
    )

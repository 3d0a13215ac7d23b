"""FastAPI application factory for ReviewRouter.

This module provides the application factory that creates and configures
a FastAPI application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Database and service lifecycle management
- Mapping of store outages to 503 responses

Example usage:
    >>> from reviewrouter.config import ReviewRouterConfig
    >>> from reviewrouter.web.app import create_app
    >>>
    >>> app = create_app(ReviewRouterConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reviewrouter import __version__
from reviewrouter.config import ReviewRouterConfig
from reviewrouter.database.connection import get_engine, get_session_factory
from reviewrouter.errors import StoreUnavailable
from reviewrouter.logging import get_logger
from reviewrouter.services import build_services
from reviewrouter.web.middleware import RequestLoggingMiddleware
from reviewrouter.web.routes.assignments import create_assignments_router
from reviewrouter.web.routes.escalations import create_escalations_router
from reviewrouter.web.routes.events import create_events_router
from reviewrouter.web.routes.health import create_health_router
from reviewrouter.web.routes.rules import create_rules_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewrouter.notifications import Notifier

logger = get_logger(__name__)


def _install_services(
    app: FastAPI,
    config: ReviewRouterConfig,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier | None,
) -> None:
    services = build_services(config, session_factory, notifier)
    app.state.services = services
    app.state.session_factory = session_factory
    app.state.cache = services.cache
    app.state.routing_service = services.routing
    app.state.rule_service = services.rules
    app.state.processor = services.processor
    app.state.notifier = services.notifier


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the database engine and services.

    When the application was created with an external session factory
    the services are already installed and the lifespan only closes the
    notifier on shutdown.
    """
    config: ReviewRouterConfig = app.state.config
    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    engine = None
    if getattr(app.state, "services", None) is None:
        engine = get_engine(config.database)
        _install_services(app, config, get_session_factory(engine), app.state.notifier_override)
        logger.info(
            "database_pool_initialized",
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )

    yield

    logger.info("app_shutdown_begin")
    await app.state.services.close()
    if engine is not None:
        await engine.dispose()
        logger.info("database_pool_disposed")


async def _store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error(
        "store_unavailable",
        path=request.url.path,
        operation=exc.operation,
        detail=exc.detail,
    )
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def create_app(
    config: ReviewRouterConfig | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional configuration. If None, creates default config.
        session_factory: Optional session factory. When given, services are
            installed immediately and no engine is created by the lifespan.
        notifier: Optional notifier overriding the configured channels.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = ReviewRouterConfig()

    app = FastAPI(
        title="ReviewRouter",
        version=__version__,
        description="Rule-based pull request reviewer routing and escalation",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.notifier_override = notifier
    app.state.services = None
    if session_factory is not None:
        _install_services(app, config, session_factory, notifier)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(StoreUnavailable, _store_unavailable_handler)

    app.include_router(create_health_router())
    app.include_router(create_events_router())
    app.include_router(create_escalations_router())
    app.include_router(create_rules_router())
    app.include_router(create_assignments_router())

    logger.info("app_created", cors_origins=config.web.cors_origins, version=__version__)
    return app

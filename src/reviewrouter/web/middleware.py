"""Request logging middleware for ReviewRouter.

Every request gets a correlation id that is bound to the structlog context
and echoed on the response. Event deliveries forwarded from GitHub carry
``X-GitHub-Delivery``; when the caller sends no ``X-Correlation-ID`` that
delivery id is used, so a routed event can be traced back to its webhook
delivery. Health polling is logged at debug level.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from reviewrouter.logging import get_logger, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
DELIVERY_HEADER = "X-GitHub-Delivery"


def correlation_id_for(request: Request) -> str:
    """Caller correlation id, then GitHub delivery id, then a fresh UUID."""
    return (
        request.headers.get(CORRELATION_HEADER)
        or request.headers.get(DELIVERY_HEADER)
        or str(uuid.uuid4())
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs HTTP requests with timing and correlation ids."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = correlation_id_for(request)
        set_correlation_id(correlation_id)
        path = request.url.path
        log = logger.debug if path.startswith("/health") else logger.info
        start_time = time.perf_counter()

        log("request_started", method=request.method, path=path)
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(exc),
                exc_info=True,
            )
            raise
        else:
            log(
                "request_completed",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            set_correlation_id(None)

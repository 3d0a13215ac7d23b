"""HTTP surface for ReviewRouter.

Exposes the pull-request event endpoint, the escalation cron trigger, rule
management, review outcomes, and health checks through FastAPI.
"""

from __future__ import annotations

from reviewrouter.web.app import create_app
from reviewrouter.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]

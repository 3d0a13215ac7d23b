"""FastAPI route definitions for ReviewRouter.

Routers for health checks, pull request events, escalations, rule
management, and review assignments.
"""

from __future__ import annotations

from reviewrouter.web.routes.assignments import (
    AssignmentResponse,
    ReviewOutcome,
    create_assignments_router,
)
from reviewrouter.web.routes.escalations import (
    EscalationRunResponse,
    create_escalations_router,
)
from reviewrouter.web.routes.events import RoutingResponse, create_events_router
from reviewrouter.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from reviewrouter.web.routes.rules import (
    RuleCreate,
    RuleReorder,
    RuleResponse,
    RuleUpdate,
    create_rules_router,
)

__all__ = [
    # Assignments
    "AssignmentResponse",
    "ReviewOutcome",
    "create_assignments_router",
    # Escalations
    "EscalationRunResponse",
    "create_escalations_router",
    # Events
    "RoutingResponse",
    "create_events_router",
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
    # Rules
    "RuleCreate",
    "RuleReorder",
    "RuleResponse",
    "RuleUpdate",
    "create_rules_router",
]

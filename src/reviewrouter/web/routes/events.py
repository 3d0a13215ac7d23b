"""Pull request event intake.

``POST /events/pull-requests`` routes one normalized pull request event and
reports the outcome. A pull request no reviewer can take is not an HTTP
error: it is answered with 200 and outcome ``no_eligible_reviewer``.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from reviewrouter.errors import NotFoundError
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.models import RoutingResult
from reviewrouter.routing.service import RoutingService
from reviewrouter.web.dependencies import get_routing_service

logger = structlog.get_logger(__name__)


class ReviewerResponse(BaseModel):
    """Reviewer chosen for a pull request."""

    id: UUID
    name: str
    github_username: str


class RoutingResponse(BaseModel):
    """Outcome of routing one event."""

    outcome: str
    rule_id: UUID | None = None
    rule_name: str | None = None
    fallback: str | None = None
    routing_round: int | None = None
    assignment_ids: list[UUID] = Field(default_factory=list)
    reviewers: list[ReviewerResponse] = Field(default_factory=list)
    reason: str | None = None

    @classmethod
    def from_result(cls, result: RoutingResult) -> RoutingResponse:
        decision = result.decision
        return cls(
            outcome=result.outcome.value,
            rule_id=decision.rule_id if decision else None,
            rule_name=decision.rule.name if decision and decision.rule else None,
            fallback=decision.fallback.value if decision and decision.fallback else None,
            routing_round=result.routing_round,
            assignment_ids=list(result.assignment_ids),
            reviewers=[
                ReviewerResponse(id=r.id, name=r.name, github_username=r.github_username)
                for r in result.reviewers
            ],
            reason=result.reason,
        )


def create_events_router() -> APIRouter:
    """Create the event intake router.

    Routes:
        POST /events/pull-requests - Route a pull request event
    """
    router = APIRouter(prefix="/events", tags=["events"])

    @router.post("/pull-requests", response_model=RoutingResponse)
    async def route_pull_request(
        event: PullRequestEvent,
        service: RoutingService = Depends(get_routing_service),  # noqa: B008
    ) -> RoutingResponse:
        """Route a pull request event to reviewers.

        Raises:
            HTTPException: 404 if the organization does not exist.
        """
        try:
            result = await service.route_event(event)
        except NotFoundError as e:
            logger.warning("event_organization_not_found", organization_id=e.identifier)
            raise HTTPException(status_code=404, detail=str(e)) from e

        return RoutingResponse.from_result(result)

    return router

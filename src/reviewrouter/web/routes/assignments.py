"""Review assignment endpoints.

Lets reviewers (or the integration acting for them) record a review
outcome, which closes the assignment's escalation lifecycle.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.clock import utc_now
from reviewrouter.config import ReviewRouterConfig
from reviewrouter.database.connection import bounded_store_call
from reviewrouter.database.models.assignment import (
    AssignmentStatus,
    NotificationState,
    ReviewAssignment,
)
from reviewrouter.database.queries.assignment import get_assignment
from reviewrouter.errors import NotFoundError
from reviewrouter.escalation.reviews import record_review_outcome
from reviewrouter.escalation.state_machine import InvalidTransitionError
from reviewrouter.web.dependencies import get_config, get_session_factory

logger = structlog.get_logger(__name__)


class ReviewOutcome(BaseModel):
    """Request schema for recording a review."""

    approved: bool


class AssignmentResponse(BaseModel):
    """Response schema for assignment data."""

    id: UUID
    organization_id: UUID
    pull_request_id: str
    reviewer_id: UUID
    rule_id: UUID | None
    routing_round: int
    status: AssignmentStatus
    assigned_at: datetime
    reviewed_at: datetime | None
    last_escalated_at: datetime | None
    repository: str
    pr_number: int
    pr_title: str
    pr_url: str | None
    notification_state: NotificationState
    notification_attempts: int

    model_config = {"from_attributes": True}


def create_assignments_router() -> APIRouter:
    """Create the assignments router.

    Routes:
        GET /assignments/{assignment_id} - Get one assignment
        POST /assignments/{assignment_id}/review - Record approve or reject
    """
    router = APIRouter(prefix="/assignments", tags=["assignments"])

    @router.get("/{assignment_id}", response_model=AssignmentResponse)
    async def get_assignment_endpoint(
        assignment_id: UUID,
        config: ReviewRouterConfig = Depends(get_config),  # noqa: B008
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> AssignmentResponse:
        async def _read() -> ReviewAssignment | None:
            async with session_factory() as session:
                return await get_assignment(session, assignment_id)

        assignment = await bounded_store_call(
            _read(), config.routing.store_timeout_seconds, "get_assignment"
        )
        if assignment is None:
            logger.warning("assignment_not_found", assignment_id=str(assignment_id))
            raise HTTPException(status_code=404, detail="Assignment not found")
        return AssignmentResponse.model_validate(assignment)

    @router.post("/{assignment_id}/review", response_model=AssignmentResponse)
    async def review_assignment_endpoint(
        assignment_id: UUID,
        data: ReviewOutcome,
        config: ReviewRouterConfig = Depends(get_config),  # noqa: B008
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> AssignmentResponse:
        """Approve or reject an open assignment.

        Raises:
            HTTPException: 404 if the assignment does not exist, 409 if it
                was already approved or rejected.
        """

        async def _review() -> ReviewAssignment:
            async with session_factory() as session:
                async with session.begin():
                    return await record_review_outcome(
                        session, assignment_id, data.approved, utc_now()
                    )

        try:
            assignment = await bounded_store_call(
                _review(), config.routing.store_timeout_seconds, "record_review_outcome"
            )
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except InvalidTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

        return AssignmentResponse.model_validate(assignment)

    return router

"""Escalation summary for an organization.

Reports how many open reviews an organization has and how many of them
are past the reminder and escalation thresholds, with the open
assignments ordered from longest waiting to shortest.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from reviewrouter.clock import hours_between
from reviewrouter.database.queries.assignment import list_open_assignments_with_reviewers
from reviewrouter.escalation.state_machine import EscalationThresholds


class OpenAssignment(BaseModel):
    """An open assignment with its waiting time."""

    assignment_id: uuid.UUID
    pull_request_id: str
    repository: str
    pr_number: int
    pr_title: str
    pr_url: str | None = None
    reviewer_id: uuid.UUID
    reviewer_name: str
    status: str
    assigned_at: datetime
    hours_pending: float = Field(..., description="Hours since assignment, one decimal")


class EscalationSummary(BaseModel):
    """Counts and details of an organization's open reviews."""

    organization_id: uuid.UUID
    reminder_hours: float
    escalation_hours: float
    pending_reviews: int = 0
    overdue_reminder: int = Field(0, description="Open reviews past the reminder threshold")
    overdue_escalation: int = Field(0, description="Open reviews past the escalation threshold")
    assignments: list[OpenAssignment] = Field(default_factory=list)


async def get_escalation_summary(
    session: AsyncSession,
    organization_id: uuid.UUID,
    thresholds: EscalationThresholds,
    now: datetime,
) -> EscalationSummary:
    """Summarize an organization's open review assignments.

    Args:
        session: Active async database session.
        organization_id: Organization to summarize.
        thresholds: Thresholds the overdue counts are measured against.
        now: Reference time.

    Returns:
        EscalationSummary with assignments sorted by hours pending, descending.
    """
    rows = await list_open_assignments_with_reviewers(session, organization_id)
    assignments = [
        OpenAssignment(
            assignment_id=assignment.id,
            pull_request_id=assignment.pull_request_id,
            repository=assignment.repository,
            pr_number=assignment.pr_number,
            pr_title=assignment.pr_title,
            pr_url=assignment.pr_url,
            reviewer_id=reviewer.id,
            reviewer_name=reviewer.name,
            status=assignment.status.value,
            assigned_at=assignment.assigned_at,
            hours_pending=round(hours_between(assignment.assigned_at, now), 1),
        )
        for assignment, reviewer in rows
    ]
    assignments.sort(key=lambda a: a.hours_pending, reverse=True)

    return EscalationSummary(
        organization_id=organization_id,
        reminder_hours=thresholds.reminder_hours,
        escalation_hours=thresholds.escalation_hours,
        pending_reviews=len(assignments),
        overdue_reminder=sum(
            1 for a in assignments if a.hours_pending >= thresholds.reminder_hours
        ),
        overdue_escalation=sum(
            1 for a in assignments if a.hours_pending >= thresholds.escalation_hours
        ),
        assignments=assignments,
    )

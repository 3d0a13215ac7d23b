"""Rule management REST API endpoints for ReviewRouter.

Provides FastAPI routes for organizations' routing configuration: rules
(list, create, update, delete, reorder), organization routing settings,
repository default reviewers, and escalation policies. Every mutation goes
through RuleService, which invalidates the organization's cached rule set.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from reviewrouter.errors import (
    DuplicatePriorityError,
    InvalidReorderError,
    NotFoundError,
    RuleValidationError,
)
from reviewrouter.routing.rules import RuleService
from reviewrouter.web.dependencies import get_rule_service

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class OrganizationCreate(BaseModel):
    """Request schema for creating an organization."""

    name: str = Field(..., min_length=1, max_length=255)
    timezone: str = "UTC"
    fallback_strategy: str | None = None


class OrganizationRoutingUpdate(BaseModel):
    """Request schema for changing an organization's routing settings."""

    timezone: str | None = None
    fallback_strategy: str | None = None
    default_reviewer_id: UUID | None = None


class OrganizationResponse(BaseModel):
    """Response schema for organization data."""

    id: UUID
    name: str
    timezone: str
    fallback_strategy: str
    default_reviewer_id: UUID | None

    model_config = {"from_attributes": True}


class RuleCreate(BaseModel):
    """Request schema for creating a routing rule."""

    name: str = Field(..., min_length=1, max_length=255)
    directive: dict[str, Any]
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    priority: int | None = Field(default=None, ge=0)
    repository_full_name: str | None = None
    description: str | None = None
    is_active: bool = True


class RuleUpdate(BaseModel):
    """Request schema for updating a rule; omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    directive: dict[str, Any] | None = None
    conditions: list[dict[str, Any]] | None = None
    priority: int | None = Field(default=None, ge=0)
    repository_full_name: str | None = None
    description: str | None = None
    is_active: bool | None = None


class RuleReorder(BaseModel):
    """Request schema for reordering rules; first id gets priority 0."""

    rule_ids: list[UUID] = Field(..., min_length=1)


class RuleResponse(BaseModel):
    """Response schema for rule data."""

    id: UUID
    organization_id: UUID
    name: str
    description: str | None
    repository_full_name: str | None
    conditions: list[dict[str, Any]]
    directive: dict[str, Any]
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RepositoryDefaultUpdate(BaseModel):
    """Request schema for a repository's default reviewer."""

    full_name: str = Field(..., min_length=1)
    default_reviewer_id: UUID | None = None


class RepositoryResponse(BaseModel):
    """Response schema for repository data."""

    id: UUID
    organization_id: UUID
    full_name: str
    default_reviewer_id: UUID | None

    model_config = {"from_attributes": True}


class EscalationPolicyUpdate(BaseModel):
    """Request schema for an organization's escalation thresholds."""

    reminder_hours: float = Field(..., gt=0)
    escalation_hours: float = Field(..., gt=0)


class EscalationPolicyResponse(BaseModel):
    """Response schema for escalation policy data."""

    organization_id: UUID
    reminder_hours: float
    escalation_hours: float

    model_config = {"from_attributes": True}


_NULLABLE_RULE_FIELDS = frozenset({"description", "repository_full_name"})


def _http_error(exc: Exception) -> HTTPException:
    """Map a rule management error to an HTTP error."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DuplicatePriorityError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, InvalidReorderError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


def _organization_response(organization: Any) -> OrganizationResponse:
    return OrganizationResponse(
        id=organization.id,
        name=organization.name,
        timezone=organization.timezone,
        fallback_strategy=organization.fallback_strategy.value,
        default_reviewer_id=organization.default_reviewer_id,
    )


# --- Route Handlers ---


def create_rules_router() -> APIRouter:
    """Create the rule management router.

    Routes:
        POST /organizations - Create an organization
        PATCH /organizations/{organization_id} - Change routing settings
        PUT /organizations/{organization_id}/repositories - Repository default
        PUT /organizations/{organization_id}/escalation-policy - Thresholds
        GET /organizations/{organization_id}/rules - List rules
        POST /organizations/{organization_id}/rules - Create a rule
        PATCH /organizations/{organization_id}/rules/{rule_id} - Update a rule
        DELETE /organizations/{organization_id}/rules/{rule_id} - Delete a rule
        PUT /organizations/{organization_id}/rules/order - Reorder rules
    """
    router = APIRouter(prefix="/organizations", tags=["rules"])

    @router.post("", response_model=OrganizationResponse, status_code=201)
    async def create_organization_endpoint(
        data: OrganizationCreate,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> OrganizationResponse:
        try:
            organization = await service.create_organization(
                data.name, timezone=data.timezone, fallback_strategy=data.fallback_strategy
            )
        except RuleValidationError as e:
            raise _http_error(e) from e
        return _organization_response(organization)

    @router.patch("/{organization_id}", response_model=OrganizationResponse)
    async def update_organization_endpoint(
        organization_id: UUID,
        data: OrganizationRoutingUpdate,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> OrganizationResponse:
        """Change timezone, fallback strategy, or default reviewer."""
        try:
            organization = await service.update_organization_routing(
                organization_id,
                **{
                    key: value
                    for key, value in data.model_dump(exclude_unset=True).items()
                    if value is not None or key == "default_reviewer_id"
                },
            )
        except (NotFoundError, RuleValidationError) as e:
            raise _http_error(e) from e
        return _organization_response(organization)

    @router.put("/{organization_id}/repositories", response_model=RepositoryResponse)
    async def set_repository_default_endpoint(
        organization_id: UUID,
        data: RepositoryDefaultUpdate,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> RepositoryResponse:
        try:
            repository = await service.set_repository_default_reviewer(
                organization_id, data.full_name, data.default_reviewer_id
            )
        except (NotFoundError, RuleValidationError) as e:
            raise _http_error(e) from e
        return RepositoryResponse.model_validate(repository)

    @router.put(
        "/{organization_id}/escalation-policy",
        response_model=EscalationPolicyResponse,
    )
    async def set_escalation_policy_endpoint(
        organization_id: UUID,
        data: EscalationPolicyUpdate,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> EscalationPolicyResponse:
        try:
            policy = await service.set_escalation_policy(
                organization_id, data.reminder_hours, data.escalation_hours
            )
        except (NotFoundError, RuleValidationError) as e:
            raise _http_error(e) from e
        return EscalationPolicyResponse.model_validate(policy)

    @router.get("/{organization_id}/rules", response_model=list[RuleResponse])
    async def list_rules_endpoint(
        organization_id: UUID,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> list[RuleResponse]:
        """List the organization's rules in evaluation order."""
        try:
            rules = await service.list_rules(organization_id)
        except NotFoundError as e:
            raise _http_error(e) from e
        logger.info("rules_listed", organization_id=str(organization_id), count=len(rules))
        return [RuleResponse.model_validate(rule) for rule in rules]

    @router.post("/{organization_id}/rules", response_model=RuleResponse, status_code=201)
    async def create_rule_endpoint(
        organization_id: UUID,
        data: RuleCreate,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> RuleResponse:
        """Create a rule.

        Raises:
            HTTPException: 404 if the organization is unknown, 409 if the
                priority is taken, 422 if the rule is invalid.
        """
        try:
            rule = await service.create_rule(organization_id, **data.model_dump())
        except (NotFoundError, RuleValidationError) as e:
            raise _http_error(e) from e
        return RuleResponse.model_validate(rule)

    @router.put("/{organization_id}/rules/order", response_model=list[RuleResponse])
    async def reorder_rules_endpoint(
        organization_id: UUID,
        data: RuleReorder,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> list[RuleResponse]:
        """Rewrite priorities so that ``rule_ids[i]`` gets priority ``i``.

        Raises:
            HTTPException: 400 unless the list names every rule exactly once.
        """
        try:
            rules = await service.reorder_rules(organization_id, data.rule_ids)
        except (NotFoundError, RuleValidationError) as e:
            raise _http_error(e) from e
        return [RuleResponse.model_validate(rule) for rule in rules]

    @router.patch("/{organization_id}/rules/{rule_id}", response_model=RuleResponse)
    async def update_rule_endpoint(
        organization_id: UUID,
        rule_id: UUID,
        data: RuleUpdate,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> RuleResponse:
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in _NULLABLE_RULE_FIELDS
        }
        try:
            rule = await service.update_rule(organization_id, rule_id, **changes)
        except (NotFoundError, RuleValidationError) as e:
            raise _http_error(e) from e
        return RuleResponse.model_validate(rule)

    @router.delete("/{organization_id}/rules/{rule_id}", status_code=204)
    async def delete_rule_endpoint(
        organization_id: UUID,
        rule_id: UUID,
        service: RuleService = Depends(get_rule_service),  # noqa: B008
    ) -> Response:
        try:
            await service.delete_rule(organization_id, rule_id)
        except NotFoundError as e:
            raise _http_error(e) from e
        return Response(status_code=204)

    return router

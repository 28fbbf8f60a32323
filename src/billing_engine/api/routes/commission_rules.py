"""Commission rule API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from billing_engine.api.dependencies import CurrentPrincipal, DbSession
from billing_engine.api.schemas import (
    BillingMonth,
    CommissionRuleCreate,
    CommissionRuleResponse,
    CommissionRuleUpdate,
    DefaultsResponse,
    ErrorResponse,
    ResolvedDefaultResponse,
)
from billing_engine.calculators.rule_resolver import CommissionRuleResolver
from billing_engine.services.commission_rule_service import CommissionRuleService

router = APIRouter(prefix="/commission-rules", tags=["commission-rules"])


@router.post(
    "",
    response_model=CommissionRuleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def create_commission_rule(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: CommissionRuleCreate,
) -> CommissionRuleResponse:
    service = CommissionRuleService(db)
    rule = await service.create_rule(principal, **payload.model_dump())
    return CommissionRuleResponse.model_validate(rule)


@router.get("", response_model=list[CommissionRuleResponse])
async def list_commission_rules(
    db: DbSession,
    principal: CurrentPrincipal,
    org_id: UUID | None = None,
    collector_id: UUID | None = None,
    include_inactive: bool = True,
) -> list[CommissionRuleResponse]:
    service = CommissionRuleService(db)
    rules = await service.list_rules(
        principal,
        org_id=org_id,
        collector_id=collector_id,
        include_inactive=include_inactive,
    )
    return [CommissionRuleResponse.model_validate(r) for r in rules]


@router.get(
    "/defaults",
    response_model=DefaultsResponse,
    responses={403: {"model": ErrorResponse}},
)
async def get_commission_defaults(
    db: DbSession,
    principal: CurrentPrincipal,
    org_id: Annotated[UUID, Query()],
    collector_id: Annotated[UUID, Query()],
    billing_month: Annotated[BillingMonth, Query()],
) -> DefaultsResponse:
    """Resolved per-type defaults for a collector's billing month."""
    resolver = CommissionRuleResolver(db)
    defaults = await resolver.resolve_defaults(principal, org_id, collector_id, billing_month)
    return DefaultsResponse(
        org_id=org_id,
        collector_id=collector_id,
        billing_month=billing_month,
        has_defaults=bool(defaults),
        defaults={
            billing_type: ResolvedDefaultResponse(
                commission_type=d.commission_type,
                commission_rate=d.commission_rate,
                commission_amount=d.commission_amount,
                source_rule_id=d.source_rule_id,
            )
            for billing_type, d in defaults.items()
        },
    )


@router.get(
    "/{rule_id}",
    response_model=CommissionRuleResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_commission_rule(
    db: DbSession,
    principal: CurrentPrincipal,
    rule_id: Annotated[UUID, Path()],
) -> CommissionRuleResponse:
    service = CommissionRuleService(db)
    rule = await service.get_rule(principal, rule_id)
    return CommissionRuleResponse.model_validate(rule)


@router.patch(
    "/{rule_id}",
    response_model=CommissionRuleResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_commission_rule(
    db: DbSession,
    principal: CurrentPrincipal,
    rule_id: Annotated[UUID, Path()],
    payload: CommissionRuleUpdate,
) -> CommissionRuleResponse:
    """Partial update; a rule settled into finalized items only accepts is_active and notes."""
    service = CommissionRuleService(db)
    rule = await service.update_rule(principal, rule_id, **payload.model_dump(exclude_unset=True))
    return CommissionRuleResponse.model_validate(rule)


@router.delete(
    "/{rule_id}",
    response_model=CommissionRuleResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_commission_rule(
    db: DbSession,
    principal: CurrentPrincipal,
    rule_id: Annotated[UUID, Path()],
) -> CommissionRuleResponse:
    service = CommissionRuleService(db)
    rule = await service.delete_rule(principal, rule_id)
    return CommissionRuleResponse.model_validate(rule)

"""Billing settings API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from billing_engine.api.dependencies import CurrentPrincipal, DbSession
from billing_engine.api.schemas import (
    BillingSettingsResponse,
    BillingSettingsUpdate,
    ErrorResponse,
)
from billing_engine.services.settings_service import BillingSettingsService

router = APIRouter(prefix="/billing-settings", tags=["billing-settings"])


@router.get(
    "/{org_id}",
    response_model=BillingSettingsResponse,
    responses={403: {"model": ErrorResponse}},
)
async def get_billing_settings(
    db: DbSession,
    principal: CurrentPrincipal,
    org_id: Annotated[UUID, Path()],
) -> BillingSettingsResponse:
    """Tax settings of an org, or the defaults if it has none."""
    service = BillingSettingsService(db)
    row = await service.get_settings(principal, org_id)
    return BillingSettingsResponse.model_validate(row)


@router.put(
    "/{org_id}",
    response_model=BillingSettingsResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def update_billing_settings(
    db: DbSession,
    principal: CurrentPrincipal,
    org_id: Annotated[UUID, Path()],
    payload: BillingSettingsUpdate,
) -> BillingSettingsResponse:
    service = BillingSettingsService(db)
    row = await service.update_settings(
        principal, org_id, payload.tax_rate, payload.tax_rounding_mode
    )
    return BillingSettingsResponse.model_validate(row)

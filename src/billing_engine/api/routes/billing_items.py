"""Billing item API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from billing_engine.api.dependencies import CurrentPrincipal, DbSession
from billing_engine.api.schemas import (
    ApplyDefaultsRequest,
    BatchCommissionUpdate,
    BatchResponse,
    BillingItemCreate,
    BillingItemResponse,
    BillingMonth,
    BillingMonthsResponse,
    CommissionUpdate,
    ErrorResponse,
    ItemIdsRequest,
    StatusUpdate,
)
from billing_engine.services.billing_item_service import BatchResult, BillingItemService
from billing_engine.services.state_machine import BillingItemStatus

router = APIRouter(prefix="/billing-items", tags=["billing-items"])


def _batch_response(result: BatchResult) -> BatchResponse:
    return BatchResponse(
        updated_count=result.updated_count,
        skipped_count=result.skipped_count,
        updated_ids=result.updated_ids,
        skipped_ids=result.skipped_ids,
    )


# ============================================================================
# Billing item CRUD
# ============================================================================


@router.post(
    "",
    response_model=BillingItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def create_billing_item(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: BillingItemCreate,
) -> BillingItemResponse:
    """Create a DRAFT billing item with tax from the org's settings."""
    service = BillingItemService(db)
    item = await service.create_item(principal, **payload.model_dump())
    return BillingItemResponse.model_validate(item)


@router.get("", response_model=list[BillingItemResponse])
async def list_billing_items(
    db: DbSession,
    principal: CurrentPrincipal,
    org_id: UUID | None = None,
    billing_month: Annotated[BillingMonth | None, Query()] = None,
    collector_id: UUID | None = None,
    status_filter: Annotated[BillingItemStatus | None, Query(alias="status")] = None,
) -> list[BillingItemResponse]:
    """List billing items visible to the caller."""
    service = BillingItemService(db)
    items = await service.list_items(
        principal,
        org_id=org_id,
        billing_month=billing_month,
        collector_id=collector_id,
        status=status_filter,
    )
    return [BillingItemResponse.model_validate(i) for i in items]


@router.get("/months", response_model=BillingMonthsResponse)
async def list_billing_months(
    db: DbSession,
    principal: CurrentPrincipal,
    org_id: Annotated[UUID, Query()],
) -> BillingMonthsResponse:
    """Billing months that have items, newest first."""
    service = BillingItemService(db)
    months = await service.list_billing_months(principal, org_id)
    return BillingMonthsResponse(org_id=org_id, months=months)


@router.get(
    "/{item_id}",
    response_model=BillingItemResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_billing_item(
    db: DbSession,
    principal: CurrentPrincipal,
    item_id: Annotated[UUID, Path()],
) -> BillingItemResponse:
    service = BillingItemService(db)
    item = await service.get_item(principal, item_id)
    return BillingItemResponse.model_validate(item)


@router.delete(
    "/{item_id}",
    response_model=BillingItemResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_billing_item(
    db: DbSession,
    principal: CurrentPrincipal,
    item_id: Annotated[UUID, Path()],
) -> BillingItemResponse:
    """Soft delete a DRAFT, REJECTED or CANCELLED item."""
    service = BillingItemService(db)
    item = await service.delete_item(principal, item_id)
    return BillingItemResponse.model_validate(item)


# ============================================================================
# Lifecycle
# ============================================================================


@router.patch(
    "/{item_id}/status",
    response_model=BillingItemResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_billing_item_status(
    db: DbSession,
    principal: CurrentPrincipal,
    item_id: Annotated[UUID, Path()],
    payload: StatusUpdate,
) -> BillingItemResponse:
    """Transition an item; the error names the allowed next statuses."""
    service = BillingItemService(db)
    item = await service.update_status(principal, item_id, payload.status, payload.note)
    return BillingItemResponse.model_validate(item)


@router.post(
    "/approve",
    response_model=BatchResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def approve_billing_items(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: ItemIdsRequest,
) -> BatchResponse:
    """Approve SUBMITTED items of one organization."""
    service = BillingItemService(db)
    result = await service.approve_items(principal, payload.item_ids)
    return _batch_response(result)


# ============================================================================
# Commission
# ============================================================================


@router.patch(
    "/{item_id}/commission",
    response_model=BillingItemResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_billing_item_commission(
    db: DbSession,
    principal: CurrentPrincipal,
    item_id: Annotated[UUID, Path()],
    payload: CommissionUpdate,
) -> BillingItemResponse:
    service = BillingItemService(db)
    item = await service.update_commission(principal, item_id, payload.to_request())
    return BillingItemResponse.model_validate(item)


@router.post(
    "/batch-commission",
    response_model=BatchResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def batch_update_commission(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: BatchCommissionUpdate,
) -> BatchResponse:
    """Apply one commission setting to items of a single organization."""
    service = BillingItemService(db)
    result = await service.batch_update_commission(
        principal, payload.item_ids, payload.to_request()
    )
    return _batch_response(result)


@router.post("/apply-defaults", response_model=BatchResponse)
async def apply_default_commissions(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: ApplyDefaultsRequest,
) -> BatchResponse:
    """Fill commission on a month's items from the commission rules."""
    service = BillingItemService(db)
    result = await service.apply_default_commissions(
        principal,
        payload.org_id,
        payload.billing_month,
        collector_id=payload.collector_id,
        overwrite=payload.overwrite,
    )
    return _batch_response(result)

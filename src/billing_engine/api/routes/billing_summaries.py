"""Billing summary API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from billing_engine.api.dependencies import CurrentPrincipal, DbSession
from billing_engine.api.schemas import (
    BatchResponse,
    BillingItemResponse,
    BillingMonth,
    BillingSummaryResponse,
    ErrorResponse,
    SummaryApproveRequest,
    SummaryGenerateAllRequest,
    SummaryGenerateAllResponse,
    SummaryGenerateRequest,
    SummaryGenerateResponse,
    SummaryRejectRequest,
)
from billing_engine.services.state_machine import SummaryStatus
from billing_engine.services.summary_service import (
    GenerationResult,
    SummaryBatchResult,
    SummaryService,
)

router = APIRouter(prefix="/billing-summaries", tags=["billing-summaries"])


def _generation_response(result: GenerationResult) -> SummaryGenerateResponse:
    return SummaryGenerateResponse(
        skipped=result.skipped,
        reason=result.reason,
        summary=(
            BillingSummaryResponse.model_validate(result.summary)
            if result.summary is not None
            else None
        ),
    )


def _batch_response(result: SummaryBatchResult) -> BatchResponse:
    return BatchResponse(
        updated_count=result.updated_count,
        skipped_count=result.skipped_count,
        updated_ids=result.updated_ids,
        skipped_ids=result.skipped_ids,
    )


# ============================================================================
# Generation
# ============================================================================


@router.post(
    "/generate",
    response_model=SummaryGenerateResponse,
    responses={403: {"model": ErrorResponse}},
)
async def generate_summary(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: SummaryGenerateRequest,
) -> SummaryGenerateResponse:
    """Generate one summary; re-running is safe and reports skipped."""
    service = SummaryService(db)
    result = await service.generate_summary(
        principal, payload.org_id, payload.collector_id, payload.billing_month
    )
    return _generation_response(result)


@router.post("/generate-all", response_model=SummaryGenerateAllResponse)
async def generate_all_summaries(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: SummaryGenerateAllRequest,
) -> SummaryGenerateAllResponse:
    service = SummaryService(db)
    result = await service.generate_all_summaries(principal, payload.org_id, payload.billing_month)
    return SummaryGenerateAllResponse(
        generated_count=result.generated_count,
        skipped_count=result.skipped_count,
        generated=[BillingSummaryResponse.model_validate(s) for s in result.generated],
        skipped=result.skipped,
    )


@router.post(
    "/regenerate",
    response_model=SummaryGenerateResponse,
    responses={409: {"model": ErrorResponse}},
)
async def regenerate_summary(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: SummaryGenerateRequest,
) -> SummaryGenerateResponse:
    """Rebuild a DRAFT or REJECTED summary from its current items."""
    service = SummaryService(db)
    result = await service.regenerate_summary(
        principal, payload.org_id, payload.collector_id, payload.billing_month
    )
    return _generation_response(result)


# ============================================================================
# Reads
# ============================================================================


@router.get("", response_model=list[BillingSummaryResponse])
async def list_summaries(
    db: DbSession,
    principal: CurrentPrincipal,
    org_id: UUID | None = None,
    billing_month: Annotated[BillingMonth | None, Query()] = None,
    status_filter: Annotated[SummaryStatus | None, Query(alias="status")] = None,
) -> list[BillingSummaryResponse]:
    service = SummaryService(db)
    summaries = await service.list_summaries(
        principal, org_id=org_id, billing_month=billing_month, status=status_filter
    )
    return [BillingSummaryResponse.model_validate(s) for s in summaries]


@router.post(
    "/approve",
    response_model=BatchResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def approve_summaries(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: SummaryApproveRequest,
) -> BatchResponse:
    """Approve SUBMITTED summaries (system administrators only)."""
    service = SummaryService(db)
    result = await service.approve_summaries(principal, payload.summary_ids)
    return _batch_response(result)


@router.post(
    "/reject",
    response_model=BatchResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def reject_summaries(
    db: DbSession,
    principal: CurrentPrincipal,
    payload: SummaryRejectRequest,
) -> BatchResponse:
    """Reject SUBMITTED summaries with a reason (system administrators only)."""
    service = SummaryService(db)
    result = await service.reject_summaries(
        principal, payload.summary_ids, payload.rejection_reason
    )
    return _batch_response(result)


@router.get(
    "/{summary_id}",
    response_model=BillingSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_summary(
    db: DbSession,
    principal: CurrentPrincipal,
    summary_id: Annotated[UUID, Path()],
) -> BillingSummaryResponse:
    service = SummaryService(db)
    summary = await service.get_summary(principal, summary_id)
    return BillingSummaryResponse.model_validate(summary)


@router.get("/{summary_id}/items", response_model=list[BillingItemResponse])
async def get_summary_items(
    db: DbSession,
    principal: CurrentPrincipal,
    summary_id: Annotated[UUID, Path()],
) -> list[BillingItemResponse]:
    service = SummaryService(db)
    items = await service.get_summary_items(principal, summary_id)
    return [BillingItemResponse.model_validate(i) for i in items]


# ============================================================================
# Workflow
# ============================================================================


@router.post(
    "/{summary_id}/submit",
    response_model=BillingSummaryResponse,
    responses={409: {"model": ErrorResponse}},
)
async def submit_summary(
    db: DbSession,
    principal: CurrentPrincipal,
    summary_id: Annotated[UUID, Path()],
) -> BillingSummaryResponse:
    """Submit a DRAFT summary once every item is APPROVED."""
    service = SummaryService(db)
    summary = await service.submit_summary(principal, summary_id)
    return BillingSummaryResponse.model_validate(summary)


@router.post(
    "/{summary_id}/reopen",
    response_model=BillingSummaryResponse,
    responses={409: {"model": ErrorResponse}},
)
async def reopen_summary(
    db: DbSession,
    principal: CurrentPrincipal,
    summary_id: Annotated[UUID, Path()],
) -> BillingSummaryResponse:
    service = SummaryService(db)
    summary = await service.reopen_summary(principal, summary_id)
    return BillingSummaryResponse.model_validate(summary)

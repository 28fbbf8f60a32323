"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from billing_engine.calculators.types import (
    BillingType,
    CommissionRequest,
    CommissionType,
    RuleBillingType,
    TaxRoundingMode,
)
from billing_engine.services.state_machine import BillingItemStatus, SummaryStatus


def parse_billing_month(value: Any) -> Any:
    """Accept "YYYY-MM" as well as a full date; always the first of the month."""
    if isinstance(value, str) and len(value) == 7:
        value = f"{value}-01"
    if isinstance(value, str):
        value = date.fromisoformat(value)
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.replace(day=1)
    return value


BillingMonth = Annotated[date, BeforeValidator(parse_billing_month)]


# ============================================================================
# Billing item schemas
# ============================================================================


class BillingItemCreate(BaseModel):
    """Schema for creating a billing item."""

    org_id: UUID
    collector_id: UUID
    billing_month: BillingMonth
    billing_type: BillingType
    base_amount: int | None = Field(None, ge=0)
    store_id: UUID | None = None
    item_name: str | None = Field(None, max_length=255)
    unit_price: Decimal | None = Field(None, ge=0)
    quantity: Decimal | None = Field(None, ge=0)
    unit: str | None = Field(None, max_length=32)
    notes: str | None = None


class BillingItemResponse(BaseModel):
    """Schema for billing item response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: UUID
    collector_id: UUID
    store_id: UUID | None = None
    billing_month: date
    billing_type: BillingType
    item_name: str | None = None
    unit_price: Decimal | None = None
    quantity: Decimal | None = None
    unit: str | None = None
    base_amount: int
    tax_rate: Decimal
    tax_amount: int
    total_amount: int
    commission_type: CommissionType | None = None
    commission_rate: Decimal | None = None
    commission_amount: int | None = None
    net_amount: int | None = None
    is_commission_manual: bool
    commission_note: str | None = None
    commission_rule_id: UUID | None = None
    status: BillingItemStatus
    notes: str | None = None
    status_changed_at: datetime | None = None
    status_changed_by: UUID | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    created_at: datetime
    updated_at: datetime


class CommissionUpdate(BaseModel):
    """Commission update request; type-specific requirements are checked by the core."""

    commission_type: CommissionType
    commission_rate: Decimal | None = None
    commission_amount: int | None = None
    commission_note: str | None = Field(None, max_length=500)

    def to_request(self) -> CommissionRequest:
        return CommissionRequest(
            commission_type=self.commission_type,
            commission_rate=self.commission_rate,
            commission_amount=self.commission_amount,
            commission_note=self.commission_note,
        )


class BatchCommissionUpdate(CommissionUpdate):
    """Apply one commission setting to many items."""

    item_ids: list[UUID] = Field(..., min_length=1)


class StatusUpdate(BaseModel):
    """Schema for an item status change."""

    status: BillingItemStatus
    note: str | None = None


class ItemIdsRequest(BaseModel):
    """A list of billing item ids."""

    item_ids: list[UUID] = Field(..., min_length=1)


class ApplyDefaultsRequest(BaseModel):
    """Fill commission from rules for an org's month."""

    org_id: UUID
    billing_month: BillingMonth
    collector_id: UUID | None = None
    overwrite: bool = False


class BatchResponse(BaseModel):
    """Outcome of a batch operation."""

    updated_count: int
    skipped_count: int
    updated_ids: list[UUID] = []
    skipped_ids: list[UUID] = []


class BillingMonthsResponse(BaseModel):
    """Billing months that have items."""

    org_id: UUID
    months: list[date]


# ============================================================================
# Billing summary schemas
# ============================================================================


class SummaryGenerateRequest(BaseModel):
    """Schema for generating one summary."""

    org_id: UUID
    collector_id: UUID
    billing_month: BillingMonth


class SummaryGenerateAllRequest(BaseModel):
    """Schema for generating every summary of an org's month."""

    org_id: UUID
    billing_month: BillingMonth


class BillingSummaryResponse(BaseModel):
    """Schema for billing summary response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: UUID
    collector_id: UUID
    billing_month: date
    total_fixed_amount: int
    total_metered_amount: int
    total_other_amount: int
    fixed_items_count: int
    metered_items_count: int
    other_items_count: int
    total_items_count: int
    subtotal_amount: int
    tax_amount: int
    total_amount: int
    total_commission_amount: int
    total_net_amount: int
    status: SummaryStatus
    submitted_at: datetime | None = None
    submitted_by: UUID | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    rejected_at: datetime | None = None
    rejected_by: UUID | None = None
    rejection_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class SummaryGenerateResponse(BaseModel):
    """Generated summary, or why generation was skipped."""

    skipped: bool
    reason: str | None = None
    summary: BillingSummaryResponse | None = None


class SummaryGenerateAllResponse(BaseModel):
    """Outcome of generating every summary of a month."""

    generated_count: int
    skipped_count: int
    generated: list[BillingSummaryResponse]
    skipped: dict[UUID, str]


class SummaryApproveRequest(BaseModel):
    """Schema for bulk summary approval."""

    summary_ids: list[UUID] = Field(..., min_length=1)


class SummaryRejectRequest(SummaryApproveRequest):
    """Schema for bulk summary rejection. The reason is mandatory."""

    rejection_reason: str = Field(..., min_length=1, max_length=2000)


# ============================================================================
# Commission rule schemas
# ============================================================================


class CommissionRuleCreate(BaseModel):
    """Schema for creating a commission rule."""

    org_id: UUID
    collector_id: UUID | None = None
    billing_type: RuleBillingType
    commission_type: CommissionType
    commission_value: Decimal = Field(..., ge=0)
    is_active: bool = True
    effective_from: date | None = None
    effective_to: date | None = None
    notes: str | None = Field(None, max_length=500)


class CommissionRuleUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    collector_id: UUID | None = None
    billing_type: RuleBillingType | None = None
    commission_type: CommissionType | None = None
    commission_value: Decimal | None = Field(None, ge=0)
    is_active: bool | None = None
    effective_from: date | None = None
    effective_to: date | None = None
    notes: str | None = Field(None, max_length=500)


class CommissionRuleResponse(BaseModel):
    """Schema for commission rule response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: UUID
    collector_id: UUID | None = None
    billing_type: RuleBillingType
    commission_type: CommissionType
    commission_value: Decimal
    is_active: bool
    effective_from: date | None = None
    effective_to: date | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class ResolvedDefaultResponse(BaseModel):
    """Winning rule for one billing type."""

    commission_type: CommissionType
    commission_rate: Decimal | None = None
    commission_amount: int | None = None
    source_rule_id: UUID


class DefaultsResponse(BaseModel):
    """Per-type defaults; types without a rule are absent."""

    org_id: UUID
    collector_id: UUID
    billing_month: date
    has_defaults: bool
    defaults: dict[BillingType, ResolvedDefaultResponse]


# ============================================================================
# Settings schemas
# ============================================================================


class BillingSettingsUpdate(BaseModel):
    """Schema for replacing an org's tax settings."""

    tax_rate: Decimal = Field(..., ge=0, lt=1)
    tax_rounding_mode: TaxRoundingMode = TaxRoundingMode.FLOOR


class BillingSettingsResponse(BaseModel):
    """Schema for billing settings response."""

    model_config = ConfigDict(from_attributes=True)

    org_id: UUID
    tax_rate: Decimal
    tax_rounding_mode: TaxRoundingMode
    updated_at: datetime | None = None


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None

"""Billing item, summary, commission rule, settings and audit models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.models.base import Base, SoftDeleteMixin, TimestampMixin, utcnow


# ===== Billing Items =====


class BillingItem(Base, TimestampMixin, SoftDeleteMixin):
    """One billable line: store x item x month x collector."""

    __tablename__ = "billing_item"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    collector_id: Mapped[UUID] = mapped_column(nullable=False)
    store_id: Mapped[UUID | None] = mapped_column(nullable=True)
    billing_month: Mapped[date] = mapped_column(Date, nullable=False)
    billing_type: Mapped[str] = mapped_column(String(16), nullable=False)
    item_name: Mapped[str | None] = mapped_column(String, nullable=True)

    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Amounts are integers in the smallest currency unit
    base_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    tax_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Commission (rate on a 0-100 scale)
    commission_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)
    commission_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    net_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_commission_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    commission_note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # Loose reference: no foreign key so rule edits never cascade into settled items
    commission_rule_id: Mapped[UUID | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    status_changed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "billing_type IN ('FIXED', 'METERED', 'OTHER')",
            name="billing_item_billing_type_check",
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', 'FINALIZED', 'CANCELLED')",
            name="billing_item_status_check",
        ),
        CheckConstraint(
            "commission_type IS NULL OR commission_type IN ('PERCENTAGE', 'FIXED_AMOUNT', 'MANUAL')",
            name="billing_item_commission_type_check",
        ),
        CheckConstraint(
            "total_amount = base_amount + tax_amount",
            name="billing_item_total_check",
        ),
        CheckConstraint(
            "commission_amount IS NULL OR commission_amount >= 0",
            name="billing_item_commission_nonneg",
        ),
        CheckConstraint(
            "commission_type IS NULL OR net_amount = base_amount - commission_amount",
            name="billing_item_net_check",
        ),
        Index(
            "billing_item_scope_idx",
            "org_id",
            "collector_id",
            "billing_month",
        ),
    )

    @property
    def has_commission(self) -> bool:
        return self.commission_type is not None


# ===== Billing Summaries =====


class BillingSummary(Base, TimestampMixin, SoftDeleteMixin):
    """Per (organization, collector, billing month) aggregate of billing items."""

    __tablename__ = "billing_summary"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    collector_id: Mapped[UUID] = mapped_column(nullable=False)
    billing_month: Mapped[date] = mapped_column(Date, nullable=False)

    total_fixed_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_metered_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_other_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fixed_items_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metered_items_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    other_items_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_items_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    subtotal_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tax_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_commission_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_net_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED')",
            name="billing_summary_status_check",
        ),
        CheckConstraint(
            "subtotal_amount = total_fixed_amount + total_metered_amount + total_other_amount",
            name="billing_summary_subtotal_check",
        ),
        CheckConstraint(
            "total_amount = subtotal_amount + tax_amount",
            name="billing_summary_total_check",
        ),
        # At most one live summary per key; generation relies on this
        Index(
            "billing_summary_live_key",
            "org_id",
            "collector_id",
            "billing_month",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )


# ===== Commission Rules =====


class CommissionRule(Base, TimestampMixin, SoftDeleteMixin):
    """Commission configuration for an org, optionally narrowed to one collector."""

    __tablename__ = "commission_rule"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # NULL = applies to every collector in the org
    collector_id: Mapped[UUID | None] = mapped_column(nullable=True)
    billing_type: Mapped[str] = mapped_column(String(16), nullable=False)
    commission_type: Mapped[str] = mapped_column(String(16), nullable=False)
    commission_value: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    updated_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "billing_type IN ('FIXED', 'METERED', 'OTHER', 'ALL')",
            name="commission_rule_billing_type_check",
        ),
        CheckConstraint(
            "commission_type IN ('PERCENTAGE', 'FIXED_AMOUNT')",
            name="commission_rule_commission_type_check",
        ),
        CheckConstraint("commission_value >= 0", name="commission_rule_value_nonneg"),
        CheckConstraint(
            "effective_from IS NULL OR effective_to IS NULL OR effective_to >= effective_from",
            name="commission_rule_dates_check",
        ),
    )


# ===== Settings =====


class BillingSettings(Base):
    """Per-organization tax configuration."""

    __tablename__ = "billing_settings"

    org_id: Mapped[UUID] = mapped_column(primary_key=True)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    tax_rounding_mode: Mapped[str] = mapped_column(String(8), nullable=False, default="FLOOR")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    updated_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "tax_rounding_mode IN ('FLOOR', 'CEIL', 'ROUND')",
            name="billing_settings_rounding_check",
        ),
    )


# ===== Audit =====


class AuditEvent(Base):
    """Audit trail entry. One row per state mutation."""

    __tablename__ = "audit_event"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    actor_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

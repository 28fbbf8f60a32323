"""ORM models."""

from billing_engine.models.base import Base, SoftDeleteMixin, TimestampMixin, utcnow
from billing_engine.models.billing import (
    AuditEvent,
    BillingItem,
    BillingSettings,
    BillingSummary,
    CommissionRule,
)

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TimestampMixin",
    "utcnow",
    "AuditEvent",
    "BillingItem",
    "BillingSettings",
    "BillingSummary",
    "CommissionRule",
]

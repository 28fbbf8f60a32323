"""Type definitions for the settlement calculators."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class BillingType(str, Enum):
    """Classification of a charge."""

    FIXED = "FIXED"
    METERED = "METERED"
    OTHER = "OTHER"


class RuleBillingType(str, Enum):
    """Billing type scope of a commission rule. ALL matches every type."""

    FIXED = "FIXED"
    METERED = "METERED"
    OTHER = "OTHER"
    ALL = "ALL"


class CommissionType(str, Enum):
    """How an item's commission was determined."""

    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    MANUAL = "MANUAL"


# Commission types a rule may carry (MANUAL is item-level only)
RULE_COMMISSION_TYPES = frozenset({CommissionType.PERCENTAGE, CommissionType.FIXED_AMOUNT})


class TaxRoundingMode(str, Enum):
    """Rounding applied to a computed tax amount."""

    FLOOR = "FLOOR"
    CEIL = "CEIL"
    ROUND = "ROUND"


@dataclass(frozen=True)
class TaxBreakdown:
    """Tax computed for a single amount."""

    tax_amount: int
    total_amount: int


@dataclass(frozen=True)
class ItemsTaxBreakdown:
    """Tax computed once over the subtotal of many amounts."""

    subtotal: int
    tax_amount: int
    total_amount: int


@dataclass(frozen=True)
class CommissionRequest:
    """Commission update request, already validated at the boundary."""

    commission_type: CommissionType
    commission_rate: Decimal | None = None
    commission_amount: int | None = None
    commission_note: str | None = None


@dataclass(frozen=True)
class CommissionResult:
    """Computed commission fields for one item."""

    commission_type: CommissionType
    commission_rate: Decimal | None
    commission_amount: int
    net_amount: int
    is_manual: bool


@dataclass(frozen=True)
class ResolvedDefault:
    """Winning commission rule for one billing type."""

    commission_type: CommissionType
    commission_rate: Decimal | None
    commission_amount: int | None
    source_rule_id: UUID

    def to_request(self, note: str | None = None) -> CommissionRequest:
        return CommissionRequest(
            commission_type=self.commission_type,
            commission_rate=self.commission_rate,
            commission_amount=self.commission_amount,
            commission_note=note,
        )


def month_start(value: date) -> date:
    """Normalize a date to the first day of its billing month."""
    return value.replace(day=1)

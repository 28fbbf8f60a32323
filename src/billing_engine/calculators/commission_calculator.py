"""Commission calculation for billing items."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import TYPE_CHECKING

from billing_engine.calculators.types import CommissionRequest, CommissionResult, CommissionType
from billing_engine.errors import ValidationError

if TYPE_CHECKING:
    from billing_engine.models import BillingItem

_HUNDRED = Decimal("100")


def percentage_commission(base_amount: int, rate: Decimal) -> int:
    """Commission for a percentage rate (0-100 scale), always floored.

    Never rounds up an amount deducted from a collector; mirrors the tax
    FLOOR policy.
    """
    raw = Decimal(base_amount) * rate / _HUNDRED
    return int(raw.quantize(Decimal("1"), rounding=ROUND_FLOOR))


def _require_amount(request: CommissionRequest) -> int:
    amount = request.commission_amount
    if amount is None:
        raise ValidationError(
            "commission_amount",
            f"commission_amount is required for {request.commission_type.value} type",
        )
    if amount < 0:
        raise ValidationError("commission_amount", "commission_amount must be >= 0")
    return amount


def calculate_commission(
    base_amount: int,
    request: CommissionRequest,
    *,
    allow_zero_rate: bool = False,
) -> CommissionResult:
    """Compute commission and net amount for a base amount.

    PERCENTAGE needs a rate in (0, 100]; with ``allow_zero_rate`` (rates
    that come from a stored commission rule) 0 is accepted too. FIXED_AMOUNT
    and MANUAL need a non-negative absolute amount; a MANUAL rate is
    informational only. The net amount is not floored at zero.
    """
    rate: Decimal | None = None

    if request.commission_type == CommissionType.PERCENTAGE:
        rate = request.commission_rate
        if rate is None:
            raise ValidationError(
                "commission_rate", "commission_rate is required for PERCENTAGE type"
            )
        if rate < 0 or rate > _HUNDRED or (rate == 0 and not allow_zero_rate):
            raise ValidationError(
                "commission_rate", "commission_rate must be greater than 0 and at most 100"
            )
        commission_amount = percentage_commission(base_amount, rate)

    elif request.commission_type == CommissionType.FIXED_AMOUNT:
        commission_amount = _require_amount(request)

    else:
        commission_amount = _require_amount(request)
        rate = request.commission_rate
        if rate is not None and (rate < 0 or rate > _HUNDRED):
            raise ValidationError("commission_rate", "commission_rate must be between 0 and 100")

    return CommissionResult(
        commission_type=request.commission_type,
        commission_rate=rate,
        commission_amount=commission_amount,
        net_amount=base_amount - commission_amount,
        is_manual=request.commission_type == CommissionType.MANUAL,
    )


def apply_commission(item: BillingItem, request: CommissionRequest) -> CommissionResult:
    """Compute commission for an item whose status still permits edits.

    Raises:
        ImmutableStateError: If the item is APPROVED or FINALIZED
        ValidationError: If the request lacks what its commission type needs
    """
    # Import here to avoid circular imports
    from billing_engine.services.state_machine import BillingItemStateMachine

    BillingItemStateMachine.ensure_amounts_mutable(item.status)
    return calculate_commission(item.base_amount, request)

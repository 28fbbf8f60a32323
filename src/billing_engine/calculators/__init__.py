"""Settlement calculators: tax, commission and rule resolution."""

from billing_engine.calculators.commission_calculator import (
    apply_commission,
    calculate_commission,
    percentage_commission,
)
from billing_engine.calculators.rule_resolver import CommissionRuleResolver, select_defaults
from billing_engine.calculators.tax_calculator import (
    calculate_tax,
    calculate_tax_for_items,
    calculate_tax_included,
)

__all__ = [
    "apply_commission",
    "calculate_commission",
    "percentage_commission",
    "CommissionRuleResolver",
    "select_defaults",
    "calculate_tax",
    "calculate_tax_for_items",
    "calculate_tax_included",
]

"""Billing engine services."""

from billing_engine.services.state_machine import (
    BillingItemStateMachine,
    BillingItemStatus,
    InvalidTransitionError,
    SummaryStateMachine,
    SummaryStatus,
)
from billing_engine.services.settings_service import BillingSettingsService
from billing_engine.services.billing_item_service import BatchResult, BillingItemService
from billing_engine.services.summary_service import GenerationResult, SummaryService
from billing_engine.services.commission_rule_service import CommissionRuleService

__all__ = [
    "BillingItemStateMachine",
    "BillingItemStatus",
    "InvalidTransitionError",
    "SummaryStateMachine",
    "SummaryStatus",
    "BillingSettingsService",
    "BatchResult",
    "BillingItemService",
    "GenerationResult",
    "SummaryService",
    "CommissionRuleService",
]

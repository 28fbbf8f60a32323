"""API routes."""

from billing_engine.api.routes.billing_items import router as billing_items_router
from billing_engine.api.routes.billing_summaries import router as billing_summaries_router
from billing_engine.api.routes.commission_rules import router as commission_rules_router
from billing_engine.api.routes.health import router as health_router
from billing_engine.api.routes.settings import router as settings_router

__all__ = [
    "billing_items_router",
    "billing_summaries_router",
    "commission_rules_router",
    "health_router",
    "settings_router",
]

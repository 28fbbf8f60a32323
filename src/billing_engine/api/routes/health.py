"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import literal, select, text
from sqlalchemy.exc import SQLAlchemyError

from billing_engine.api.dependencies import DbSession
from billing_engine.config import settings
from billing_engine.models import (
    AuditEvent,
    BillingItem,
    BillingSettings,
    BillingSummary,
    CommissionRule,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Tables the engine cannot serve a request without
REQUIRED_TABLES = (BillingItem, BillingSummary, CommissionRule, BillingSettings, AuditEvent)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    version: str


class ReadinessResponse(BaseModel):
    """Per-table reachability of the billing schema."""

    status: str
    tables: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession) -> HealthResponse:
    """Report engine version and whether the database answers."""
    try:
        await db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        await db.rollback()
        database = "unhealthy"

    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=database,
        version=settings.engine_version,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse}},
)
async def readiness_check(db: DbSession):
    """Ready once every billing table can be queried; 503 otherwise."""
    tables: dict[str, bool] = {}
    for model in REQUIRED_TABLES:
        name = model.__tablename__
        try:
            await db.execute(select(literal(1)).select_from(model.__table__).limit(1))
            tables[name] = True
        except SQLAlchemyError:
            logger.warning("Readiness check: table %s unavailable", name, exc_info=True)
            await db.rollback()
            tables[name] = False

    if all(tables.values()):
        return ReadinessResponse(status="ready", tables=tables)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "tables": tables},
    )


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check; no dependencies."""
    return {"status": "alive"}

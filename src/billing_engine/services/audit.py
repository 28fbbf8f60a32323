"""Audit trail recording shared by the billing services."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.models import AuditEvent


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def snapshot(entity: Any, fields: list[str]) -> dict[str, Any]:
    """Capture selected attributes of an entity as JSON-safe values."""
    return {name: _jsonable(getattr(entity, name)) for name in fields}


async def record_audit(
    session: AsyncSession,
    *,
    org_id: UUID,
    entity_type: str,
    entity_id: UUID,
    action: str,
    actor_user_id: UUID | None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> AuditEvent:
    """Add an audit event to the current transaction."""
    event = AuditEvent(
        org_id=org_id,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        before_json={k: _jsonable(v) for k, v in before.items()} if before else None,
        after_json={k: _jsonable(v) for k, v in after.items()} if after else None,
    )
    session.add(event)
    return event

"""Error taxonomy for the billing settlement engine.

Every error here is terminal for the request that raised it. Callers get the
``code`` and ``context`` back verbatim; nothing is retried automatically.
"""

from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import UUID


def _status_text(status: Any) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class BillingError(Exception):
    """Base class for all engine errors."""

    code = "BILLING_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class ValidationError(BillingError):
    """Malformed input. Always fixable by the caller."""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message, {"field": field})


class NotFoundError(BillingError):
    """Referenced entity does not exist or is soft-deleted."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "entity_id": str(entity_id)},
        )


class Forbidden(BillingError):
    """Authorization gate rejection.

    The message is deliberately generic: it never names the entity or the
    organization that was denied.
    """

    code = "FORBIDDEN"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidTransitionError(BillingError):
    """Raised when a status change is not in the transition table."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        allowed: list[str] | None = None,
        reason: str | None = None,
    ):
        self.from_status = _status_text(from_status)
        self.to_status = _status_text(to_status)
        self.allowed = [_status_text(s) for s in (allowed or [])]
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {
                "from_status": self.from_status,
                "to_status": self.to_status,
                "allowed": self.allowed,
            },
        )


class ImmutableStateError(BillingError):
    """Monetary or commission edit attempted on a locked entity."""

    code = "IMMUTABLE_STATE"

    def __init__(self, status: str, message: str | None = None):
        self.status = _status_text(status)
        super().__init__(
            message or f"Cannot modify amounts or commission in status '{self.status}'",
            {"status": self.status},
        )


class IncompleteApprovalError(BillingError):
    """Summary submission attempted while some items are not approved."""

    code = "INCOMPLETE_APPROVAL"

    def __init__(self, approved_count: int, total_count: int):
        self.approved_count = approved_count
        self.total_count = total_count
        super().__init__(
            f"All items must be approved before submitting summary "
            f"({approved_count}/{total_count} approved)",
            {"approved_count": approved_count, "total_count": total_count},
        )


class CrossTenantBatchError(BillingError):
    """A batch operation's targets resolve to more than one organization."""

    code = "CROSS_TENANT_BATCH"

    def __init__(self, org_count: int):
        self.org_count = org_count
        super().__init__(
            "Batch targets belong to multiple organizations",
            {"org_count": org_count},
        )

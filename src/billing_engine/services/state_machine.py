"""Billing item and billing summary state machines with transition validation."""

from __future__ import annotations

from enum import Enum

from billing_engine.errors import ImmutableStateError, InvalidTransitionError

__all__ = [
    "BillingItemStatus",
    "BillingItemStateMachine",
    "SummaryStatus",
    "SummaryStateMachine",
    "InvalidTransitionError",
]


class BillingItemStatus(str, Enum):
    """Billing item status values."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FINALIZED = "FINALIZED"
    CANCELLED = "CANCELLED"


class SummaryStatus(str, Enum):
    """Billing summary status values."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class BillingItemStateMachine:
    """State machine for billing item status transitions.

    Allowed transitions:
    - DRAFT → SUBMITTED, CANCELLED
    - SUBMITTED → APPROVED, REJECTED, DRAFT (withdraw)
    - APPROVED → FINALIZED, SUBMITTED (send back)
    - REJECTED → DRAFT
    - CANCELLED → DRAFT
    - FINALIZED is terminal
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        BillingItemStatus.DRAFT: [BillingItemStatus.SUBMITTED, BillingItemStatus.CANCELLED],
        BillingItemStatus.SUBMITTED: [
            BillingItemStatus.APPROVED,
            BillingItemStatus.REJECTED,
            BillingItemStatus.DRAFT,
        ],
        BillingItemStatus.APPROVED: [BillingItemStatus.FINALIZED, BillingItemStatus.SUBMITTED],
        BillingItemStatus.REJECTED: [BillingItemStatus.DRAFT],
        BillingItemStatus.FINALIZED: [],  # Terminal state
        BillingItemStatus.CANCELLED: [BillingItemStatus.DRAFT],
    }

    # Statuses where commission and monetary fields are locked
    AMOUNTS_IMMUTABLE = {
        BillingItemStatus.APPROVED,
        BillingItemStatus.FINALIZED,
    }

    # Statuses from which an item may be soft-deleted
    DELETABLE = {
        BillingItemStatus.DRAFT,
        BillingItemStatus.REJECTED,
        BillingItemStatus.CANCELLED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return [s.value for s in cls.VALID_TRANSITIONS.get(current_status, [])]

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(
                from_status, to_status, allowed=cls.get_next_statuses(from_status)
            )

    @classmethod
    def are_amounts_immutable(cls, status: str) -> bool:
        """Check if commission and monetary fields are locked in this status."""
        return status in cls.AMOUNTS_IMMUTABLE

    @classmethod
    def ensure_amounts_mutable(cls, status: str) -> None:
        """Raise ImmutableStateError if amounts are locked in this status."""
        if cls.are_amounts_immutable(status):
            raise ImmutableStateError(status)

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return status in cls.DELETABLE


class SummaryStateMachine:
    """State machine for billing summary status transitions.

    Allowed transitions:
    - DRAFT → SUBMITTED (only once every item is APPROVED)
    - SUBMITTED → APPROVED, REJECTED
    - REJECTED → DRAFT (reopen)
    - APPROVED is terminal
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SummaryStatus.DRAFT: [SummaryStatus.SUBMITTED],
        SummaryStatus.SUBMITTED: [SummaryStatus.APPROVED, SummaryStatus.REJECTED],
        SummaryStatus.REJECTED: [SummaryStatus.DRAFT],
        SummaryStatus.APPROVED: [],  # Terminal state
    }

    # Statuses where the summary may be discarded and rebuilt from items
    REGENERABLE = {
        SummaryStatus.DRAFT,
        SummaryStatus.REJECTED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return [s.value for s in cls.VALID_TRANSITIONS.get(current_status, [])]

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(
                from_status, to_status, allowed=cls.get_next_statuses(from_status)
            )

    @classmethod
    def can_regenerate(cls, status: str) -> bool:
        return status in cls.REGENERABLE

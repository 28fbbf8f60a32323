"""Authorization gate.

Every service entry point takes an explicit ``Principal`` and calls
``authorize`` with the organization its target entity resolves to before
reading or mutating anything. No ambient request state is consulted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from billing_engine.errors import CrossTenantBatchError, Forbidden, NotFoundError


@dataclass(frozen=True)
class Principal:
    """Resolved caller identity."""

    user_id: UUID | None
    is_system_admin: bool = False
    org_ids: frozenset[UUID] = field(default_factory=frozenset)

    @classmethod
    def system(cls) -> Principal:
        """Principal used by scheduled generators running outside a request."""
        return cls(user_id=None, is_system_admin=True)

    def can_access(self, org_id: UUID) -> bool:
        return self.is_system_admin or org_id in self.org_ids


def authorize(principal: Principal, org_id: UUID) -> None:
    """Allow the call or raise Forbidden."""
    if not principal.can_access(org_id):
        raise Forbidden()


def authorize_lookup(
    principal: Principal,
    entity: Any | None,
    entity_name: str,
    entity_id: UUID,
) -> None:
    """Gate a lookup by id, including ids that matched no row.

    For anyone but a system administrator an unknown id is refused exactly
    like another organization's entity, so the answer never tells a caller
    whether something exists outside its organizations.

    Raises:
        NotFoundError: Unknown id, system administrators only
        Forbidden: Unknown id, or entity of an organization not granted
    """
    if entity is None:
        if principal.is_system_admin:
            raise NotFoundError(entity_name, entity_id)
        raise Forbidden()
    authorize(principal, entity.org_id)


def require_system_admin(principal: Principal) -> None:
    """Raise Forbidden unless the principal is a system administrator."""
    if not principal.is_system_admin:
        raise Forbidden()


def resolve_batch_org(org_ids: Iterable[UUID]) -> UUID:
    """Return the single organization a batch resolves to.

    Raises:
        CrossTenantBatchError: If the batch spans more than one organization
        ValueError: If the batch is empty
    """
    distinct = set(org_ids)
    if not distinct:
        raise ValueError("Cannot resolve organization of an empty batch")
    if len(distinct) > 1:
        raise CrossTenantBatchError(len(distinct))
    return next(iter(distinct))


def authorize_batch(principal: Principal, org_ids: Iterable[UUID]) -> UUID:
    """Resolve a batch to one organization and authorize against it."""
    org_id = resolve_batch_org(org_ids)
    authorize(principal, org_id)
    return org_id


def scoped_org_ids(principal: Principal, org_id: UUID | None = None) -> set[UUID] | None:
    """Organizations a listing may read from.

    Returns None when the listing is unrestricted (system administrator with
    no explicit org filter).
    """
    if org_id is not None:
        authorize(principal, org_id)
        return {org_id}
    if principal.is_system_admin:
        return None
    return set(principal.org_ids)

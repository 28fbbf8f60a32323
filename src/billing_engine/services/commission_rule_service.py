"""Commission rule management."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.auth import Principal, authorize, authorize_lookup, scoped_org_ids
from billing_engine.calculators.types import CommissionType, RuleBillingType, RULE_COMMISSION_TYPES
from billing_engine.errors import ImmutableStateError, NotFoundError, ValidationError
from billing_engine.models import BillingItem, CommissionRule, utcnow
from billing_engine.services.audit import record_audit, snapshot
from billing_engine.services.state_machine import BillingItemStatus

logger = logging.getLogger(__name__)

RULE_FIELDS = [
    "collector_id",
    "billing_type",
    "commission_type",
    "commission_value",
    "is_active",
    "effective_from",
    "effective_to",
    "notes",
]

# Fields that may still change once a finalized item relies on the rule
_ALWAYS_EDITABLE = frozenset({"is_active", "notes"})

_UNSET = object()


def validate_rule_values(
    commission_type: CommissionType,
    commission_value: Decimal,
    effective_from: date | None,
    effective_to: date | None,
) -> None:
    """Check the value range and effective window of a rule."""
    if commission_type not in RULE_COMMISSION_TYPES:
        raise ValidationError(
            "commission_type", "commission_type must be PERCENTAGE or FIXED_AMOUNT"
        )
    if commission_value < 0:
        raise ValidationError("commission_value", "commission_value must be >= 0")
    if commission_type == CommissionType.PERCENTAGE and commission_value > 100:
        raise ValidationError("commission_value", "PERCENTAGE commission_value must be at most 100")
    if effective_from is not None and effective_to is not None and effective_to < effective_from:
        raise ValidationError("effective_to", "effective_to must not be before effective_from")


class CommissionRuleService:
    """CRUD for commission rules.

    A rule that a FINALIZED item was settled with is locked: its scope and
    value can no longer change, only ``is_active`` and ``notes``. Rules are
    never hard-deleted.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_rule(self, principal: Principal, rule_id: UUID) -> CommissionRule:
        rule = await self.session.get(CommissionRule, rule_id)
        authorize_lookup(principal, rule, "CommissionRule", rule_id)
        if rule.is_deleted:
            raise NotFoundError("CommissionRule", rule_id)
        return rule

    async def list_rules(
        self,
        principal: Principal,
        org_id: UUID | None = None,
        collector_id: UUID | None = None,
        include_inactive: bool = True,
    ) -> list[CommissionRule]:
        org_ids = scoped_org_ids(principal, org_id)
        query = select(CommissionRule).where(CommissionRule.deleted_at.is_(None))
        if org_ids is not None:
            query = query.where(CommissionRule.org_id.in_(org_ids))
        if collector_id is not None:
            query = query.where(CommissionRule.collector_id == collector_id)
        if not include_inactive:
            query = query.where(CommissionRule.is_active.is_(True))

        query = query.order_by(CommissionRule.org_id, CommissionRule.created_at.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def create_rule(
        self,
        principal: Principal,
        *,
        org_id: UUID,
        billing_type: RuleBillingType,
        commission_type: CommissionType,
        commission_value: Decimal,
        collector_id: UUID | None = None,
        is_active: bool = True,
        effective_from: date | None = None,
        effective_to: date | None = None,
        notes: str | None = None,
    ) -> CommissionRule:
        authorize(principal, org_id)
        validate_rule_values(commission_type, commission_value, effective_from, effective_to)

        rule = CommissionRule(
            org_id=org_id,
            collector_id=collector_id,
            billing_type=billing_type.value,
            commission_type=commission_type.value,
            commission_value=commission_value,
            is_active=is_active,
            effective_from=effective_from,
            effective_to=effective_to,
            notes=notes,
            created_by=principal.user_id,
            updated_by=principal.user_id,
        )
        self.session.add(rule)
        await self.session.flush()

        await record_audit(
            self.session,
            org_id=org_id,
            entity_type="commission_rule",
            entity_id=rule.id,
            action="created",
            actor_user_id=principal.user_id,
            after=snapshot(rule, RULE_FIELDS),
        )
        logger.info("Commission rule created id=%s org=%s", rule.id, org_id)
        return rule

    async def is_locked(self, rule_id: UUID) -> bool:
        """True once any live FINALIZED item was settled with this rule."""
        result = await self.session.execute(
            select(
                exists().where(
                    BillingItem.commission_rule_id == rule_id,
                    BillingItem.status == BillingItemStatus.FINALIZED.value,
                    BillingItem.deleted_at.is_(None),
                )
            )
        )
        return bool(result.scalar())

    async def update_rule(
        self,
        principal: Principal,
        rule_id: UUID,
        *,
        collector_id: UUID | None | object = _UNSET,
        billing_type: RuleBillingType | None = None,
        commission_type: CommissionType | None = None,
        commission_value: Decimal | None = None,
        is_active: bool | None = None,
        effective_from: date | None | object = _UNSET,
        effective_to: date | None | object = _UNSET,
        notes: str | None | object = _UNSET,
    ) -> CommissionRule:
        """Partially update a rule.

        Nullable fields use a sentinel so that passing None clears them.

        Raises:
            ImmutableStateError: If a locked rule would change anything other
                than is_active or notes
        """
        rule = await self.get_rule(principal, rule_id)

        changes: dict[str, object] = {}
        if collector_id is not _UNSET:
            changes["collector_id"] = collector_id
        if billing_type is not None:
            changes["billing_type"] = billing_type.value
        if commission_type is not None:
            changes["commission_type"] = commission_type.value
        if commission_value is not None:
            changes["commission_value"] = commission_value
        if is_active is not None:
            changes["is_active"] = is_active
        if effective_from is not _UNSET:
            changes["effective_from"] = effective_from
        if effective_to is not _UNSET:
            changes["effective_to"] = effective_to
        if notes is not _UNSET:
            changes["notes"] = notes

        changed = {k: v for k, v in changes.items() if getattr(rule, k) != v}
        if not changed:
            return rule

        if set(changed) - _ALWAYS_EDITABLE and await self.is_locked(rule.id):
            raise ImmutableStateError(
                BillingItemStatus.FINALIZED,
                "Commission rule is referenced by finalized billing items; "
                "only is_active and notes can change",
            )

        validate_rule_values(
            CommissionType(changes.get("commission_type", rule.commission_type)),
            changes.get("commission_value", rule.commission_value),
            changes.get("effective_from", rule.effective_from),
            changes.get("effective_to", rule.effective_to),
        )

        before = snapshot(rule, RULE_FIELDS)
        for name, value in changed.items():
            setattr(rule, name, value)
        rule.updated_by = principal.user_id

        await record_audit(
            self.session,
            org_id=rule.org_id,
            entity_type="commission_rule",
            entity_id=rule.id,
            action="updated",
            actor_user_id=principal.user_id,
            before=before,
            after=snapshot(rule, RULE_FIELDS),
        )
        await self.session.flush()
        return rule

    async def deactivate_rule(self, principal: Principal, rule_id: UUID) -> CommissionRule:
        return await self.update_rule(principal, rule_id, is_active=False)

    async def delete_rule(self, principal: Principal, rule_id: UUID) -> CommissionRule:
        """Soft delete a rule. Allowed even when locked."""
        rule = await self.get_rule(principal, rule_id)
        rule.deleted_at = utcnow()
        rule.updated_by = principal.user_id

        await record_audit(
            self.session,
            org_id=rule.org_id,
            entity_type="commission_rule",
            entity_id=rule.id,
            action="deleted",
            actor_user_id=principal.user_id,
        )
        await self.session.flush()
        logger.info("Commission rule deleted id=%s org=%s", rule.id, rule.org_id)
        return rule

"""Billing item service - lifecycle and commission operations on line items."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_FLOOR, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.auth import (
    Principal,
    authorize,
    authorize_batch,
    authorize_lookup,
    scoped_org_ids,
)
from billing_engine.calculators.commission_calculator import apply_commission, calculate_commission
from billing_engine.calculators.rule_resolver import CommissionRuleResolver
from billing_engine.calculators.tax_calculator import calculate_tax_included
from billing_engine.calculators.types import (
    BillingType,
    CommissionRequest,
    CommissionResult,
    month_start,
)
from billing_engine.errors import NotFoundError, ValidationError
from billing_engine.models import BillingItem, utcnow
from billing_engine.services.audit import record_audit, snapshot
from billing_engine.services.settings_service import BillingSettingsService
from billing_engine.services.state_machine import BillingItemStateMachine, BillingItemStatus

logger = logging.getLogger(__name__)

COMMISSION_FIELDS = [
    "commission_type",
    "commission_rate",
    "commission_amount",
    "net_amount",
    "is_commission_manual",
    "commission_rule_id",
]


@dataclass
class BatchResult:
    """Outcome of a batch operation: what changed and what was skipped."""

    updated_ids: list[UUID] = field(default_factory=list)
    skipped_ids: list[UUID] = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return len(self.updated_ids)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_ids)


class BillingItemService:
    """Service for billing item operations.

    Operations:
    - create_item: add a DRAFT item with tax computed from org settings
    - update_status: move an item through its lifecycle
    - update_commission / batch_update_commission: set commission fields
    - apply_default_commissions: fill commission from resolved rules
    - approve_items: bulk SUBMITTED → APPROVED
    - delete_item: soft delete

    Every operation authorizes the caller against the item's organization
    before reading or mutating it. The caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.resolver = CommissionRuleResolver(session)
        self.settings_service = BillingSettingsService(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_item(self, principal: Principal, item_id: UUID) -> BillingItem:
        """Load a live item the principal may see.

        Authorization runs before the soft-delete check, so only callers of
        the owning organization learn that an item was deleted.
        """
        item = await self.session.get(BillingItem, item_id)
        authorize_lookup(principal, item, "BillingItem", item_id)
        if item.is_deleted:
            raise NotFoundError("BillingItem", item_id)
        return item

    async def _load_batch(self, principal: Principal, item_ids: list[UUID]) -> list[BillingItem]:
        """Load and authorize every requested item, or fail before any write.

        Unknown ids are gated like single lookups. The batch must then resolve
        to one organization the principal may act on; soft-deleted items fail
        only after that check.
        """
        unique_ids = list(dict.fromkeys(item_ids))
        if not unique_ids:
            raise ValidationError("item_ids", "item_ids must not be empty")

        result = await self.session.execute(
            select(BillingItem).where(BillingItem.id.in_(unique_ids))
        )
        by_id = {item.id: item for item in result.scalars().all()}
        for item_id in unique_ids:
            if item_id not in by_id:
                authorize_lookup(principal, None, "BillingItem", item_id)

        items = [by_id[item_id] for item_id in unique_ids]
        authorize_batch(principal, (item.org_id for item in items))
        for item in items:
            if item.is_deleted:
                raise NotFoundError("BillingItem", item.id)
        return items

    async def list_items(
        self,
        principal: Principal,
        org_id: UUID | None = None,
        billing_month: date | None = None,
        collector_id: UUID | None = None,
        status: BillingItemStatus | None = None,
    ) -> list[BillingItem]:
        """List live items visible to the principal with optional filters."""
        org_ids = scoped_org_ids(principal, org_id)
        query = select(BillingItem).where(BillingItem.deleted_at.is_(None))
        if org_ids is not None:
            query = query.where(BillingItem.org_id.in_(org_ids))
        if billing_month is not None:
            query = query.where(BillingItem.billing_month == month_start(billing_month))
        if collector_id is not None:
            query = query.where(BillingItem.collector_id == collector_id)
        if status is not None:
            query = query.where(BillingItem.status == status.value)

        query = query.order_by(
            BillingItem.billing_month.desc(),
            BillingItem.collector_id,
            BillingItem.created_at,
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_billing_months(self, principal: Principal, org_id: UUID) -> list[date]:
        """Distinct billing months that have live items, newest first."""
        authorize(principal, org_id)
        result = await self.session.execute(
            select(BillingItem.billing_month)
            .where(BillingItem.org_id == org_id, BillingItem.deleted_at.is_(None))
            .distinct()
            .order_by(BillingItem.billing_month.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_item(
        self,
        principal: Principal,
        *,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
        billing_type: BillingType,
        base_amount: int | None = None,
        store_id: UUID | None = None,
        item_name: str | None = None,
        unit_price: Decimal | None = None,
        quantity: Decimal | None = None,
        unit: str | None = None,
        notes: str | None = None,
    ) -> BillingItem:
        """Create a DRAFT item; tax follows the organization's settings.

        When no base amount is given it is derived as
        floor(unit_price * quantity).
        """
        authorize(principal, org_id)

        if base_amount is None:
            if unit_price is None or quantity is None:
                raise ValidationError(
                    "base_amount",
                    "base_amount is required unless unit_price and quantity are given",
                )
            base_amount = int((unit_price * quantity).quantize(Decimal("1"), rounding=ROUND_FLOOR))
        if base_amount < 0:
            raise ValidationError("base_amount", "base_amount must be >= 0")

        tax_rate, rounding_mode = await self.settings_service.get_tax_settings(org_id)
        tax = calculate_tax_included(base_amount, tax_rate, rounding_mode)

        item = BillingItem(
            org_id=org_id,
            collector_id=collector_id,
            store_id=store_id,
            billing_month=month_start(billing_month),
            billing_type=billing_type.value,
            item_name=item_name,
            unit_price=unit_price,
            quantity=quantity,
            unit=unit,
            base_amount=base_amount,
            tax_rate=tax_rate,
            tax_amount=tax.tax_amount,
            total_amount=tax.total_amount,
            status=BillingItemStatus.DRAFT.value,
            is_commission_manual=False,
            notes=notes,
            created_by=principal.user_id,
        )
        self.session.add(item)
        await self.session.flush()

        await record_audit(
            self.session,
            org_id=org_id,
            entity_type="billing_item",
            entity_id=item.id,
            action="created",
            actor_user_id=principal.user_id,
            after=snapshot(item, ["billing_type", "base_amount", "tax_amount", "total_amount"]),
        )
        return item

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def update_status(
        self,
        principal: Principal,
        item_id: UUID,
        to_status: BillingItemStatus,
        note: str | None = None,
    ) -> BillingItem:
        """Transition an item, validating against the lifecycle table.

        Raises:
            InvalidTransitionError: With the current, requested and allowed statuses
        """
        item = await self.get_item(principal, item_id)
        from_status = item.status
        BillingItemStateMachine.validate_transition(from_status, to_status)

        self._set_status(item, to_status, principal)
        if note:
            line = f"{from_status} → {to_status.value}: {note}"
            item.notes = f"{item.notes}\n{line}" if item.notes else line

        await record_audit(
            self.session,
            org_id=item.org_id,
            entity_type="billing_item",
            entity_id=item.id,
            action=f"status_change:{from_status}:{to_status.value}",
            actor_user_id=principal.user_id,
            after={"note": note} if note else None,
        )
        await self.session.flush()
        return item

    def _set_status(
        self,
        item: BillingItem,
        to_status: BillingItemStatus,
        principal: Principal,
    ) -> None:
        now = utcnow()
        if to_status == BillingItemStatus.APPROVED:
            item.approved_at = now
            item.approved_by = principal.user_id
        elif item.status == BillingItemStatus.APPROVED and to_status == BillingItemStatus.SUBMITTED:
            # Sent back for review; approval no longer holds
            item.approved_at = None
            item.approved_by = None
        item.status = to_status.value
        item.status_changed_at = now
        item.status_changed_by = principal.user_id

    async def approve_items(self, principal: Principal, item_ids: list[UUID]) -> BatchResult:
        """Approve SUBMITTED items in bulk; items in any other status are skipped."""
        items = await self._load_batch(principal, item_ids)

        result = BatchResult()
        for item in items:
            if not BillingItemStateMachine.can_transition(item.status, BillingItemStatus.APPROVED):
                result.skipped_ids.append(item.id)
                continue
            from_status = item.status
            self._set_status(item, BillingItemStatus.APPROVED, principal)
            await record_audit(
                self.session,
                org_id=item.org_id,
                entity_type="billing_item",
                entity_id=item.id,
                action=f"status_change:{from_status}:{BillingItemStatus.APPROVED.value}",
                actor_user_id=principal.user_id,
            )
            result.updated_ids.append(item.id)

        await self.session.flush()
        logger.info(
            "Approved billing items: updated=%d skipped=%d",
            result.updated_count,
            result.skipped_count,
        )
        return result

    async def delete_item(self, principal: Principal, item_id: UUID) -> BillingItem:
        """Soft delete an item that has not entered approval."""
        item = await self.get_item(principal, item_id)
        if not BillingItemStateMachine.can_delete(item.status):
            raise ValidationError(
                "status", f"Cannot delete billing item with status {item.status}"
            )
        item.deleted_at = utcnow()
        await record_audit(
            self.session,
            org_id=item.org_id,
            entity_type="billing_item",
            entity_id=item.id,
            action="deleted",
            actor_user_id=principal.user_id,
        )
        await self.session.flush()
        return item

    # ------------------------------------------------------------------
    # Commission
    # ------------------------------------------------------------------

    async def _write_commission(
        self,
        principal: Principal,
        item: BillingItem,
        commission: CommissionResult,
        note: str | None,
        rule_id: UUID | None = None,
    ) -> None:
        before = snapshot(item, COMMISSION_FIELDS)
        item.commission_type = commission.commission_type.value
        item.commission_rate = commission.commission_rate
        item.commission_amount = commission.commission_amount
        item.net_amount = commission.net_amount
        item.is_commission_manual = commission.is_manual
        item.commission_note = note
        item.commission_rule_id = rule_id

        await record_audit(
            self.session,
            org_id=item.org_id,
            entity_type="billing_item",
            entity_id=item.id,
            action="commission_updated",
            actor_user_id=principal.user_id,
            before=before,
            after=snapshot(item, COMMISSION_FIELDS),
        )

    async def update_commission(
        self,
        principal: Principal,
        item_id: UUID,
        request: CommissionRequest,
    ) -> BillingItem:
        """Set commission on one item.

        Raises:
            ImmutableStateError: If the item is APPROVED or FINALIZED
            ValidationError: If the request is incomplete for its commission type
        """
        item = await self.get_item(principal, item_id)
        commission = apply_commission(item, request)
        await self._write_commission(principal, item, commission, request.commission_note)
        await self.session.flush()
        return item

    async def batch_update_commission(
        self,
        principal: Principal,
        item_ids: list[UUID],
        request: CommissionRequest,
    ) -> BatchResult:
        """Apply one commission setting to many items of a single organization.

        The batch is rejected before any write if its items span more than
        one organization. APPROVED and FINALIZED items are skipped and counted.
        """
        items = await self._load_batch(principal, item_ids)

        # Compute everything first so a validation failure writes nothing
        planned: list[tuple[BillingItem, CommissionResult]] = []
        result = BatchResult()
        for item in items:
            if BillingItemStateMachine.are_amounts_immutable(item.status):
                result.skipped_ids.append(item.id)
                continue
            planned.append((item, calculate_commission(item.base_amount, request)))

        for item, commission in planned:
            await self._write_commission(principal, item, commission, request.commission_note)
            result.updated_ids.append(item.id)

        await self.session.flush()
        logger.info(
            "Batch commission update: updated=%d skipped=%d",
            result.updated_count,
            result.skipped_count,
        )
        return result

    async def apply_default_commissions(
        self,
        principal: Principal,
        org_id: UUID,
        billing_month: date,
        collector_id: UUID | None = None,
        overwrite: bool = False,
    ) -> BatchResult:
        """Fill commission on items from the resolved commission rules.

        Manually set commissions are never recomputed. Items that already
        carry a commission are left alone unless ``overwrite`` is set. Items
        whose billing type has no applicable rule are skipped.
        """
        authorize(principal, org_id)
        month = month_start(billing_month)

        query = select(BillingItem).where(
            BillingItem.org_id == org_id,
            BillingItem.billing_month == month,
            BillingItem.deleted_at.is_(None),
        )
        if collector_id is not None:
            query = query.where(BillingItem.collector_id == collector_id)
        items = list((await self.session.execute(query.order_by(BillingItem.created_at))).scalars())

        defaults_by_collector: dict[UUID, dict] = {}
        result = BatchResult()
        for item in items:
            if (
                BillingItemStateMachine.are_amounts_immutable(item.status)
                or item.is_commission_manual
                or (item.has_commission and not overwrite)
            ):
                result.skipped_ids.append(item.id)
                continue

            if item.collector_id not in defaults_by_collector:
                defaults_by_collector[item.collector_id] = await self.resolver.resolve_defaults(
                    principal, org_id, item.collector_id, month
                )
            default = defaults_by_collector[item.collector_id].get(BillingType(item.billing_type))
            if default is None:
                result.skipped_ids.append(item.id)
                continue

            # Rules accept a 0% rate; ad-hoc requests do not
            commission = calculate_commission(
                item.base_amount, default.to_request(), allow_zero_rate=True
            )
            await self._write_commission(
                principal, item, commission, item.commission_note, rule_id=default.source_rule_id
            )
            result.updated_ids.append(item.id)

        await self.session.flush()
        logger.info(
            "Applied default commissions org=%s month=%s: updated=%d skipped=%d",
            org_id,
            month,
            result.updated_count,
            result.skipped_count,
        )
        return result

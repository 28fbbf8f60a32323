"""Billing summary aggregation and approval workflow."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import case, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.auth import (
    Principal,
    authorize,
    authorize_lookup,
    require_system_admin,
    resolve_batch_org,
    scoped_org_ids,
)
from billing_engine.calculators.types import BillingType, month_start
from billing_engine.errors import (
    IncompleteApprovalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from billing_engine.models import BillingItem, BillingSummary, utcnow
from billing_engine.services.audit import record_audit
from billing_engine.services.state_machine import (
    BillingItemStatus,
    SummaryStateMachine,
    SummaryStatus,
)

logger = logging.getLogger(__name__)

SKIP_ALREADY_EXISTS = "already exists"
SKIP_NO_ITEMS = "no items"


@dataclass(frozen=True)
class SummaryTotals:
    """Figures rolled up from a collector's items for one month."""

    total_fixed_amount: int = 0
    total_metered_amount: int = 0
    total_other_amount: int = 0
    fixed_items_count: int = 0
    metered_items_count: int = 0
    other_items_count: int = 0
    total_items_count: int = 0
    subtotal_amount: int = 0
    tax_amount: int = 0
    total_amount: int = 0
    total_commission_amount: int = 0
    total_net_amount: int = 0

    def as_values(self) -> dict[str, int]:
        return dict(self.__dict__)


def stored_totals(summary: BillingSummary) -> dict[str, int]:
    """The persisted figures of a summary, keyed like ``SummaryTotals``."""
    return {name: getattr(summary, name) for name in SummaryTotals.__dataclass_fields__}


def aggregate_items(items: Iterable[BillingItem]) -> SummaryTotals:
    """Roll items up by billing type.

    Tax and total are summed from the items as stored, never recomputed,
    so summary figures always trace to item-level rounding. Items without
    commission contribute their base amount to the net total.
    """
    amounts = {t: 0 for t in BillingType}
    counts = {t: 0 for t in BillingType}
    tax_amount = 0
    total_amount = 0
    commission = 0
    net = 0

    for item in items:
        billing_type = BillingType(item.billing_type)
        amounts[billing_type] += item.base_amount
        counts[billing_type] += 1
        tax_amount += item.tax_amount
        total_amount += item.total_amount
        commission += item.commission_amount or 0
        net += item.net_amount if item.net_amount is not None else item.base_amount

    subtotal = sum(amounts.values())
    return SummaryTotals(
        total_fixed_amount=amounts[BillingType.FIXED],
        total_metered_amount=amounts[BillingType.METERED],
        total_other_amount=amounts[BillingType.OTHER],
        fixed_items_count=counts[BillingType.FIXED],
        metered_items_count=counts[BillingType.METERED],
        other_items_count=counts[BillingType.OTHER],
        total_items_count=sum(counts.values()),
        subtotal_amount=subtotal,
        tax_amount=tax_amount,
        # Equal to subtotal + tax because every item satisfies total = base + tax
        total_amount=total_amount,
        total_commission_amount=commission,
        total_net_amount=net,
    )


@dataclass
class GenerationResult:
    """Outcome of generating one summary: the summary, or why it was skipped."""

    summary: BillingSummary | None
    skipped: bool = False
    reason: str | None = None

    @classmethod
    def created(cls, summary: BillingSummary) -> GenerationResult:
        return cls(summary=summary)

    @classmethod
    def skip(cls, reason: str, summary: BillingSummary | None = None) -> GenerationResult:
        return cls(summary=summary, skipped=True, reason=reason)


@dataclass
class BulkGenerationResult:
    """Outcome of generating summaries for every collector of a month."""

    generated: list[BillingSummary] = field(default_factory=list)
    skipped: dict[UUID, str] = field(default_factory=dict)

    @property
    def generated_count(self) -> int:
        return len(self.generated)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


@dataclass
class SummaryBatchResult:
    """Outcome of a bulk approve or reject."""

    updated_ids: list[UUID] = field(default_factory=list)
    skipped_ids: list[UUID] = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return len(self.updated_ids)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_ids)


class SummaryService:
    """Service for billing summary generation and workflow.

    Key invariants:
    1. At most one live summary per (org, collector, month), enforced by a
       partial unique index
    2. Generation is idempotent: an existing summary, or losing a concurrent
       insert race, is reported as skipped, never as an error
    3. A summary reaches SUBMITTED only when every one of its items is APPROVED
    4. Bulk approve/reject touch only SUBMITTED summaries of a single org
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_summary(self, principal: Principal, summary_id: UUID) -> BillingSummary:
        summary = await self.session.get(BillingSummary, summary_id)
        authorize_lookup(principal, summary, "BillingSummary", summary_id)
        if summary.is_deleted:
            raise NotFoundError("BillingSummary", summary_id)
        return summary

    async def _find_live(
        self,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
    ) -> BillingSummary | None:
        result = await self.session.execute(
            select(BillingSummary).where(
                BillingSummary.org_id == org_id,
                BillingSummary.collector_id == collector_id,
                BillingSummary.billing_month == billing_month,
                BillingSummary.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def _load_items(
        self,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
    ) -> list[BillingItem]:
        result = await self.session.execute(
            select(BillingItem)
            .where(
                BillingItem.org_id == org_id,
                BillingItem.collector_id == collector_id,
                BillingItem.billing_month == billing_month,
                BillingItem.deleted_at.is_(None),
            )
            .order_by(BillingItem.created_at)
        )
        return list(result.scalars().all())

    async def get_summary_items(
        self,
        principal: Principal,
        summary_id: UUID,
    ) -> list[BillingItem]:
        """Live items that roll into a summary."""
        summary = await self.get_summary(principal, summary_id)
        return await self._load_items(summary.org_id, summary.collector_id, summary.billing_month)

    async def list_summaries(
        self,
        principal: Principal,
        org_id: UUID | None = None,
        billing_month: date | None = None,
        status: SummaryStatus | None = None,
    ) -> list[BillingSummary]:
        org_ids = scoped_org_ids(principal, org_id)
        query = select(BillingSummary).where(BillingSummary.deleted_at.is_(None))
        if org_ids is not None:
            query = query.where(BillingSummary.org_id.in_(org_ids))
        if billing_month is not None:
            query = query.where(BillingSummary.billing_month == month_start(billing_month))
        if status is not None:
            query = query.where(BillingSummary.status == status.value)

        query = query.order_by(BillingSummary.billing_month.desc(), BillingSummary.collector_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _insert_for_dialect(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise RuntimeError(f"Unsupported database dialect for summary generation: {dialect}")

    async def generate_summary(
        self,
        principal: Principal,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
    ) -> GenerationResult:
        """Generate the summary for (org, collector, month) if it does not exist.

        Returns:
            GenerationResult with the new summary, or skipped with reason
            "already exists" (including a lost concurrent insert) or "no items"
        """
        authorize(principal, org_id)
        month = month_start(billing_month)

        existing = await self._find_live(org_id, collector_id, month)
        if existing is not None:
            logger.info(
                "Summary skipped org=%s collector=%s month=%s: %s",
                org_id,
                collector_id,
                month,
                SKIP_ALREADY_EXISTS,
            )
            return GenerationResult.skip(SKIP_ALREADY_EXISTS, existing)

        items = await self._load_items(org_id, collector_id, month)
        if not items:
            logger.info(
                "Summary skipped org=%s collector=%s month=%s: %s",
                org_id,
                collector_id,
                month,
                SKIP_NO_ITEMS,
            )
            return GenerationResult.skip(SKIP_NO_ITEMS)

        totals = aggregate_items(items)
        summary_id = uuid4()
        now = utcnow()

        # Insert is idempotent against the live-key index
        insert = self._insert_for_dialect()
        stmt = (
            insert(BillingSummary)
            .values(
                id=summary_id,
                org_id=org_id,
                collector_id=collector_id,
                billing_month=month,
                status=SummaryStatus.DRAFT.value,
                created_by=principal.user_id,
                created_at=now,
                updated_at=now,
                **totals.as_values(),
            )
            .on_conflict_do_nothing(
                index_elements=["org_id", "collector_id", "billing_month"],
                index_where=BillingSummary.deleted_at.is_(None),
            )
        )
        result = await self.session.execute(stmt)

        if result.rowcount == 0:
            # A concurrent generator won the race
            logger.info(
                "Summary insert conflict org=%s collector=%s month=%s; treating as generated",
                org_id,
                collector_id,
                month,
            )
            winner = await self._find_live(org_id, collector_id, month)
            return GenerationResult.skip(SKIP_ALREADY_EXISTS, winner)

        summary = await self.session.get(BillingSummary, summary_id)
        await record_audit(
            self.session,
            org_id=org_id,
            entity_type="billing_summary",
            entity_id=summary_id,
            action="generated",
            actor_user_id=principal.user_id,
            after=totals.as_values(),
        )
        await self.session.flush()
        logger.info(
            "Summary generated org=%s collector=%s month=%s items=%d subtotal=%d",
            org_id,
            collector_id,
            month,
            totals.total_items_count,
            totals.subtotal_amount,
        )
        return GenerationResult.created(summary)

    async def generate_all_summaries(
        self,
        principal: Principal,
        org_id: UUID,
        billing_month: date,
    ) -> BulkGenerationResult:
        """Generate summaries for every collector with items in the month."""
        authorize(principal, org_id)
        month = month_start(billing_month)

        result = await self.session.execute(
            select(BillingItem.collector_id)
            .where(
                BillingItem.org_id == org_id,
                BillingItem.billing_month == month,
                BillingItem.deleted_at.is_(None),
            )
            .distinct()
            .order_by(BillingItem.collector_id)
        )
        collector_ids = list(result.scalars().all())

        bulk = BulkGenerationResult()
        for collector_id in collector_ids:
            outcome = await self.generate_summary(principal, org_id, collector_id, month)
            if outcome.skipped:
                bulk.skipped[collector_id] = outcome.reason
            else:
                bulk.generated.append(outcome.summary)

        logger.info(
            "Generate-all org=%s month=%s: generated=%d skipped=%d",
            org_id,
            month,
            bulk.generated_count,
            bulk.skipped_count,
        )
        return bulk

    async def regenerate_summary(
        self,
        principal: Principal,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
    ) -> GenerationResult:
        """Discard a DRAFT or REJECTED summary and build it again from its items.

        Raises:
            InvalidTransitionError: If the live summary is SUBMITTED or APPROVED
        """
        authorize(principal, org_id)
        month = month_start(billing_month)

        existing = await self._find_live(org_id, collector_id, month)
        if existing is not None:
            if not SummaryStateMachine.can_regenerate(existing.status):
                raise InvalidTransitionError(
                    existing.status,
                    SummaryStatus.DRAFT,
                    allowed=SummaryStateMachine.get_next_statuses(existing.status),
                    reason="only DRAFT or REJECTED summaries can be regenerated",
                )
            existing.deleted_at = utcnow()
            await record_audit(
                self.session,
                org_id=org_id,
                entity_type="billing_summary",
                entity_id=existing.id,
                action="discarded_for_regeneration",
                actor_user_id=principal.user_id,
            )
            # The index only ignores the old row once the soft delete is written
            await self.session.flush()

        return await self.generate_summary(principal, org_id, collector_id, month)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    async def submit_summary(self, principal: Principal, summary_id: UUID) -> BillingSummary:
        """Submit a DRAFT summary whose items are all APPROVED.

        Raises:
            InvalidTransitionError: If the summary is not in DRAFT
            IncompleteApprovalError: With (approved, total) counts if any item
                is not APPROVED, or if the summary has no items at all
            ValidationError: If item figures no longer match the summary
        """
        summary = await self.get_summary(principal, summary_id)
        SummaryStateMachine.validate_transition(summary.status, SummaryStatus.SUBMITTED)

        result = await self.session.execute(
            select(
                func.count(BillingItem.id),
                func.coalesce(
                    func.sum(
                        case((BillingItem.status == BillingItemStatus.APPROVED.value, 1), else_=0)
                    ),
                    0,
                ),
            ).where(
                BillingItem.org_id == summary.org_id,
                BillingItem.collector_id == summary.collector_id,
                BillingItem.billing_month == summary.billing_month,
                BillingItem.deleted_at.is_(None),
            )
        )
        total_count, approved_count = result.one()

        if total_count == 0 or approved_count < total_count:
            raise IncompleteApprovalError(approved_count, total_count)

        # Every stored figure must still match the items, commission and net included
        items = await self._load_items(summary.org_id, summary.collector_id, summary.billing_month)
        if aggregate_items(items).as_values() != stored_totals(summary):
            raise ValidationError(
                "summary_id",
                "Billing items changed since the summary was generated; regenerate it first",
            )

        summary.status = SummaryStatus.SUBMITTED.value
        summary.submitted_at = utcnow()
        summary.submitted_by = principal.user_id

        await record_audit(
            self.session,
            org_id=summary.org_id,
            entity_type="billing_summary",
            entity_id=summary.id,
            action=f"status_change:{SummaryStatus.DRAFT.value}:{SummaryStatus.SUBMITTED.value}",
            actor_user_id=principal.user_id,
        )
        await self.session.flush()
        return summary

    async def reopen_summary(self, principal: Principal, summary_id: UUID) -> BillingSummary:
        """Move a REJECTED summary back to DRAFT. The rejection record is kept."""
        summary = await self.get_summary(principal, summary_id)
        SummaryStateMachine.validate_transition(summary.status, SummaryStatus.DRAFT)

        summary.status = SummaryStatus.DRAFT.value
        summary.submitted_at = None
        summary.submitted_by = None

        await record_audit(
            self.session,
            org_id=summary.org_id,
            entity_type="billing_summary",
            entity_id=summary.id,
            action=f"status_change:{SummaryStatus.REJECTED.value}:{SummaryStatus.DRAFT.value}",
            actor_user_id=principal.user_id,
        )
        await self.session.flush()
        return summary

    async def _load_submitted_batch(
        self,
        principal: Principal,
        summary_ids: list[UUID],
    ) -> tuple[list[BillingSummary], SummaryBatchResult]:
        """Admin-only batch load; unknown ids are skipped like non-SUBMITTED ones."""
        require_system_admin(principal)
        unique_ids = list(dict.fromkeys(summary_ids))
        if not unique_ids:
            raise ValidationError("summary_ids", "summary_ids must not be empty")

        result = await self.session.execute(
            select(BillingSummary).where(
                BillingSummary.id.in_(unique_ids),
                BillingSummary.deleted_at.is_(None),
            )
        )
        by_id = {s.id: s for s in result.scalars().all()}
        if by_id:
            resolve_batch_org(s.org_id for s in by_id.values())

        batch = SummaryBatchResult()
        targets = []
        for summary_id in unique_ids:
            summary = by_id.get(summary_id)
            if summary is None or summary.status != SummaryStatus.SUBMITTED:
                batch.skipped_ids.append(summary_id)
            else:
                targets.append(summary)
        return targets, batch

    async def approve_summaries(
        self,
        principal: Principal,
        summary_ids: list[UUID],
    ) -> SummaryBatchResult:
        """Approve SUBMITTED summaries in bulk (system administrators only)."""
        targets, batch = await self._load_submitted_batch(principal, summary_ids)
        now = utcnow()
        for summary in targets:
            summary.status = SummaryStatus.APPROVED.value
            summary.approved_at = now
            summary.approved_by = principal.user_id
            await record_audit(
                self.session,
                org_id=summary.org_id,
                entity_type="billing_summary",
                entity_id=summary.id,
                action=f"status_change:{SummaryStatus.SUBMITTED.value}:{SummaryStatus.APPROVED.value}",
                actor_user_id=principal.user_id,
            )
            batch.updated_ids.append(summary.id)

        await self.session.flush()
        logger.info(
            "Approved summaries: updated=%d skipped=%d", batch.updated_count, batch.skipped_count
        )
        return batch

    async def reject_summaries(
        self,
        principal: Principal,
        summary_ids: list[UUID],
        rejection_reason: str,
    ) -> SummaryBatchResult:
        """Reject SUBMITTED summaries in bulk with a mandatory reason."""
        require_system_admin(principal)
        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError("rejection_reason", "rejection_reason is required")

        targets, batch = await self._load_submitted_batch(principal, summary_ids)
        now = utcnow()
        reason = rejection_reason.strip()
        for summary in targets:
            summary.status = SummaryStatus.REJECTED.value
            summary.rejected_at = now
            summary.rejected_by = principal.user_id
            summary.rejection_reason = reason
            await record_audit(
                self.session,
                org_id=summary.org_id,
                entity_type="billing_summary",
                entity_id=summary.id,
                action=f"status_change:{SummaryStatus.SUBMITTED.value}:{SummaryStatus.REJECTED.value}",
                actor_user_id=principal.user_id,
                after={"rejection_reason": reason},
            )
            batch.updated_ids.append(summary.id)

        await self.session.flush()
        logger.info(
            "Rejected summaries: updated=%d skipped=%d", batch.updated_count, batch.skipped_count
        )
        return batch

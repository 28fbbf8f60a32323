"""Commission rule resolution with collector and billing-type specificity."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.auth import Principal, authorize
from billing_engine.calculators.types import (
    BillingType,
    CommissionType,
    ResolvedDefault,
    RuleBillingType,
    month_start,
)
from billing_engine.models import CommissionRule


def _created_key(rule: CommissionRule) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC
    created = rule.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def rank_rules(rules: Sequence[CommissionRule]) -> list[CommissionRule]:
    """Order candidates: collector-specific before org-wide, newest first.

    Ties on creation time fall back to id so the order is total.
    """
    newest_first = sorted(rules, key=lambda r: (_created_key(r), r.id), reverse=True)
    return sorted(newest_first, key=lambda r: r.collector_id is None)


def to_resolved_default(rule: CommissionRule) -> ResolvedDefault:
    """Project a rule onto the commission fields it would fill on an item."""
    commission_type = CommissionType(rule.commission_type)
    if commission_type == CommissionType.PERCENTAGE:
        return ResolvedDefault(
            commission_type=commission_type,
            commission_rate=rule.commission_value,
            commission_amount=None,
            source_rule_id=rule.id,
        )
    return ResolvedDefault(
        commission_type=commission_type,
        commission_rate=None,
        commission_amount=int(rule.commission_value),
        source_rule_id=rule.id,
    )


def _first_of_type(rules: list[CommissionRule], billing_type: str) -> CommissionRule | None:
    return next((r for r in rules if r.billing_type == billing_type), None)


def select_defaults(rules: Sequence[CommissionRule]) -> dict[BillingType, ResolvedDefault]:
    """Pick the winning rule for each concrete billing type.

    Collector specificity is evaluated before type specificity: within the
    collector-specific tier an exact billing type beats ALL, and only when
    that tier has nothing for the type does the org-wide tier get a say. A
    collector-specific ALL rule therefore beats an org-wide FIXED rule.
    Types with no candidate are absent from the result.
    """
    ranked = rank_rules(rules)
    tiers = [
        [r for r in ranked if r.collector_id is not None],
        [r for r in ranked if r.collector_id is None],
    ]
    defaults: dict[BillingType, ResolvedDefault] = {}

    for billing_type in BillingType:
        winner = None
        for tier in tiers:
            winner = _first_of_type(tier, billing_type.value) or _first_of_type(
                tier, RuleBillingType.ALL.value
            )
            if winner is not None:
                break
        if winner is not None:
            defaults[billing_type] = to_resolved_default(winner)

    return defaults


class CommissionRuleResolver:
    """Resolves default commission settings for a collector's billing month.

    Candidate selection:
    1. Active, non-deleted rules of the organization
    2. Rule collector is the requested collector or NULL (org-wide)
    3. Effective window (open-ended on either side) contains the billing month
    Ranking and per-type selection follow ``select_defaults``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_defaults(
        self,
        principal: Principal,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
    ) -> dict[BillingType, ResolvedDefault]:
        """Resolve per-type commission defaults.

        Returns:
            Mapping of billing type to resolved default; types without an
            applicable rule are absent, and callers leave commission unset
        """
        authorize(principal, org_id)
        rules = await self._get_candidate_rules(org_id, collector_id, month_start(billing_month))
        return select_defaults(rules)

    async def resolve_for_type(
        self,
        principal: Principal,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
        billing_type: BillingType,
    ) -> ResolvedDefault | None:
        """Resolve the default for a single billing type."""
        defaults = await self.resolve_defaults(principal, org_id, collector_id, billing_month)
        return defaults.get(billing_type)

    async def _get_candidate_rules(
        self,
        org_id: UUID,
        collector_id: UUID,
        billing_month: date,
    ) -> list[CommissionRule]:
        """Get all candidate rules effective in the billing month."""
        result = await self.session.execute(
            select(CommissionRule)
            .where(
                CommissionRule.org_id == org_id,
                CommissionRule.is_active.is_(True),
                CommissionRule.deleted_at.is_(None),
                (
                    (CommissionRule.collector_id == collector_id)
                    | CommissionRule.collector_id.is_(None)
                ),
                (
                    CommissionRule.effective_from.is_(None)
                    | (CommissionRule.effective_from <= billing_month)
                ),
                (
                    CommissionRule.effective_to.is_(None)
                    | (CommissionRule.effective_to >= billing_month)
                ),
            )
            .order_by(
                case((CommissionRule.collector_id.is_(None), 1), else_=0),
                CommissionRule.created_at.desc(),
                CommissionRule.id.desc(),
            )
        )
        return list(result.scalars().all())

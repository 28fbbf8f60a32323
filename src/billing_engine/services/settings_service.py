"""Per-organization tax settings."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.auth import Principal, authorize
from billing_engine.calculators.tax_calculator import coerce_rounding_mode
from billing_engine.calculators.types import TaxRoundingMode
from billing_engine.config import get_settings
from billing_engine.errors import ValidationError
from billing_engine.models import BillingSettings
from billing_engine.services.audit import record_audit, snapshot


class BillingSettingsService:
    """Reads and writes the tax rate and rounding mode of an organization.

    Organizations without a row fall back to the process-wide defaults.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_tax_settings(self, org_id: UUID) -> tuple[Decimal, TaxRoundingMode]:
        """Effective (rate, rounding mode) for an organization. No auth check."""
        row = await self.session.get(BillingSettings, org_id)
        if row is None:
            defaults = get_settings()
            return defaults.default_tax_rate, coerce_rounding_mode(
                defaults.default_tax_rounding_mode
            )
        return row.tax_rate, coerce_rounding_mode(row.tax_rounding_mode)

    async def get_settings(self, principal: Principal, org_id: UUID) -> BillingSettings:
        """Settings for an organization (unsaved defaults if none exist)."""
        authorize(principal, org_id)
        row = await self.session.get(BillingSettings, org_id)
        if row is not None:
            return row
        rate, mode = await self.get_tax_settings(org_id)
        return BillingSettings(org_id=org_id, tax_rate=rate, tax_rounding_mode=mode.value)

    async def update_settings(
        self,
        principal: Principal,
        org_id: UUID,
        tax_rate: Decimal,
        tax_rounding_mode: TaxRoundingMode,
    ) -> BillingSettings:
        """Create or replace the settings of an organization."""
        authorize(principal, org_id)
        if tax_rate < 0 or tax_rate >= 1:
            raise ValidationError("tax_rate", "tax_rate must be between 0 and 1")

        row = await self.session.get(BillingSettings, org_id)
        before = snapshot(row, ["tax_rate", "tax_rounding_mode"]) if row else None
        if row is None:
            row = BillingSettings(org_id=org_id)
            self.session.add(row)
        row.tax_rate = tax_rate
        row.tax_rounding_mode = tax_rounding_mode.value
        row.updated_by = principal.user_id

        await record_audit(
            self.session,
            org_id=org_id,
            entity_type="billing_settings",
            entity_id=org_id,
            action="settings_updated",
            actor_user_id=principal.user_id,
            before=before,
            after=snapshot(row, ["tax_rate", "tax_rounding_mode"]),
        )
        await self.session.flush()
        return row

"""Tests for billing item lifecycle and commission operations."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from billing_engine.calculators.types import BillingType, CommissionRequest, CommissionType
from billing_engine.errors import (
    CrossTenantBatchError,
    Forbidden,
    ImmutableStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from billing_engine.models import AuditEvent, BillingItem, BillingSettings
from billing_engine.services.billing_item_service import BillingItemService
from billing_engine.services.state_machine import BillingItemStatus

from conftest import COLLECTOR_1, COLLECTOR_2, MONTH, ORG_A, ORG_B, make_item, make_rule

PCT_8_5 = CommissionRequest(CommissionType.PERCENTAGE, commission_rate=Decimal("8.5"))


class TestCreateItem:
    """Test item creation with org tax settings."""

    async def test_default_tax_settings(self, session, member_a):
        service = BillingItemService(session)
        item = await service.create_item(
            member_a,
            org_id=ORG_A,
            collector_id=COLLECTOR_1,
            billing_month=date(2024, 5, 17),
            billing_type=BillingType.FIXED,
            base_amount=10000,
        )

        assert item.status == "DRAFT"
        assert item.billing_month == MONTH
        assert item.tax_amount == 1000
        assert item.total_amount == 11000
        assert item.created_by == member_a.user_id
        assert item.has_commission is False

    async def test_org_settings_apply(self, session, member_a):
        session.add(
            BillingSettings(org_id=ORG_A, tax_rate=Decimal("0.08"), tax_rounding_mode="CEIL")
        )
        await session.flush()

        service = BillingItemService(session)
        item = await service.create_item(
            member_a,
            org_id=ORG_A,
            collector_id=COLLECTOR_1,
            billing_month=MONTH,
            billing_type=BillingType.METERED,
            base_amount=1234,
        )
        assert item.tax_rate == Decimal("0.08")
        assert item.tax_amount == 99
        assert item.total_amount == 1333

    async def test_amount_from_unit_price_and_quantity(self, session, member_a):
        service = BillingItemService(session)
        item = await service.create_item(
            member_a,
            org_id=ORG_A,
            collector_id=COLLECTOR_1,
            billing_month=MONTH,
            billing_type=BillingType.METERED,
            unit_price=Decimal("12.5"),
            quantity=Decimal("3.3"),
            unit="kg",
        )
        # floor(41.25)
        assert item.base_amount == 41

    async def test_amount_required(self, session, member_a):
        service = BillingItemService(session)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_item(
                member_a,
                org_id=ORG_A,
                collector_id=COLLECTOR_1,
                billing_month=MONTH,
                billing_type=BillingType.OTHER,
            )
        assert exc_info.value.field == "base_amount"

    async def test_create_in_foreign_org_forbidden(self, session, member_a):
        service = BillingItemService(session)
        with pytest.raises(Forbidden):
            await service.create_item(
                member_a,
                org_id=ORG_B,
                collector_id=COLLECTOR_1,
                billing_month=MONTH,
                billing_type=BillingType.FIXED,
                base_amount=100,
            )


class TestStatusUpdate:
    """Test lifecycle transitions through the service."""

    async def test_submit_records_actor(self, session, member_a):
        item = await make_item(session)
        service = BillingItemService(session)

        updated = await service.update_status(member_a, item.id, BillingItemStatus.SUBMITTED)
        assert updated.status == "SUBMITTED"
        assert updated.status_changed_by == member_a.user_id
        assert updated.status_changed_at is not None

    async def test_invalid_transition(self, session, member_a):
        item = await make_item(session)
        service = BillingItemService(session)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.update_status(member_a, item.id, BillingItemStatus.FINALIZED)
        assert exc_info.value.from_status == "DRAFT"
        assert exc_info.value.allowed == ["SUBMITTED", "CANCELLED"]

    async def test_note_appended(self, session, member_a):
        item = await make_item(session, notes="imported")
        service = BillingItemService(session)

        await service.update_status(member_a, item.id, BillingItemStatus.CANCELLED, "duplicate")
        assert item.notes == "imported\nDRAFT → CANCELLED: duplicate"

    async def test_approval_stamps_and_send_back(self, session, member_a):
        item = await make_item(session, status="SUBMITTED")
        service = BillingItemService(session)

        await service.update_status(member_a, item.id, BillingItemStatus.APPROVED)
        assert item.approved_by == member_a.user_id
        assert item.approved_at is not None

        await service.update_status(member_a, item.id, BillingItemStatus.SUBMITTED)
        assert item.approved_by is None
        assert item.approved_at is None

    async def test_finalized_is_terminal(self, session, member_a):
        item = await make_item(session, status="FINALIZED")
        service = BillingItemService(session)
        for status in BillingItemStatus:
            with pytest.raises(InvalidTransitionError):
                await service.update_status(member_a, item.id, status)

    async def test_audit_event_recorded(self, session, member_a):
        item = await make_item(session)
        service = BillingItemService(session)
        await service.update_status(member_a, item.id, BillingItemStatus.SUBMITTED)

        events = (
            await session.execute(select(AuditEvent).where(AuditEvent.entity_id == item.id))
        ).scalars().all()
        assert [e.action for e in events] == ["status_change:DRAFT:SUBMITTED"]
        assert events[0].actor_user_id == member_a.user_id

    async def test_foreign_item_forbidden(self, session, member_b):
        item = await make_item(session)
        service = BillingItemService(session)
        with pytest.raises(Forbidden):
            await service.update_status(member_b, item.id, BillingItemStatus.SUBMITTED)
        assert item.status == "DRAFT"

    async def test_unknown_item_denied_like_foreign_item(self, session, member_a):
        service = BillingItemService(session)
        with pytest.raises(Forbidden):
            await service.update_status(member_a, uuid4(), BillingItemStatus.SUBMITTED)

    async def test_unknown_item_not_found_for_admin(self, session, admin):
        service = BillingItemService(session)
        with pytest.raises(NotFoundError):
            await service.update_status(admin, uuid4(), BillingItemStatus.SUBMITTED)


class TestCommissionUpdate:
    """Test single-item commission updates."""

    async def test_percentage_example(self, session, member_a):
        item = await make_item(session, base_amount=10000)
        service = BillingItemService(session)

        updated = await service.update_commission(member_a, item.id, PCT_8_5)
        assert updated.commission_type == "PERCENTAGE"
        assert updated.commission_rate == Decimal("8.5")
        assert updated.commission_amount == 850
        assert updated.net_amount == 9150
        assert updated.is_commission_manual is False

    async def test_approved_item_is_immutable(self, session, member_a):
        item = await make_item(session, status="APPROVED")
        service = BillingItemService(session)
        with pytest.raises(ImmutableStateError):
            await service.update_commission(member_a, item.id, PCT_8_5)
        assert item.commission_amount is None

    async def test_manual_commission(self, session, member_a):
        item = await make_item(session)
        service = BillingItemService(session)
        await service.update_commission(
            member_a,
            item.id,
            CommissionRequest(CommissionType.MANUAL, commission_amount=200, commission_note="deal"),
        )
        assert item.is_commission_manual is True
        assert item.commission_note == "deal"
        assert item.net_amount == 9800


class TestBatchCommission:
    """Test the single-org batch commission update."""

    async def test_skips_locked_items(self, session, member_a):
        draft = await make_item(session)
        submitted = await make_item(session, status="SUBMITTED")
        approved = await make_item(session, status="APPROVED")
        finalized = await make_item(session, status="FINALIZED")
        service = BillingItemService(session)

        result = await service.batch_update_commission(
            member_a, [draft.id, submitted.id, approved.id, finalized.id], PCT_8_5
        )
        assert result.updated_count == 2
        assert result.skipped_count == 2
        assert set(result.skipped_ids) == {approved.id, finalized.id}
        assert draft.commission_amount == 850
        assert approved.commission_amount is None

    async def test_cross_tenant_batch_rejected_wholesale(self, session, member_ab):
        a_item = await make_item(session, org_id=ORG_A)
        b_item = await make_item(session, org_id=ORG_B)
        service = BillingItemService(session)

        with pytest.raises(CrossTenantBatchError):
            await service.batch_update_commission(member_ab, [a_item.id, b_item.id], PCT_8_5)
        assert a_item.commission_amount is None
        assert b_item.commission_amount is None

    async def test_invalid_request_writes_nothing(self, session, member_a):
        first = await make_item(session)
        second = await make_item(session)
        service = BillingItemService(session)

        with pytest.raises(ValidationError):
            await service.batch_update_commission(
                member_a,
                [first.id, second.id],
                CommissionRequest(CommissionType.PERCENTAGE, commission_rate=Decimal("0")),
            )
        assert first.commission_type is None
        assert second.commission_type is None

    async def test_unknown_id_fails(self, session, member_a):
        item = await make_item(session)
        service = BillingItemService(session)
        with pytest.raises(Forbidden):
            await service.batch_update_commission(member_a, [item.id, uuid4()], PCT_8_5)
        assert item.commission_type is None

    async def test_unknown_id_not_found_for_admin(self, session, admin):
        item = await make_item(session)
        service = BillingItemService(session)
        with pytest.raises(NotFoundError):
            await service.batch_update_commission(admin, [item.id, uuid4()], PCT_8_5)
        assert item.commission_type is None

    async def test_deleted_foreign_item_is_forbidden(self, session, member_b):
        item = await make_item(session, org_id=ORG_A)
        item.deleted_at = item.created_at
        await session.flush()
        service = BillingItemService(session)
        with pytest.raises(Forbidden):
            await service.batch_update_commission(member_b, [item.id], PCT_8_5)

    async def test_foreign_batch_forbidden(self, session, member_b):
        item = await make_item(session, org_id=ORG_A)
        service = BillingItemService(session)
        with pytest.raises(Forbidden):
            await service.batch_update_commission(member_b, [item.id], PCT_8_5)


class TestApproveItems:
    async def test_only_submitted_items_approved(self, session, member_a):
        submitted = await make_item(session, status="SUBMITTED")
        draft = await make_item(session)
        service = BillingItemService(session)

        result = await service.approve_items(member_a, [submitted.id, draft.id])
        assert result.updated_ids == [submitted.id]
        assert result.skipped_ids == [draft.id]
        assert submitted.status == "APPROVED"
        assert submitted.approved_by == member_a.user_id
        assert draft.status == "DRAFT"

    async def test_cross_tenant_rejected(self, session, admin):
        a_item = await make_item(session, org_id=ORG_A, status="SUBMITTED")
        b_item = await make_item(session, org_id=ORG_B, status="SUBMITTED")
        service = BillingItemService(session)

        with pytest.raises(CrossTenantBatchError):
            await service.approve_items(admin, [a_item.id, b_item.id])
        assert a_item.status == "SUBMITTED"


class TestApplyDefaultCommissions:
    """Test filling commission from rules."""

    async def test_fills_from_rules(self, session, member_a):
        rule = await make_rule(session, commission_value=Decimal("10"))
        fixed = await make_item(session, billing_type="FIXED", base_amount=10000)
        other = await make_item(session, billing_type="OTHER", base_amount=999)
        service = BillingItemService(session)

        result = await service.apply_default_commissions(member_a, ORG_A, MONTH)
        assert result.updated_count == 2
        assert fixed.commission_amount == 1000
        assert fixed.commission_rule_id == rule.id
        assert other.commission_amount == 99

    async def test_zero_percent_rule(self, session, member_a):
        rule = await make_rule(session, commission_value=Decimal("0"))
        item = await make_item(session, base_amount=10000)
        service = BillingItemService(session)

        result = await service.apply_default_commissions(member_a, ORG_A, MONTH)
        assert result.updated_ids == [item.id]
        assert item.commission_type == "PERCENTAGE"
        assert item.commission_amount == 0
        assert item.net_amount == 10000
        assert item.commission_rule_id == rule.id

    async def test_manual_and_locked_items_untouched(self, session, member_a):
        await make_rule(session)
        manual = await make_item(
            session,
            commission_type="MANUAL",
            commission_amount=5,
            net_amount=9995,
            is_commission_manual=True,
        )
        approved = await make_item(session, status="APPROVED")
        service = BillingItemService(session)

        result = await service.apply_default_commissions(member_a, ORG_A, MONTH, overwrite=True)
        assert result.updated_count == 0
        assert set(result.skipped_ids) == {manual.id, approved.id}
        assert manual.commission_amount == 5

    async def test_existing_commission_kept_unless_overwrite(self, session, member_a):
        await make_rule(session, commission_value=Decimal("10"))
        item = await make_item(
            session, commission_type="FIXED_AMOUNT", commission_amount=1, net_amount=9999
        )
        service = BillingItemService(session)

        result = await service.apply_default_commissions(member_a, ORG_A, MONTH)
        assert result.skipped_ids == [item.id]
        assert item.commission_amount == 1

        result = await service.apply_default_commissions(member_a, ORG_A, MONTH, overwrite=True)
        assert result.updated_ids == [item.id]
        assert item.commission_amount == 1000

    async def test_collector_specific_rules(self, session, member_a):
        await make_rule(session, commission_value=Decimal("10"))
        await make_rule(session, collector_id=COLLECTOR_2, commission_value=Decimal("20"))
        c1 = await make_item(session, collector_id=COLLECTOR_1)
        c2 = await make_item(session, collector_id=COLLECTOR_2)
        service = BillingItemService(session)

        await service.apply_default_commissions(member_a, ORG_A, MONTH)
        assert c1.commission_amount == 1000
        assert c2.commission_amount == 2000

    async def test_types_without_rule_skipped(self, session, member_a):
        await make_rule(session, billing_type="FIXED")
        metered = await make_item(session, billing_type="METERED")
        service = BillingItemService(session)

        result = await service.apply_default_commissions(member_a, ORG_A, MONTH)
        assert result.skipped_ids == [metered.id]
        assert metered.commission_type is None


class TestReadsAndDelete:
    async def test_list_items_scoped_to_member_orgs(self, session, member_a):
        own = await make_item(session, org_id=ORG_A)
        await make_item(session, org_id=ORG_B)
        service = BillingItemService(session)

        items = await service.list_items(member_a)
        assert [i.id for i in items] == [own.id]

        with pytest.raises(Forbidden):
            await service.list_items(member_a, org_id=ORG_B)

    async def test_list_items_filters(self, session, member_a):
        await make_item(session, collector_id=COLLECTOR_1)
        target = await make_item(session, collector_id=COLLECTOR_2, status="SUBMITTED")
        await make_item(session, collector_id=COLLECTOR_2, billing_month=date(2024, 4, 1))
        service = BillingItemService(session)

        items = await service.list_items(
            member_a,
            org_id=ORG_A,
            billing_month=MONTH,
            collector_id=COLLECTOR_2,
            status=BillingItemStatus.SUBMITTED,
        )
        assert [i.id for i in items] == [target.id]

    async def test_list_billing_months(self, session, member_a):
        await make_item(session, billing_month=date(2024, 4, 1))
        await make_item(session, billing_month=MONTH)
        await make_item(session, billing_month=MONTH)
        service = BillingItemService(session)

        assert await service.list_billing_months(member_a, ORG_A) == [MONTH, date(2024, 4, 1)]

    async def test_soft_delete(self, session, member_a):
        item = await make_item(session)
        service = BillingItemService(session)

        await service.delete_item(member_a, item.id)
        assert item.is_deleted
        with pytest.raises(NotFoundError):
            await service.get_item(member_a, item.id)

        # Row is still there for the audit trail
        row = await session.get(BillingItem, item.id)
        assert row is not None

    async def test_cannot_delete_submitted(self, session, member_a):
        item = await make_item(session, status="SUBMITTED")
        service = BillingItemService(session)
        with pytest.raises(ValidationError):
            await service.delete_item(member_a, item.id)

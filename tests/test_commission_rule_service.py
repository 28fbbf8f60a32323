"""Tests for commission rule management."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engine.calculators.types import CommissionType, RuleBillingType
from billing_engine.errors import Forbidden, ImmutableStateError, NotFoundError, ValidationError
from billing_engine.services.commission_rule_service import CommissionRuleService

from conftest import COLLECTOR_1, ORG_A, ORG_B, make_item, make_rule


class TestCreateRule:
    async def test_create(self, session, member_a):
        service = CommissionRuleService(session)
        rule = await service.create_rule(
            member_a,
            org_id=ORG_A,
            collector_id=COLLECTOR_1,
            billing_type=RuleBillingType.ALL,
            commission_type=CommissionType.PERCENTAGE,
            commission_value=Decimal("8.5"),
            effective_from=date(2024, 1, 1),
        )
        assert rule.is_active is True
        assert rule.billing_type == "ALL"
        assert rule.created_by == member_a.user_id

    @pytest.mark.parametrize(
        ("commission_type", "value", "field"),
        [
            (CommissionType.PERCENTAGE, Decimal("100.5"), "commission_value"),
            (CommissionType.FIXED_AMOUNT, Decimal("-1"), "commission_value"),
            (CommissionType.MANUAL, Decimal("10"), "commission_type"),
        ],
    )
    async def test_invalid_values(self, session, member_a, commission_type, value, field):
        service = CommissionRuleService(session)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_rule(
                member_a,
                org_id=ORG_A,
                billing_type=RuleBillingType.FIXED,
                commission_type=commission_type,
                commission_value=value,
            )
        assert exc_info.value.field == field

    async def test_effective_window_order(self, session, member_a):
        service = CommissionRuleService(session)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_rule(
                member_a,
                org_id=ORG_A,
                billing_type=RuleBillingType.FIXED,
                commission_type=CommissionType.FIXED_AMOUNT,
                commission_value=Decimal("100"),
                effective_from=date(2024, 6, 1),
                effective_to=date(2024, 5, 31),
            )
        assert exc_info.value.field == "effective_to"

    async def test_foreign_org_forbidden(self, session, member_a):
        service = CommissionRuleService(session)
        with pytest.raises(Forbidden):
            await service.create_rule(
                member_a,
                org_id=ORG_B,
                billing_type=RuleBillingType.ALL,
                commission_type=CommissionType.PERCENTAGE,
                commission_value=Decimal("5"),
            )


class TestUpdateRule:
    async def test_partial_update(self, session, member_a):
        rule = await make_rule(session, notes="old", effective_to=date(2024, 12, 31))
        service = CommissionRuleService(session)

        updated = await service.update_rule(
            member_a, rule.id, commission_value=Decimal("7"), effective_to=None
        )
        assert updated.commission_value == Decimal("7")
        assert updated.effective_to is None
        assert updated.notes == "old"
        assert updated.updated_by == member_a.user_id

    async def test_switching_to_percentage_rechecks_range(self, session, member_a):
        rule = await make_rule(
            session, commission_type="FIXED_AMOUNT", commission_value=Decimal("500")
        )
        service = CommissionRuleService(session)
        with pytest.raises(ValidationError):
            await service.update_rule(
                member_a, rule.id, commission_type=CommissionType.PERCENTAGE
            )

    async def test_rule_locked_by_finalized_item(self, session, member_a):
        rule = await make_rule(session)
        await make_item(
            session,
            status="FINALIZED",
            commission_type="PERCENTAGE",
            commission_rate=Decimal("10"),
            commission_amount=1000,
            net_amount=9000,
            commission_rule_id=rule.id,
        )
        service = CommissionRuleService(session)

        assert await service.is_locked(rule.id) is True
        with pytest.raises(ImmutableStateError):
            await service.update_rule(member_a, rule.id, commission_value=Decimal("12"))
        assert rule.commission_value == Decimal("10")

        # Deactivation and notes remain possible
        await service.update_rule(member_a, rule.id, notes="superseded")
        deactivated = await service.deactivate_rule(member_a, rule.id)
        assert deactivated.is_active is False
        assert deactivated.notes == "superseded"

    async def test_rule_used_by_draft_item_is_not_locked(self, session, member_a):
        rule = await make_rule(session)
        await make_item(session, commission_rule_id=rule.id)
        service = CommissionRuleService(session)

        assert await service.is_locked(rule.id) is False
        updated = await service.update_rule(member_a, rule.id, commission_value=Decimal("12"))
        assert updated.commission_value == Decimal("12")


class TestDeleteAndList:
    async def test_soft_delete(self, session, member_a):
        rule = await make_rule(session)
        service = CommissionRuleService(session)

        await service.delete_rule(member_a, rule.id)
        assert rule.deleted_at is not None
        with pytest.raises(NotFoundError):
            await service.get_rule(member_a, rule.id)

    async def test_unknown_rule(self, session, member_a, admin):
        service = CommissionRuleService(session)
        with pytest.raises(Forbidden):
            await service.get_rule(member_a, uuid4())
        with pytest.raises(NotFoundError):
            await service.get_rule(admin, uuid4())

    async def test_list_scoped_and_filtered(self, session, member_a):
        active = await make_rule(session, org_id=ORG_A)
        await make_rule(session, org_id=ORG_A, is_active=False)
        await make_rule(session, org_id=ORG_B)
        service = CommissionRuleService(session)

        assert len(await service.list_rules(member_a)) == 2
        rules = await service.list_rules(member_a, include_inactive=False)
        assert [r.id for r in rules] == [active.id]

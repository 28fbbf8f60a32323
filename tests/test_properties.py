"""Property-based tests for the settlement laws.

These use hypothesis to check the rounding, commission and state-machine
laws over generated inputs rather than hand-picked examples.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from types import SimpleNamespace
from uuid import UUID

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from billing_engine.calculators.commission_calculator import calculate_commission
from billing_engine.calculators.rule_resolver import select_defaults
from billing_engine.calculators.tax_calculator import calculate_tax, calculate_tax_for_items
from billing_engine.calculators.types import BillingType, CommissionRequest, CommissionType
from billing_engine.services.state_machine import (
    BillingItemStateMachine,
    BillingItemStatus,
    InvalidTransitionError,
)
from billing_engine.services.summary_service import aggregate_items

amounts = st.integers(min_value=0, max_value=10**12)
tax_rates = st.decimals(min_value=0, max_value=1, places=4, allow_nan=False, allow_infinity=False)
commission_rates = st.decimals(
    min_value=Decimal("0.001"), max_value=100, places=3, allow_nan=False, allow_infinity=False
)
statuses = st.sampled_from(list(BillingItemStatus))


class TestRoundingLaws:
    @given(amount=amounts, rate=tax_rates)
    def test_floor_le_round_le_ceil(self, amount, rate):
        floor = calculate_tax(amount, rate, "FLOOR")
        rounded = calculate_tax(amount, rate, "ROUND")
        ceil = calculate_tax(amount, rate, "CEIL")
        assert floor <= rounded <= ceil
        assert ceil - floor <= 1

    @given(amount=amounts, rate=tax_rates)
    def test_modes_agree_on_exact_products(self, amount, rate):
        raw = Decimal(amount) * rate
        if raw == raw.to_integral_value():
            for mode in ("FLOOR", "CEIL", "ROUND"):
                assert calculate_tax(amount, rate, mode) == int(raw)

    @given(amount=amounts, rate=tax_rates)
    def test_floor_matches_exact_arithmetic(self, amount, rate):
        assert calculate_tax(amount, rate, "FLOOR") == math.floor(Fraction(amount) * Fraction(rate))

    @given(amount=amounts, rate=tax_rates)
    def test_round_is_half_up(self, amount, rate):
        expected = int((Decimal(amount) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        assert calculate_tax(amount, rate, "ROUND") == expected

    @given(items=st.lists(st.integers(min_value=0, max_value=10**9), max_size=50), rate=tax_rates)
    def test_items_tax_is_tax_of_subtotal(self, items, rate):
        result = calculate_tax_for_items(items, rate)
        assert result.subtotal == sum(items)
        assert result.tax_amount == calculate_tax(sum(items), rate)
        assert result.total_amount == result.subtotal + result.tax_amount


class TestCommissionLaws:
    @given(base=amounts, rate=commission_rates)
    def test_percentage_floor_law(self, base, rate):
        result = calculate_commission(
            base, CommissionRequest(CommissionType.PERCENTAGE, commission_rate=rate)
        )
        assert result.commission_amount == math.floor(Fraction(base) * Fraction(rate) / 100)
        assert result.net_amount == base - result.commission_amount
        assert 0 <= result.commission_amount <= base

    @given(base=amounts, amount=amounts)
    def test_fixed_amount_net(self, base, amount):
        result = calculate_commission(
            base, CommissionRequest(CommissionType.FIXED_AMOUNT, commission_amount=amount)
        )
        assert result.net_amount == base - amount


class TestStateMachineClosure:
    @given(current=statuses, requested=statuses)
    def test_disallowed_transitions_raise(self, current, requested):
        allowed = BillingItemStateMachine.get_next_statuses(current)
        if requested.value in allowed:
            BillingItemStateMachine.validate_transition(current, requested)
        else:
            with pytest.raises(InvalidTransitionError) as exc_info:
                BillingItemStateMachine.validate_transition(current, requested)
            assert exc_info.value.allowed == allowed

    @settings(max_examples=50)
    @given(path=st.lists(statuses, max_size=20))
    def test_finalized_never_left(self, path):
        """Walking only valid transitions, FINALIZED is absorbing."""
        current = BillingItemStatus.FINALIZED
        for requested in path:
            if BillingItemStateMachine.can_transition(current, requested):
                current = requested
        assert current == BillingItemStatus.FINALIZED


class TestAggregationConsistency:
    @given(
        rows=st.lists(
            st.tuples(st.sampled_from(list(BillingType)), st.integers(0, 10**9)),
            max_size=40,
        )
    )
    def test_type_partition_reproduces_subtotal(self, rows):
        items = []
        for billing_type, base in rows:
            tax = calculate_tax(base, Decimal("0.10"))
            items.append(
                SimpleNamespace(
                    billing_type=billing_type.value,
                    base_amount=base,
                    tax_amount=tax,
                    total_amount=base + tax,
                    commission_amount=None,
                    net_amount=None,
                )
            )
        totals = aggregate_items(items)
        assert totals.subtotal_amount == sum(base for _, base in rows)
        assert totals.subtotal_amount == (
            totals.total_fixed_amount + totals.total_metered_amount + totals.total_other_amount
        )
        assert totals.total_amount == totals.subtotal_amount + totals.tax_amount
        assert totals.total_items_count == len(rows)


class TestResolutionDeterminism:
    @given(order=st.permutations(range(4)))
    def test_input_order_does_not_matter(self, order):
        collector = UUID(int=99)
        rules = [
            SimpleNamespace(
                id=UUID(int=i + 1),
                collector_id=collector if i % 2 else None,
                billing_type=["ALL", "FIXED", "METERED", "ALL"][i],
                commission_type="PERCENTAGE",
                commission_value=Decimal(i + 1),
                created_at=datetime(2024, 1, 1 + i, tzinfo=timezone.utc),
            )
            for i in range(4)
        ]
        expected = select_defaults(rules)
        shuffled = select_defaults([rules[i] for i in order])
        assert shuffled == expected
        # Collector-specific ALL (rule 4) beats org-wide ALL for OTHER
        assert expected[BillingType.OTHER].source_rule_id == UUID(int=4)

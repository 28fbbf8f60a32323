"""Pytest fixtures for billing engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from billing_engine.auth import Principal
from billing_engine.calculators.tax_calculator import calculate_tax_included
from billing_engine.models import Base, BillingItem, CommissionRule

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ORG_A = UUID("00000000-0000-0000-0000-00000000000a")
ORG_B = UUID("00000000-0000-0000-0000-00000000000b")
COLLECTOR_1 = UUID("00000000-0000-0000-0000-0000000000c1")
COLLECTOR_2 = UUID("00000000-0000-0000-0000-0000000000c2")
MONTH = date(2024, 5, 1)
TAX_RATE = Decimal("0.10")


@pytest_asyncio.fixture
async def engine():
    """Fresh database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def member_a() -> Principal:
    """Member of organization A only."""
    return Principal(user_id=uuid4(), org_ids=frozenset({ORG_A}))


@pytest.fixture
def member_b() -> Principal:
    """Member of organization B only."""
    return Principal(user_id=uuid4(), org_ids=frozenset({ORG_B}))


@pytest.fixture
def member_ab() -> Principal:
    """Member of both organizations."""
    return Principal(user_id=uuid4(), org_ids=frozenset({ORG_A, ORG_B}))


@pytest.fixture
def admin() -> Principal:
    return Principal(user_id=uuid4(), is_system_admin=True)


async def make_item(
    session: AsyncSession,
    *,
    org_id: UUID = ORG_A,
    collector_id: UUID = COLLECTOR_1,
    billing_month: date = MONTH,
    billing_type: str = "FIXED",
    base_amount: int = 10000,
    status: str = "DRAFT",
    **fields,
) -> BillingItem:
    """Insert an item directly, with tax at 10% FLOOR."""
    fields.setdefault("is_commission_manual", False)
    tax = calculate_tax_included(base_amount, TAX_RATE)
    item = BillingItem(
        org_id=org_id,
        collector_id=collector_id,
        billing_month=billing_month,
        billing_type=billing_type,
        base_amount=base_amount,
        tax_rate=TAX_RATE,
        tax_amount=tax.tax_amount,
        total_amount=tax.total_amount,
        status=status,
        **fields,
    )
    session.add(item)
    await session.flush()
    return item


_RULE_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def make_rule(
    session: AsyncSession,
    *,
    org_id: UUID = ORG_A,
    collector_id: UUID | None = None,
    billing_type: str = "ALL",
    commission_type: str = "PERCENTAGE",
    commission_value: Decimal = Decimal("10"),
    age_days: int = 0,
    **fields,
) -> CommissionRule:
    """Insert a rule; larger ``age_days`` means created earlier."""
    rule = CommissionRule(
        org_id=org_id,
        collector_id=collector_id,
        billing_type=billing_type,
        commission_type=commission_type,
        commission_value=commission_value,
        created_at=_RULE_EPOCH - timedelta(days=age_days),
        **fields,
    )
    session.add(rule)
    await session.flush()
    return rule

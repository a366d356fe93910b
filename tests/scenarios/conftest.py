"""
Fixtures and helpers for end-to-end scenarios.

Provides:
- an engine whose single in-memory connection can be shared by several
  concurrent sessions (one per simulated API request)
- assertion helpers over orders, wallets and partners
"""
from collections import Counter
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from dispatch_engine.db.database import Base
from dispatch_engine.db.models.order import Order, ACTIVE_ORDER_STATUSES
from dispatch_engine.db.models.wallet import Wallet
from dispatch_engine.db.models.wallet_transaction import WalletTransaction
from tests.conftest import TEST_DATABASE_URL


@pytest.fixture(scope="function")
async def async_engine():
    """In-memory engine shared by concurrent sessions.

    Returning a connection to the pool must not roll it back: on SQLite all
    sessions share one connection, so a reset would discard another
    session's uncommitted writes.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_reset_on_return=None,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    """One session per simulated request"""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


# ============================================================================
# DB assertions
# ============================================================================

async def active_orders_per_partner(db_session: AsyncSession) -> Counter:
    result = await db_session.execute(
        select(Order.delivery_partner_id).where(
            Order.delivery_partner_id.is_not(None),
            Order.status.in_(ACTIVE_ORDER_STATUSES),
        )
    )
    return Counter(result.scalars().all())


async def assert_wallet(db_session: AsyncSession, partner_id: str, expected_balance) -> Wallet:
    result = await db_session.execute(
        select(Wallet).where(Wallet.partner_id == partner_id).execution_options(populate_existing=True)
    )
    wallet = result.scalar_one()
    expected = Decimal(str(expected_balance))
    assert wallet.balance == expected, f"balance {wallet.balance} != {expected}"
    assert wallet.total_earned >= wallet.balance

    tx = await db_session.execute(
        select(WalletTransaction).where(WalletTransaction.wallet_id == wallet.id)
    )
    assert sum((t.amount for t in tx.scalars().all()), Decimal("0")) == wallet.balance
    return wallet

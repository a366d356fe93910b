"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- ASGI test client
- A fake Redis for the redis lock backend
- Test data factories (partners, shops, orders, wallets)
"""
import itertools
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import patch

import pytest
from redis.asyncio.lock import Lock
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from dispatch_engine.core.locks import reset_lock_manager
from dispatch_engine.db.database import Base, get_db
from dispatch_engine.db.models.order import Order, OrderStatus, OrderType, PaymentMethod
from dispatch_engine.db.models.partner import DeliveryPartner
from dispatch_engine.db.models.shop import Shop
from dispatch_engine.db.models.wallet import Wallet
from dispatch_engine.domain.fees import calculate_fees
from dispatch_engine.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Bengaluru, roughly; factories place things around it
DEFAULT_LAT = 12.9716
DEFAULT_LNG = 77.5946

_id_counter = itertools.count(1)


def next_id(prefix: str) -> str:
    """Readable, sortable ids: p-0001, o-0002, ..."""
    return f"{prefix}-{next(_id_counter):04d}"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Process-wide state
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_lock_manager():
    """Every test starts with an empty lock manager"""
    reset_lock_manager()
    yield
    reset_lock_manager()


class _FakeLockScript:
    """Stands in for the Lua scripts redis-py's Lock registers.

    Each call checks the token and acts in one step, like EVALSHA on a
    server. Release deletes the key; extend and reacquire reset its ttl.
    """

    def __init__(self, registered_on: "FakeRedis", script: str) -> None:
        self.registered_on = registered_on
        self.releases = "'del'" in script

    async def __call__(self, keys=(), args=(), client=None) -> int:
        fake = client or self.registered_on
        fake.script_calls += 1
        name, token = keys[0], args[0]
        if fake._store.get(name) != token:
            return 0
        if self.releases:
            fake._store.pop(name, None)
            fake._ttls.pop(name, None)
        else:
            fake._ttls[name] = int(args[1])
        return 1


class FakeRedis:
    """In-memory stand-in for Redis with the commands the lock backend uses.

    lock() returns a real ``redis.asyncio.lock.Lock`` bound to this fake, so
    the backend runs the library's acquire/release logic. TTLs are recorded
    in milliseconds and never expire on their own.
    """

    def __init__(self) -> None:
        self._store: dict[str, object] = {}
        self._ttls: dict[str, int] = {}
        self.script_calls = 0

    async def ping(self) -> bool:
        return True

    async def get(self, key: str):
        return self._store.get(key)

    async def set(
        self,
        key: str,
        value,
        nx: bool = False,
        ex: int | None = None,
        px: int | None = None,
    ) -> bool | None:
        """SET with NX (only if absent) and EX/PX (ttl)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex * 1000
        elif px is not None:
            self._ttls[key] = px
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    def register_script(self, script: str) -> _FakeLockScript:
        return _FakeLockScript(self, script)

    def lock(
        self,
        name: str,
        timeout: float | None = None,
        sleep: float = 0.1,
        blocking: bool = True,
        blocking_timeout: float | None = None,
        thread_local: bool = True,
    ) -> Lock:
        return Lock(
            self,
            name,
            timeout=timeout,
            sleep=sleep,
            blocking=blocking,
            blocking_timeout=blocking_timeout,
            thread_local=thread_local,
        )

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with a FakeRedis for every test."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("dispatch_engine.core.redis_client.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def partner_factory(db_session: AsyncSession):
    """Factory for creating delivery partners (with a wallet by default)"""
    async def _create_partner(
        id: str | None = None,
        name: str | None = "Test Partner",
        lat: float | None = DEFAULT_LAT,
        lng: float | None = DEFAULT_LNG,
        is_online: bool = True,
        is_active: bool = True,
        vehicle_type: str = "bike",
        with_wallet: bool = True,
    ) -> DeliveryPartner:
        partner = DeliveryPartner(
            id=id or next_id("p"),
            name=name,
            current_lat=lat,
            current_lng=lng,
            is_online=is_online,
            is_active=is_active,
            vehicle_type=vehicle_type,
        )
        db_session.add(partner)
        if with_wallet:
            db_session.add(Wallet(partner_id=partner.id))
        await db_session.commit()
        await db_session.refresh(partner)
        return partner

    return _create_partner


@pytest.fixture
def shop_factory(db_session: AsyncSession):
    """Factory for creating shops"""
    async def _create_shop(
        name: str = "Corner Store",
        lat: float | None = DEFAULT_LAT,
        lng: float | None = DEFAULT_LNG,
        commission_percent: float = 15.0,
        delivery_enabled: bool = True,
        pickup_enabled: bool = True,
    ) -> Shop:
        shop = Shop(
            id=next_id("s"),
            name=name,
            latitude=lat,
            longitude=lng,
            commission_percent=Decimal(str(commission_percent)),
            delivery_enabled=delivery_enabled,
            pickup_enabled=pickup_enabled,
        )
        db_session.add(shop)
        await db_session.commit()
        await db_session.refresh(shop)
        return shop

    return _create_shop


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for creating orders with a consistent fee snapshot"""
    async def _create_order(
        shop: Shop,
        status: OrderStatus = OrderStatus.ACCEPTED,
        order_type: OrderType = OrderType.DELIVERY,
        subtotal: float = 250.0,
        delivery_partner_id: str | None = None,
    ) -> Order:
        fees = calculate_fees(subtotal, shop.commission_percent, order_type)
        order = Order(
            id=next_id("o"),
            shop_id=shop.id,
            customer_id="customer-1",
            status=status,
            type=order_type,
            payment_method=PaymentMethod.COD,
            delivery_partner_id=delivery_partner_id,
            delivery_address="12 MG Road",
            **fees.to_dict(),
        )
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


@pytest.fixture
async def sample_shop(shop_factory) -> Shop:
    return await shop_factory()

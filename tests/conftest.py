"""Shared test fixtures: single in-memory test DB plus seed helpers."""
from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["OUTBOX_ENABLED"] = "false"

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# Shared in-memory DB with StaticPool so every session sees the same database
from sqlalchemy.pool import StaticPool

from settlement.db.tables import Base, OrderItemRow, OrderRow, ProductRow
from settlement.db.affiliate_tables import AffiliateRow
from settlement.db.commission_tables import CommissionRow
from settlement.db.engine import get_session
from settlement.db.repository import SettlementRepository

TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


async def override_get_session():
    async with TestSession() as session:
        yield session


# Import app and override BEFORE any test module imports app
from settlement.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session

import settlement.db.engine as _engine_mod  # noqa: E402
_engine_mod.async_session = TestSession
_engine_mod.engine = test_engine


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    import settlement.db.affiliate_tables  # noqa: F401
    import settlement.db.commission_tables  # noqa: F401

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def session():
    async with TestSession() as s:
        yield s


@pytest_asyncio.fixture
async def repo(session):
    return SettlementRepository(session)


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Seed helpers ────────────────────────────────────────────────────────────

_codes = iter(f"{n:08X}" for n in range(1, 10_000))


async def make_affiliate(
    session: AsyncSession,
    *,
    status: str = "ACTIVE",
    commission_type: str = "PERCENTAGE",
    commission_rate: float = 5.0,
    company_id: str = "company-1",
    min_payout: str = "0",
    **fields,
) -> AffiliateRow:
    affiliate = AffiliateRow(
        user_id=fields.pop("user_id", f"user-{next(_codes)}"),
        company_id=company_id,
        affiliate_code=fields.pop("affiliate_code", next(_codes)),
        commission_type=commission_type,
        commission_rate=commission_rate,
        status=status,
        min_payout=Decimal(min_payout),
        **fields,
    )
    session.add(affiliate)
    await session.flush()
    return affiliate


async def make_product(
    session: AsyncSession,
    price: str = "150.00",
    base_price: str | None = "100.00",
    allow_affiliate_markup: bool = True,
    company_id: str = "company-1",
) -> ProductRow:
    product = ProductRow(
        company_id=company_id,
        name="Test product",
        price=Decimal(price),
        base_price=Decimal(base_price) if base_price is not None else None,
        allow_affiliate_markup=allow_affiliate_markup,
    )
    session.add(product)
    await session.flush()
    return product


async def make_order(
    session: AsyncSession,
    items: list[dict],
    affiliate_id: str | None = None,
    company_id: str = "company-1",
    shipping: str = "0",
    customer_id: str | None = None,
    source: str | None = None,
    status: str = "CONFIRMED",
) -> OrderRow:
    """Items are dicts of product_id, quantity, sell_price, base_price, merchant_price, merchant_id."""
    subtotal = sum(Decimal(i["sell_price"]) * i.get("quantity", 1) for i in items)
    order = OrderRow(
        company_id=company_id,
        affiliate_id=affiliate_id,
        subtotal=subtotal,
        shipping=Decimal(shipping),
        total=subtotal + Decimal(shipping),
        customer_id=customer_id,
        source=source,
        status=status,
    )
    session.add(order)
    await session.flush()
    for position, item in enumerate(items):
        session.add(OrderItemRow(
            order_id=order.id,
            product_id=item.get("product_id", f"product-{position}"),
            position=position,
            quantity=item.get("quantity", 1),
            sell_price=Decimal(item["sell_price"]),
            base_price=Decimal(item["base_price"]) if item.get("base_price") is not None else None,
            merchant_price=Decimal(item["merchant_price"]) if item.get("merchant_price") is not None else None,
            merchant_id=item.get("merchant_id"),
        ))
    await session.flush()
    # reload so the selectin-loaded items collection is populated
    session.expunge(order)
    return order


async def make_commission(
    session: AsyncSession,
    affiliate: AffiliateRow,
    amount: str,
    status: str = "CONFIRMED",
    age_minutes: int = 0,
) -> CommissionRow:
    """A standalone AFFILIATE ledger row, backed by a throwaway order."""
    order = await make_order(
        session,
        [{"sell_price": amount, "base_price": "0"}],
        affiliate_id=affiliate.id,
        company_id=affiliate.company_id or "company-1",
    )
    commission = CommissionRow(
        order_id=order.id,
        company_id=affiliate.company_id or "company-1",
        affiliate_id=affiliate.id,
        type="AFFILIATE",
        share_key="AFFILIATE",
        amount=Decimal(amount),
        order_total=Decimal(amount),
        status=status,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
    )
    session.add(commission)
    await session.flush()
    return commission

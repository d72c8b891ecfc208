import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret"

import pytest
import pytest_asyncio
import uuid
from datetime import timedelta
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from storefront.core.database import get_db
from storefront.core.security import SecurityUtils
from storefront.main import app
from storefront.models import Base, DiscountCode, Order, Customer
from storefront.models.base import utcnow
from storefront.schemas.cart import CartItem, CartSnapshot

DISCOUNT_DEFAULTS = {
    "description": None,
    "maximum_discount": None,
    "minimum_purchase": None,
    "minimum_items": None,
    "first_purchase_only": False,
    "customer_segments": None,
    "usage_limit": None,
    "usage_count": 0,
    "user_usage_limit": None,
    "valid_until": None,
    "is_active": True,
    "applicable_to": "all",
    "applicable_ids": None,
    "excluded_products": None,
    "excluded_categories": None,
    "priority": 0,
    "stackable": False,
    "auto_apply": False,
}

def make_discount(code="SAVE20", discount_type="percentage", discount_value="20", **overrides):
    """Transient DiscountCode with every column filled in"""
    values = dict(DISCOUNT_DEFAULTS)
    values["id"] = uuid.uuid4()
    values["valid_from"] = utcnow() - timedelta(days=1)
    values.update(overrides)
    for money in ("maximum_discount", "minimum_purchase"):
        if values[money] is not None:
            values[money] = Decimal(str(values[money]))
    return DiscountCode(
        code=code,
        discount_type=discount_type,
        discount_value=Decimal(str(discount_value)),
        **values
    )

def make_cart(*lines, cart_total=None):
    """Cart from (product_id, price[, quantity, category_id, variant_id]) tuples"""
    items = []
    for line in lines:
        product_id, unit_price = line[0], line[1]
        quantity = line[2] if len(line) > 2 else 1
        category_id = line[3] if len(line) > 3 else None
        variant_id = line[4] if len(line) > 4 else None
        items.append(
            CartItem(
                product_id=product_id,
                unit_price=Decimal(str(unit_price)),
                quantity=quantity,
                category_id=category_id,
                variant_id=variant_id,
            )
        )
    total = Decimal(str(cart_total)) if cart_total is not None else None
    return CartSnapshot(items=items, cart_total=total)

def auth_headers(user_id="user-1", role="customer"):
    token = SecurityUtils.create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def discount_factory():
    return make_discount

@pytest.fixture
def cart_factory():
    return make_cart

@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite DB for fast testing."""
    _engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield _engine
    await _engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session

@pytest_asyncio.fixture
async def add_discount(db_session):
    """Persist a discount built by make_discount"""
    async def _add(**kwargs):
        discount = make_discount(**kwargs)
        db_session.add(discount)
        await db_session.commit()
        return discount
    return _add

@pytest_asyncio.fixture
async def add_order(db_session):
    async def _add(order_id, user_id, payment_status="completed", total_amount="50.00"):
        order = Order(
            id=order_id,
            user_id=user_id,
            payment_status=payment_status,
            total_amount=Decimal(total_amount)
        )
        db_session.add(order)
        await db_session.commit()
        return order
    return _add

@pytest_asyncio.fixture
async def add_customer(db_session):
    async def _add(customer_id, segments):
        customer = Customer(id=customer_id, segments=list(segments))
        db_session.add(customer)
        await db_session.commit()
        return customer
    return _add

@pytest_asyncio.fixture
async def client(session_factory):
    """API client with get_db bound to the test database"""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", "admin")

@pytest.fixture
def user_headers():
    return auth_headers("user-1", "customer")

@pytest.fixture
def other_user_headers():
    return auth_headers("user-2", "customer")

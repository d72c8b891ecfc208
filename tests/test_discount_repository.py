import asyncio
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from storefront.core.exceptions import (
    ConflictException,
    DiscountLimitExceeded,
    NotFoundException,
)
from storefront.models import Base, DiscountCode, DiscountUsage, Order
from storefront.services.discount_repository import DiscountRepository
from storefront.services.discount_service import DiscountService

async def usage_count_of(session, discount_id):
    result = await session.execute(
        select(DiscountCode.usage_count).where(DiscountCode.id == discount_id)
    )
    return result.scalar_one()

async def test_lookup_by_code_is_case_insensitive(db_session, add_discount):
    discount = await add_discount(code="SAVE20")
    repo = DiscountRepository(db_session)

    found = await repo.get_by_code("  save20 ")

    assert found is not None
    assert found.id == discount.id
    assert await repo.get_by_code("NOPE") is None

async def test_list_active_orders_by_priority(db_session, add_discount):
    await add_discount(code="LOW", priority=1, auto_apply=True)
    await add_discount(code="HIGH", priority=9, auto_apply=True)
    await add_discount(code="MANUAL", priority=5)
    await add_discount(code="OFF", priority=7, auto_apply=True, is_active=False)
    repo = DiscountRepository(db_session)

    assert [d.code for d in await repo.list_active()] == ["HIGH", "MANUAL", "LOW"]
    assert [d.code for d in await repo.list_active(auto_apply_only=True)] == ["HIGH", "LOW"]

async def test_record_usage_increments_and_writes_one_record(db_session, add_discount):
    discount = await add_discount(code="SAVE20", usage_limit=10, user_usage_limit=None)
    discount_id = discount.id
    repo = DiscountRepository(db_session)

    usage = await repo.record_usage(discount_id, "user-1", "order-1", Decimal("15.00"))

    assert usage.order_id == "order-1"
    assert usage.idempotency_key == f"order-1:{discount_id}"
    assert await usage_count_of(db_session, discount_id) == 1
    assert await repo.count_usages(discount_id) == 1

async def test_repeated_idempotency_key_does_not_count_twice(db_session, add_discount):
    discount = await add_discount(code="SAVE20", usage_limit=10)
    discount_id = discount.id
    repo = DiscountRepository(db_session)

    first = await repo.record_usage(discount_id, "user-1", "order-1", Decimal("5"), "checkout-abc")
    second = await repo.record_usage(discount_id, "user-1", "order-1", Decimal("5"), "checkout-abc")

    assert first.id == second.id
    assert await usage_count_of(db_session, discount_id) == 1
    assert await repo.count_usages(discount_id) == 1

async def test_reused_key_for_another_order_is_rejected(db_session, add_discount):
    discount = await add_discount(code="SAVE20")
    discount_id = discount.id
    repo = DiscountRepository(db_session)

    await repo.record_usage(discount_id, "user-1", "order-1", Decimal("5"), "checkout-abc")

    with pytest.raises(ConflictException):
        await repo.record_usage(discount_id, "user-2", "order-2", Decimal("5"), "checkout-abc")

async def test_global_limit_is_never_exceeded(db_session, add_discount):
    discount = await add_discount(code="LIMITED", usage_limit=2, user_usage_limit=None)
    discount_id = discount.id
    repo = DiscountRepository(db_session)

    await repo.record_usage(discount_id, "user-1", "order-1", Decimal("1"))
    await repo.record_usage(discount_id, "user-2", "order-2", Decimal("1"))

    with pytest.raises(DiscountLimitExceeded) as exc:
        await repo.record_usage(discount_id, "user-3", "order-3", Decimal("1"))

    assert exc.value.reason == "usageLimitReached"
    assert await usage_count_of(db_session, discount_id) == 2
    assert await repo.count_usages(discount_id) == 2

async def test_per_user_limit_rolls_back_the_increment(db_session, add_discount):
    discount = await add_discount(code="VIP5", usage_limit=100, user_usage_limit=1)
    discount_id = discount.id
    repo = DiscountRepository(db_session)

    await repo.record_usage(discount_id, "user-1", "order-1", Decimal("5"))

    with pytest.raises(DiscountLimitExceeded) as exc:
        await repo.record_usage(discount_id, "user-1", "order-2", Decimal("5"))

    assert exc.value.reason == "alreadyUsed"
    assert await usage_count_of(db_session, discount_id) == 1
    assert await repo.count_usages(discount_id, "user-1") == 1

async def test_guest_cannot_redeem_per_user_limited_discount(db_session, add_discount):
    discount = await add_discount(code="VIP5", user_usage_limit=1)
    discount_id = discount.id
    repo = DiscountRepository(db_session)

    with pytest.raises(DiscountLimitExceeded) as exc:
        await repo.record_usage(discount_id, None, "order-1", Decimal("5"))

    assert exc.value.reason == "loginRequired"
    assert await usage_count_of(db_session, discount_id) == 0

async def test_unknown_discount(db_session):
    with pytest.raises(NotFoundException):
        await DiscountRepository(db_session).record_usage(uuid.uuid4(), "user-1", "order-1", Decimal("1"))

async def test_delete_refuses_redeemed_discount(db_session, add_discount):
    discount = await add_discount(code="USED")
    unused = await add_discount(code="UNUSED")
    repo = DiscountRepository(db_session)
    await repo.record_usage(discount.id, "user-1", "order-1", Decimal("1"))

    with pytest.raises(ConflictException):
        await repo.delete(await repo.get_by_code("USED"))

    await repo.delete(unused)
    assert await repo.get_by_code("UNUSED") is None

async def test_statistics(db_session, add_discount, add_order):
    discount = await add_discount(code="STATS", user_usage_limit=None)
    discount_id = discount.id
    await add_order("order-1", "user-1", total_amount="100.00")
    await add_order("order-2", "user-2", total_amount="50.00")
    repo = DiscountRepository(db_session)

    await repo.record_usage(discount_id, "user-1", "order-1", Decimal("10"))
    await repo.record_usage(discount_id, "user-2", "order-2", Decimal("5"))

    stats = await repo.get_statistics(discount_id)

    assert stats["total_uses"] == 2
    assert stats["total_saved"] == Decimal("15")
    assert stats["unique_users"] == 2
    assert stats["average_order_value"] == Decimal("75")
    assert stats["last_used"] is not None

@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed SQLite so concurrent sessions use separate connections"""
    _engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'discounts.db'}",
        poolclass=NullPool,
    )
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield _engine
    await _engine.dispose()

async def race_checkouts(factory, discount_id, shoppers):
    """Redeem one discount from several sessions at once, one paid order per shopper"""
    async with factory() as session:
        for n, user_id in enumerate(shoppers):
            session.add(Order(id=f"order-{n}", user_id=user_id, payment_status="completed", total_amount=Decimal("20.00")))
        await session.commit()

    async def checkout(n, user_id):
        async with factory() as session:
            return await DiscountService(session).record_usage(
                discount_id, user_id, f"order-{n}", Decimal("1")
            )

    return await asyncio.gather(
        *(checkout(n, user_id) for n, user_id in enumerate(shoppers)),
        return_exceptions=True
    )

async def test_concurrent_redemptions_respect_global_limit(file_engine, discount_factory):
    factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        discount = discount_factory(code="RACE", usage_limit=3, user_usage_limit=None)
        session.add(discount)
        await session.commit()
        discount_id = discount.id

    outcomes = await race_checkouts(factory, discount_id, [f"user-{n}" for n in range(8)])

    recorded = [o for o in outcomes if isinstance(o, DiscountUsage)]
    rejected = [o for o in outcomes if not isinstance(o, DiscountUsage)]

    assert len(recorded) == 3
    assert len(rejected) == 5
    for outcome in rejected:
        assert isinstance(outcome, DiscountLimitExceeded)
        assert outcome.reason == "usageLimitReached"

    async with factory() as session:
        assert await usage_count_of(session, discount_id) == 3
        assert await DiscountRepository(session).count_usages(discount_id) == 3

async def test_single_use_discount_raced_by_two_orders(file_engine, discount_factory):
    factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        discount = discount_factory(
            code="VIP5", discount_type="fixed_amount", discount_value="5",
            usage_limit=1, user_usage_limit=1
        )
        session.add(discount)
        await session.commit()
        discount_id = discount.id

    outcomes = await race_checkouts(factory, discount_id, ["user-1", "user-2"])

    recorded = [o for o in outcomes if isinstance(o, DiscountUsage)]
    rejected = [o for o in outcomes if not isinstance(o, DiscountUsage)]

    assert len(recorded) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], DiscountLimitExceeded)
    assert rejected[0].reason == "usageLimitReached"

    async with factory() as session:
        assert await usage_count_of(session, discount_id) == 1

async def test_unlimited_per_user_discount_accepts_repeat_and_guest_redemptions(db_session, add_discount):
    discount = await add_discount(code="OPEN", user_usage_limit=None)
    discount_id = discount.id
    repo = DiscountRepository(db_session)

    await repo.record_usage(discount_id, "user-1", "order-1", Decimal("1"))
    await repo.record_usage(discount_id, "user-1", "order-2", Decimal("1"))
    await repo.record_usage(discount_id, None, "order-3", Decimal("1"))

    assert (await repo.get_by_id(discount_id)).user_usage_limit is None
    assert await repo.count_usages(discount_id) == 3

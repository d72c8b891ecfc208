"""
Persistence for discount definitions and redemption records
"""

from typing import Any, Dict, List, Optional
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_, and_
from sqlalchemy.exc import IntegrityError
import logging
import uuid

from storefront.models import DiscountCode, DiscountUsage, Order
from storefront.core.exceptions import (
    NotFoundException,
    ConflictException,
    DiscountLimitExceeded,
)
from .discount_reasons import DiscountReason

logger = logging.getLogger(__name__)

def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()

def default_idempotency_key(order_id: str, discount_id) -> str:
    return f"{order_id}:{discount_id}"

class DiscountRepository:
    """Discount lookups, admin writes and the atomic usage increment"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Lookups

    async def get_by_code(self, code: str) -> Optional[DiscountCode]:
        result = await self.db.execute(
            select(DiscountCode).where(DiscountCode.code == normalize_code(code))
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, discount_id: uuid.UUID) -> Optional[DiscountCode]:
        result = await self.db.execute(
            select(DiscountCode).where(DiscountCode.id == discount_id)
        )
        return result.scalar_one_or_none()

    async def list_discounts(
        self,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        campaign: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[DiscountCode]:
        stmt = select(DiscountCode)

        if is_active is not None:
            stmt = stmt.where(DiscountCode.is_active == is_active)
        if category:
            stmt = stmt.where(DiscountCode.discount_category == category)
        if campaign:
            stmt = stmt.where(DiscountCode.campaign_name == campaign)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    DiscountCode.code.ilike(pattern),
                    DiscountCode.description.ilike(pattern)
                )
            )

        stmt = stmt.order_by(DiscountCode.created_at.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_active(self, auto_apply_only: bool = False) -> List[DiscountCode]:
        """Active discounts; the validity window is checked by the evaluator"""
        stmt = select(DiscountCode).where(DiscountCode.is_active == True)
        if auto_apply_only:
            stmt = stmt.where(DiscountCode.auto_apply == True)

        stmt = stmt.order_by(DiscountCode.priority.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def code_exists(self, code: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        stmt = select(DiscountCode.id).where(DiscountCode.code == normalize_code(code))
        if exclude_id is not None:
            stmt = stmt.where(DiscountCode.id != exclude_id)

        result = await self.db.execute(stmt)
        return result.first() is not None

    # Admin writes (rules only, never counters)

    async def create(self, data: Dict[str, Any]) -> DiscountCode:
        data = {k: v for k, v in data.items() if k != "usage_count"}
        discount = DiscountCode(**data)

        self.db.add(discount)
        await self.db.commit()
        await self.db.refresh(discount)
        return discount

    async def update(self, discount: DiscountCode, data: Dict[str, Any]) -> DiscountCode:
        for key, value in data.items():
            if key in ("id", "usage_count"):
                continue
            setattr(discount, key, value)

        self.db.add(discount)
        await self.db.commit()
        await self.db.refresh(discount)
        return discount

    async def delete(self, discount: DiscountCode) -> None:
        """Delete a discount that was never redeemed"""
        if await self.count_usages(discount.id):
            raise ConflictException(
                "Discount has recorded redemptions; deactivate it instead",
                error_code="DISCOUNT_IN_USE"
            )

        await self.db.execute(delete(DiscountCode).where(DiscountCode.id == discount.id))
        await self.db.commit()

    # Usage records

    async def count_usages(self, discount_id: uuid.UUID, user_id: Optional[str] = None) -> int:
        stmt = select(func.count(DiscountUsage.id)).where(DiscountUsage.discount_id == discount_id)
        if user_id is not None:
            stmt = stmt.where(DiscountUsage.user_id == user_id)

        result = await self.db.execute(stmt)
        return int(result.scalar_one() or 0)

    async def get_usage_by_key(self, idempotency_key: str) -> Optional[DiscountUsage]:
        result = await self.db.execute(
            select(DiscountUsage).where(DiscountUsage.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def get_usage_for_order(self, discount_id: uuid.UUID, order_id: str) -> Optional[DiscountUsage]:
        result = await self.db.execute(
            select(DiscountUsage).where(
                and_(
                    DiscountUsage.discount_id == discount_id,
                    DiscountUsage.order_id == order_id
                )
            )
        )
        return result.scalar_one_or_none()

    async def _replay(self, usage: DiscountUsage, discount_id: uuid.UUID, order_id: str) -> DiscountUsage:
        if usage.discount_id != discount_id or usage.order_id != order_id:
            raise ConflictException(
                "Idempotency key was already used for a different redemption",
                error_code="IDEMPOTENCY_KEY_REUSED"
            )
        logger.info(f"Replayed discount usage {usage.id} for order {order_id}")
        return usage

    async def record_usage(
        self,
        discount_id: uuid.UUID,
        user_id: Optional[str],
        order_id: str,
        amount_saved: Decimal,
        idempotency_key: Optional[str] = None,
    ) -> DiscountUsage:
        """
        Redeem a discount for a confirmed order.

        The global cap is enforced by a conditional increment and the per-user
        cap is recounted inside the same transaction; either failing rolls
        the increment back and raises DiscountLimitExceeded. A call repeating
        an idempotency key returns the stored record without counting again.
        """
        key = idempotency_key or default_idempotency_key(order_id, discount_id)

        existing = await self.get_usage_by_key(key)
        if existing is None:
            existing = await self.get_usage_for_order(discount_id, order_id)
        if existing is not None:
            return await self._replay(existing, discount_id, order_id)

        discount = await self.get_by_id(discount_id)
        if discount is None:
            raise NotFoundException("Discount not found")

        user_limit = discount.user_usage_limit
        if user_limit is not None and not user_id:
            raise DiscountLimitExceeded(DiscountReason.LOGIN_REQUIRED.value)

        try:
            result = await self.db.execute(
                update(DiscountCode)
                .where(
                    DiscountCode.id == discount_id,
                    or_(
                        DiscountCode.usage_limit.is_(None),
                        DiscountCode.usage_count < DiscountCode.usage_limit
                    )
                )
                .values(usage_count=DiscountCode.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                logger.warning(f"Discount {discount_id} reached its usage limit for order {order_id}")
                raise DiscountLimitExceeded(DiscountReason.USAGE_LIMIT_REACHED.value)

            if user_limit is not None:
                used = await self.count_usages(discount_id, user_id)
                if used >= user_limit:
                    await self.db.rollback()
                    logger.warning(
                        f"User {user_id} reached the per-user limit of discount {discount_id}"
                    )
                    raise DiscountLimitExceeded(DiscountReason.ALREADY_USED.value)

            usage = DiscountUsage(
                discount_id=discount_id,
                user_id=user_id,
                order_id=order_id,
                idempotency_key=key,
                amount_saved=amount_saved,
            )
            self.db.add(usage)
            await self.db.commit()
        except IntegrityError:
            # A concurrent request for the same order won the insert
            await self.db.rollback()
            existing = await self.get_usage_by_key(key) or await self.get_usage_for_order(discount_id, order_id)
            if existing is None:
                raise
            return await self._replay(existing, discount_id, order_id)

        await self.db.refresh(discount)
        logger.info(
            f"Recorded discount {discount.code} on order {order_id} "
            f"(saved {amount_saved}, uses {discount.usage_count})"
        )
        return usage

    # Statistics

    async def get_statistics(self, discount_id: uuid.UUID) -> Dict[str, Any]:
        result = await self.db.execute(
            select(
                func.count(DiscountUsage.id),
                func.coalesce(func.sum(DiscountUsage.amount_saved), 0),
                func.count(func.distinct(DiscountUsage.user_id)),
                func.max(DiscountUsage.created_at),
            ).where(DiscountUsage.discount_id == discount_id)
        )
        total_uses, total_saved, unique_users, last_used = result.one()

        avg_result = await self.db.execute(
            select(func.avg(Order.total_amount))
            .join(DiscountUsage, DiscountUsage.order_id == Order.id)
            .where(DiscountUsage.discount_id == discount_id)
        )
        average_order_value = avg_result.scalar_one_or_none()

        return {
            "total_uses": int(total_uses or 0),
            "total_saved": Decimal(str(total_saved or 0)),
            "unique_users": int(unique_users or 0),
            "average_order_value": Decimal(str(average_order_value or 0)),
            "last_used": last_used,
        }

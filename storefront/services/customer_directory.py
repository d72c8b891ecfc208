"""
Customer facts the discount engine needs: completed orders, segment tags
and prior redemptions. Read-only.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import uuid

from storefront.core.config import settings
from storefront.models import Order, Customer, DiscountUsage

@dataclass(frozen=True)
class CustomerContext:
    """Snapshot of the shopper at evaluation time; user_id is None for guests"""
    user_id: Optional[str] = None
    completed_orders: int = 0
    segments: FrozenSet[str] = frozenset()
    usage_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def usage_count(self, discount_id) -> int:
        return self.usage_counts.get(str(discount_id), 0)

GUEST = CustomerContext()

class CustomerDirectory:
    """Builds CustomerContext from the orders, customers and usage tables"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_order(self, order_id: str) -> Optional[Order]:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def count_completed_orders(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Order.id)).where(
                Order.user_id == user_id,
                Order.payment_status == settings.COMPLETED_PAYMENT_STATUS
            )
        )
        return int(result.scalar_one() or 0)

    async def get_segments(self, user_id: str) -> FrozenSet[str]:
        result = await self.db.execute(
            select(Customer.segments).where(Customer.id == user_id)
        )
        segments = result.scalar_one_or_none()
        return frozenset(str(s) for s in (segments or []))

    async def get_usage_counts(self, user_id: str, discount_ids: Iterable[uuid.UUID]) -> Dict[str, int]:
        ids = list(discount_ids)
        if not ids:
            return {}

        result = await self.db.execute(
            select(DiscountUsage.discount_id, func.count(DiscountUsage.id))
            .where(
                DiscountUsage.user_id == user_id,
                DiscountUsage.discount_id.in_(ids)
            )
            .group_by(DiscountUsage.discount_id)
        )
        return {str(discount_id): int(count) for discount_id, count in result.all()}

    async def load(self, user_id: Optional[str], discount_ids: Iterable[uuid.UUID] = ()) -> CustomerContext:
        """Context for a shopper; guests get an empty context"""
        if not user_id:
            return GUEST

        user_id = str(user_id)
        return CustomerContext(
            user_id=user_id,
            completed_orders=await self.count_completed_orders(user_id),
            segments=await self.get_segments(user_id),
            usage_counts=await self.get_usage_counts(user_id, discount_ids),
        )

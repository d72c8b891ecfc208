"""Models package initialization"""

from .base import Base
from .discount import DiscountCode, DiscountUsage, DiscountType, DiscountScope
from .order import Order, Customer, PaymentStatus

# Export all models
__all__ = [
    "Base",
    "DiscountCode",
    "DiscountUsage",
    "DiscountType",
    "DiscountScope",
    "Order",
    "Customer",
    "PaymentStatus",
]

"""
Monetary reduction for an eligible discount

All arithmetic is Decimal; rounding to cents happens once, on the final
amount.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from storefront.core.config import settings
from storefront.models.discount import DiscountType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

@dataclass(frozen=True)
class DiscountAmount:
    """
    amount_off reduces merchandise; shipping_discount waives shipping and is
    never folded into amount_off.
    """
    amount_off: Decimal = ZERO
    shipping_discount: Decimal = ZERO
    free_shipping: bool = False
    capped: bool = False

    @property
    def total(self) -> Decimal:
        return self.amount_off + self.shipping_discount

def calculate(discount, eligible_subtotal, shipping_fee=None) -> DiscountAmount:
    """Reduction the discount grants on the eligible subtotal"""
    eligible = max(_to_decimal(eligible_subtotal), Decimal("0"))
    value = _to_decimal(discount.discount_value)

    if discount.discount_type == DiscountType.FREE_SHIPPING.value:
        waiver = quantize_money(max(_to_decimal(shipping_fee), Decimal("0")))
        return DiscountAmount(shipping_discount=waiver, free_shipping=True)

    capped = False
    if discount.discount_type == DiscountType.PERCENTAGE.value:
        amount = eligible * value / Decimal("100")
        if discount.maximum_discount is not None:
            cap = _to_decimal(discount.maximum_discount)
            if amount > cap:
                amount = cap
                capped = True
    elif discount.discount_type == DiscountType.FIXED_AMOUNT.value:
        amount = min(value, eligible)
    else:
        amount = Decimal("0")

    amount = max(amount, Decimal("0"))
    return DiscountAmount(amount_off=quantize_money(amount), capped=capped)

def display_percentage(amount_off, base_price) -> int:
    """Whole-number "% off" badge derived from the final (capped) amount"""
    base = _to_decimal(base_price)
    if base <= 0:
        return 0
    ratio = _to_decimal(amount_off) / base * Decimal("100")
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def format_discount_display(discount_type: Optional[str], discount_value) -> str:
    """Short label shown next to an applied code"""
    if discount_type == DiscountType.PERCENTAGE.value:
        return f"{_to_decimal(discount_value).normalize():f}% OFF"
    if discount_type == DiscountType.FIXED_AMOUNT.value:
        return f"{settings.CURRENCY_SYMBOL}{_to_decimal(discount_value).normalize():f} OFF"
    if discount_type == DiscountType.FREE_SHIPPING.value:
        return "FREE SHIPPING"
    return ""

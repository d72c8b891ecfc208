"""
Conflict resolution between an entered code and auto-apply campaigns

Stacked discounts are each priced against the original subtotal and summed,
so the result does not depend on the order they are layered in.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from storefront.schemas.cart import CartSnapshot
from .customer_directory import CustomerContext
from .discount_calculator import DiscountAmount, calculate, quantize_money, ZERO
from .discount_eligibility import EligibilityResult, evaluate
from .discount_reasons import DiscountReason
from . import discount_scope

SOURCE_CODE = "code"
SOURCE_AUTO = "auto"

@dataclass(frozen=True)
class AppliedDiscount:
    discount: object
    amount: DiscountAmount
    source: str

@dataclass(frozen=True)
class DroppedDiscount:
    discount: object
    reason: DiscountReason

@dataclass
class DiscountResolution:
    applied: List[AppliedDiscount] = field(default_factory=list)
    dropped: List[DroppedDiscount] = field(default_factory=list)
    explicit_result: Optional[EligibilityResult] = None
    merchandise_discount: Decimal = ZERO
    shipping_discount: Decimal = ZERO

    @property
    def total_discount(self) -> Decimal:
        return self.merchandise_discount + self.shipping_discount

    @property
    def is_empty(self) -> bool:
        return not self.applied

def price(
    discount,
    cart: CartSnapshot,
    user: Optional[CustomerContext] = None,
    now: Optional[datetime] = None,
    shipping_fee=None,
):
    """Evaluate and, when eligible, compute the amount against the original cart"""
    result = evaluate(discount, cart, user, now)
    if not result.eligible:
        return result, None

    base = discount_scope.eligible_subtotal(discount, cart, set(result.matched_lines))
    return result, calculate(discount, base, shipping_fee)

def rank_key(candidate: AppliedDiscount):
    """Sort key: priority, then scope specificity, then larger amount"""
    discount = candidate.discount
    return (
        -(discount.priority or 0),
        -discount_scope.scope_specificity(discount_scope.scope_of(discount)),
        -candidate.amount.total,
        discount.code or "",
    )

def pick_best(candidates: Sequence[AppliedDiscount]) -> Optional[AppliedDiscount]:
    if not candidates:
        return None
    return min(candidates, key=rank_key)

def resolve(
    explicit,
    auto_candidates: Sequence,
    cart: CartSnapshot,
    user: Optional[CustomerContext] = None,
    now: Optional[datetime] = None,
    shipping_fee=None,
) -> DiscountResolution:
    """Select the discounts that actually apply to this cart"""
    resolution = DiscountResolution()

    primary = None
    if explicit is not None:
        result, amount = price(explicit, cart, user, now, shipping_fee)
        resolution.explicit_result = result
        if result.eligible:
            primary = AppliedDiscount(explicit, amount, SOURCE_CODE)

    explicit_id = getattr(explicit, "id", None)
    eligible_auto = []
    for discount in auto_candidates:
        if not discount.auto_apply:
            continue
        if explicit_id is not None and discount.id == explicit_id:
            continue
        result, amount = price(discount, cart, user, now, shipping_fee)
        if result.eligible:
            eligible_auto.append(AppliedDiscount(discount, amount, SOURCE_AUTO))

    if primary is None:
        primary = pick_best(eligible_auto)
        if primary is None:
            return resolution
        eligible_auto = [c for c in eligible_auto if c is not primary]

    resolution.applied.append(primary)
    for candidate in sorted(eligible_auto, key=rank_key):
        if primary.discount.stackable and candidate.discount.stackable:
            resolution.applied.append(candidate)
        else:
            resolution.dropped.append(DroppedDiscount(candidate.discount, DiscountReason.NOT_STACKABLE))

    merchandise = sum((a.amount.amount_off for a in resolution.applied), Decimal("0"))
    resolution.merchandise_discount = quantize_money(min(merchandise, max(cart.subtotal, Decimal("0"))))
    resolution.shipping_discount = max(
        (a.amount.shipping_discount for a in resolution.applied),
        default=ZERO
    )
    return resolution

"""
Eligibility evaluation for a single discount against a cart and shopper

Checks run in a fixed order and the first failure is the reason surfaced
to the shopper. Evaluation is advisory: usage caps are enforced again
atomically when the order is confirmed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Optional

from storefront.models.base import utcnow
from storefront.models.discount import DiscountScope
from storefront.schemas.cart import CartSnapshot
from .customer_directory import CustomerContext, GUEST
from .discount_reasons import DiscountReason
from . import discount_scope

SCOPE_MISMATCH_REASONS = {
    DiscountScope.VARIANT.value: DiscountReason.NOT_APPLICABLE_VARIANTS,
    DiscountScope.CATEGORY.value: DiscountReason.NOT_APPLICABLE_CATEGORIES,
}

@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: DiscountReason
    params: Dict[str, Any] = field(default_factory=dict)
    matched_lines: FrozenSet[int] = frozenset()

def _reject(reason: DiscountReason, **params) -> EligibilityResult:
    return EligibilityResult(eligible=False, reason=reason, params=params)

def requires_login(discount) -> bool:
    """Discounts whose rules can only be checked against a known user"""
    return (
        discount.applicable_to == DiscountScope.USER.value
        or discount.user_usage_limit is not None
        or bool(discount.first_purchase_only)
        or bool(discount.customer_segments)
    )

def evaluate(
    discount,
    cart: CartSnapshot,
    user: Optional[CustomerContext] = None,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    """Decide whether the discount may be applied to this cart"""
    user = user or GUEST
    now = now or utcnow()

    if not discount.is_active:
        return _reject(DiscountReason.NOT_ACTIVE)

    if not discount.is_within_window(now):
        return _reject(DiscountReason.EXPIRED)

    if discount.usage_limit is not None and (discount.usage_count or 0) >= discount.usage_limit:
        return _reject(DiscountReason.USAGE_LIMIT_REACHED)

    if user.is_guest and requires_login(discount):
        return _reject(DiscountReason.LOGIN_REQUIRED)

    if discount.user_usage_limit is not None:
        used = user.usage_count(discount.id)
        if used >= discount.user_usage_limit:
            return _reject(DiscountReason.ALREADY_USED, used=used, limit=discount.user_usage_limit)

    if discount.first_purchase_only and user.completed_orders > 0:
        return _reject(DiscountReason.FIRST_TIME_ONLY)

    if discount.minimum_purchase is not None and Decimal(discount.minimum_purchase) > cart.subtotal:
        return _reject(DiscountReason.MINIMUM_PURCHASE, amount=Decimal(discount.minimum_purchase))

    if discount.minimum_items is not None and discount.minimum_items > cart.line_count:
        return _reject(
            DiscountReason.MINIMUM_ITEMS,
            required=discount.minimum_items,
            current=cart.line_count
        )

    matched = discount_scope.match(discount, cart)
    if not matched:
        scope = discount_scope.scope_of(discount)
        return _reject(SCOPE_MISMATCH_REASONS.get(scope, DiscountReason.NOT_APPLICABLE_PRODUCTS))

    if discount.customer_segments:
        wanted = {str(segment) for segment in discount.customer_segments}
        if not wanted & set(user.segments):
            return _reject(DiscountReason.NOT_APPLICABLE_SEGMENT)

    if discount.applicable_to == DiscountScope.USER.value and discount.applicable_ids:
        # user scope ids name the targeted users or segment tags
        targets = {str(value) for value in discount.applicable_ids}
        if user.user_id not in targets and not targets & set(user.segments):
            return _reject(DiscountReason.NOT_APPLICABLE_SEGMENT)

    return EligibilityResult(
        eligible=True,
        reason=DiscountReason.DISCOUNT_APPLIED_SUCCESS,
        matched_lines=frozenset(matched)
    )

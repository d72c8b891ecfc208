"""
Scope resolution: which cart lines a discount is allowed to reduce
"""

from typing import Iterable, Optional, Set
from decimal import Decimal

from storefront.models.discount import DiscountScope
from storefront.schemas.cart import CartItem, CartSnapshot

# Higher is more specific; used to break priority ties
SCOPE_SPECIFICITY = {
    DiscountScope.VARIANT.value: 3,
    DiscountScope.PRODUCT.value: 2,
    DiscountScope.CATEGORY.value: 1,
    DiscountScope.ALL.value: 0,
    DiscountScope.USER.value: 0,
}

def _id_set(values: Optional[Iterable]) -> Set[str]:
    return {str(value) for value in (values or []) if value is not None}

def scope_of(discount) -> str:
    return discount.applicable_to or DiscountScope.ALL.value

def scope_specificity(scope: str) -> int:
    return SCOPE_SPECIFICITY.get(scope, 0)

def _included(scope: str, item: CartItem, applicable_ids: Set[str]) -> bool:
    if scope == DiscountScope.VARIANT.value:
        return item.variant_id is not None and item.variant_id in applicable_ids
    if scope == DiscountScope.PRODUCT.value:
        return item.product_id in applicable_ids
    if scope == DiscountScope.CATEGORY.value:
        return item.category_id is not None and item.category_id in applicable_ids
    # all / user: product filtering does not apply
    return True

def _excluded(item: CartItem, excluded_products: Set[str], excluded_categories: Set[str]) -> bool:
    if item.product_id in excluded_products:
        return True
    return item.category_id is not None and item.category_id in excluded_categories

def match(discount, cart: CartSnapshot) -> Set[int]:
    """
    Indexes of the cart lines the discount applies to.

    Inclusion is decided by the scope, then excluded products and
    categories are removed for every scope type. An empty set means the
    discount does not apply to this cart.
    """
    scope = scope_of(discount)
    applicable_ids = _id_set(discount.applicable_ids)
    excluded_products = _id_set(discount.excluded_products)
    excluded_categories = _id_set(discount.excluded_categories)

    return {
        index
        for index, item in enumerate(cart.items)
        if _included(scope, item, applicable_ids)
        and not _excluded(item, excluded_products, excluded_categories)
    }

def eligible_subtotal(discount, cart: CartSnapshot, matched: Set[int]) -> Decimal:
    """
    Base amount the discount is computed against.

    Cart-wide scopes with every line matched use the full cart subtotal;
    otherwise only the matched lines count.
    """
    if scope_of(discount) in (DiscountScope.ALL.value, DiscountScope.USER.value) \
            and len(matched) == cart.line_count:
        return cart.subtotal

    return sum((cart.items[index].line_total for index in matched), Decimal("0"))

def normalize_scope(applicable_to: Optional[str], applicable_ids: Optional[Iterable]):
    """
    Canonical (scope, ids) pair for storage: 'all' carries no ids, and a
    narrower scope without ids falls back to 'all'.
    """
    scope = applicable_to or DiscountScope.ALL.value
    ids = [str(value) for value in (applicable_ids or []) if value is not None]

    if scope == DiscountScope.ALL.value or not ids:
        return DiscountScope.ALL.value, None
    return scope, ids

def item_matches(discount, product_id: str, variant_id: Optional[str], category_id: Optional[str]) -> bool:
    """Scope test for a single catalog item outside of any cart"""
    item = CartItem(
        product_id=product_id,
        variant_id=variant_id,
        category_id=category_id,
        quantity=1,
        unit_price=Decimal("0"),
    )
    return bool(match(discount, CartSnapshot(items=[item])))

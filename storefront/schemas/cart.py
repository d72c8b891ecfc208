"""
Cart snapshot schemas

The checkout flow owns the cart; the discount engine only reads a snapshot
of its lines.
"""

from pydantic import BaseModel, Field, AliasChoices, model_validator
from typing import Optional, List
from decimal import Decimal

class CartItem(BaseModel):
    """One cart line as supplied by the catalog"""
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    variant_id: Optional[str] = Field(None, validation_alias=AliasChoices("variant_id", "variantId"))
    category_id: Optional[str] = Field(None, validation_alias=AliasChoices("category_id", "categoryId"))
    quantity: int = Field(1, gt=0)
    unit_price: Decimal = Field(..., ge=0, validation_alias=AliasChoices("unit_price", "price"))
    line_total: Optional[Decimal] = Field(None, ge=0, validation_alias=AliasChoices("line_total", "total"))

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def fill_line_total(self):
        if self.line_total is None:
            self.line_total = self.unit_price * self.quantity
        return self

class CartSnapshot(BaseModel):
    """
    Read-only view of a cart at evaluation time

    cart_total, when given, is the caller's authoritative subtotal; otherwise
    the subtotal is the sum of line totals.
    """
    items: List[CartItem] = Field(default_factory=list)
    cart_total: Optional[Decimal] = None

    @property
    def lines_total(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    @property
    def subtotal(self) -> Decimal:
        if self.cart_total is not None:
            return Decimal(self.cart_total)
        return self.lines_total

    @property
    def line_count(self) -> int:
        return len(self.items)

    @classmethod
    def build(cls, cart_total, cart_items) -> "CartSnapshot":
        """Snapshot from a raw total and a list of CartItem or dict lines"""
        items = [
            item if isinstance(item, CartItem) else CartItem.model_validate(item)
            for item in (cart_items or [])
        ]
        total = Decimal(str(cart_total)) if cart_total is not None else None
        return cls(items=items, cart_total=total)

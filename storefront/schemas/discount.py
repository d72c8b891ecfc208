"""
Discount schemas for request/response validation
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
import uuid

from storefront.core.config import settings
from storefront.models.discount import DiscountType, DiscountScope
from .cart import CartItem

class DiscountRules(BaseModel):
    """Rule fields shared by create and update"""
    description: Optional[str] = None
    maximum_discount: Optional[Decimal] = Field(None, gt=0)
    minimum_purchase: Optional[Decimal] = Field(None, ge=0)
    minimum_items: Optional[int] = Field(None, ge=1)
    usage_limit: Optional[int] = Field(None, gt=0)
    valid_until: Optional[datetime] = None
    applicable_ids: Optional[List[str]] = None
    excluded_products: Optional[List[str]] = None
    excluded_categories: Optional[List[str]] = None
    customer_segments: Optional[List[str]] = None
    campaign_name: Optional[str] = Field(None, max_length=100)
    discount_category: Optional[str] = Field(None, max_length=50)

    @field_validator("code", check_fields=False)
    @classmethod
    def normalize_code(cls, v):
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) < 3:
            raise ValueError("Discount code must be at least 3 characters")
        return v

class DiscountCreate(DiscountRules):
    """Schema for creating a discount code"""
    code: str = Field(..., max_length=50)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    user_usage_limit: Optional[int] = Field(default_factory=lambda: settings.DEFAULT_USER_USAGE_LIMIT, gt=0)
    valid_from: Optional[datetime] = None
    is_active: bool = True
    applicable_to: DiscountScope = DiscountScope.ALL
    first_purchase_only: bool = False
    priority: int = 0
    stackable: bool = False
    auto_apply: bool = False

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discounts cannot exceed 100")
        return self

class DiscountUpdate(DiscountRules):
    """Schema for updating a discount code; only supplied fields change"""
    code: Optional[str] = Field(None, max_length=50)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    user_usage_limit: Optional[int] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_to: Optional[DiscountScope] = None
    first_purchase_only: Optional[bool] = None
    priority: Optional[int] = None
    stackable: Optional[bool] = None
    auto_apply: Optional[bool] = None

class DiscountResponse(BaseModel):
    """Schema for discount response"""
    id: uuid.UUID
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    maximum_discount: Optional[Decimal] = None
    minimum_purchase: Optional[Decimal] = None
    minimum_items: Optional[int] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    user_usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool
    applicable_to: str
    applicable_ids: Optional[List[str]] = None
    excluded_products: Optional[List[str]] = None
    excluded_categories: Optional[List[str]] = None
    first_purchase_only: bool = False
    priority: int = 0
    stackable: bool = False
    auto_apply: bool = False
    customer_segments: Optional[List[str]] = None
    campaign_name: Optional[str] = None
    discount_category: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class DiscountStatistics(BaseModel):
    total_uses: int = 0
    total_saved: Decimal = Decimal("0.00")
    unique_users: int = 0
    average_order_value: Decimal = Decimal("0.00")
    last_used: Optional[datetime] = None

class DiscountDetailResponse(BaseModel):
    discount: DiscountResponse
    statistics: DiscountStatistics

class DiscountListResponse(BaseModel):
    discounts: List[DiscountResponse]

class DashboardStats(BaseModel):
    total: int
    active: int
    expired: int
    total_usage: int

class CodeAvailabilityResponse(BaseModel):
    code: str
    available: bool

class GenerateCodeRequest(BaseModel):
    prefix: Optional[str] = Field(None, max_length=20)
    length: Optional[int] = Field(None, ge=4, le=50)

class GeneratedCodeResponse(BaseModel):
    code: str

# Checkout-facing schemas

class DiscountValidateRequest(BaseModel):
    """Shopper enters a code during checkout review"""
    code: Optional[str] = None
    subtotal: Optional[Decimal] = Field(None, ge=0)
    items: List[CartItem] = Field(default_factory=list)
    shipping_fee: Optional[Decimal] = Field(None, ge=0)

class DiscountValidationResult(BaseModel):
    """Pre-flight result plus live amount preview"""
    is_valid: bool
    reason: str
    params: Dict[str, Any] = Field(default_factory=dict)
    discount_id: Optional[uuid.UUID] = None
    code: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None
    maximum_discount: Optional[Decimal] = None
    amount_off: Decimal = Decimal("0.00")
    shipping_discount: Decimal = Decimal("0.00")
    stackable: bool = False
    display: str = ""
    validated_at: Optional[datetime] = None

class AutoApplyRequest(BaseModel):
    subtotal: Optional[Decimal] = Field(None, ge=0)
    items: List[CartItem] = Field(default_factory=list)
    shipping_fee: Optional[Decimal] = Field(None, ge=0)

class AutoApplyDiscount(BaseModel):
    discount_id: uuid.UUID
    code: str
    discount_type: str
    discount_value: Decimal
    amount_off: Decimal
    shipping_discount: Decimal = Decimal("0.00")
    display: str
    stackable: bool = False
    is_auto_apply: bool = True

class AutoApplyResponse(BaseModel):
    has_auto_apply: bool
    discount: Optional[AutoApplyDiscount] = None

class FirstOrderDiscountResponse(BaseModel):
    has_first_order_discount: bool
    message: Optional[str] = None
    discount: Optional[AutoApplyDiscount] = None

class AppliedDiscountResponse(BaseModel):
    discount_id: uuid.UUID
    code: str
    discount_type: str
    source: str
    amount_off: Decimal
    shipping_discount: Decimal = Decimal("0.00")
    stackable: bool = False

class DroppedDiscountResponse(BaseModel):
    discount_id: uuid.UUID
    code: str
    reason: str
    cause: Optional[str] = None

class DiscountResolutionResponse(BaseModel):
    applied: List[AppliedDiscountResponse] = Field(default_factory=list)
    dropped: List[DroppedDiscountResponse] = Field(default_factory=list)
    code_reason: Optional[str] = None
    merchandise_discount: Decimal = Decimal("0.00")
    shipping_discount: Decimal = Decimal("0.00")
    total_discount: Decimal = Decimal("0.00")

class PricePreviewRequest(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    category_id: Optional[str] = None
    base_price: Decimal = Field(..., ge=0)

class PricePreviewResponse(BaseModel):
    has_discount: bool
    discount_percentage: int = 0
    discounted_price: Decimal
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None
    discount_code: Optional[str] = None

# Order confirmation schemas

class RecordUsageRequest(BaseModel):
    discount_id: uuid.UUID
    amount_saved: Decimal = Field(..., ge=0)
    idempotency_key: Optional[str] = Field(None, max_length=200)

class DiscountUsageResponse(BaseModel):
    id: uuid.UUID
    discount_id: uuid.UUID
    user_id: Optional[str] = None
    order_id: str
    amount_saved: Decimal
    created_at: datetime

    class Config:
        from_attributes = True

class FinalizeDiscountRequest(BaseModel):
    code: Optional[str] = None
    subtotal: Optional[Decimal] = Field(None, ge=0)
    items: List[CartItem] = Field(default_factory=list)
    shipping_fee: Decimal = Field(Decimal("0.00"), ge=0)

class FinalizeDiscountResponse(BaseModel):
    """Outcome of redeeming discounts for a confirmed order"""
    order_id: str
    applied: List[AppliedDiscountResponse] = Field(default_factory=list)
    dropped: List[DroppedDiscountResponse] = Field(default_factory=list)
    code_reason: Optional[str] = None
    total_discount: Decimal = Decimal("0.00")
    order_total: Decimal

"""
Discount code and redemption models
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, Boolean, ForeignKey, Index,
    CheckConstraint, UniqueConstraint, Text, DateTime, JSON, Uuid
)
import enum

from .base import Base, TimestampedModel, UUIDModel, utcnow, as_utc

class DiscountType(str, enum.Enum):
    """How discount_value is interpreted"""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"

class DiscountScope(str, enum.Enum):
    """Which cart lines a discount may reduce"""
    ALL = "all"
    PRODUCT = "product"
    VARIANT = "variant"
    CATEGORY = "category"
    USER = "user"

class DiscountCode(Base, UUIDModel, TimestampedModel):
    """Promotional rule redeemable by code or applied automatically"""

    __tablename__ = "discount_codes"

    code = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Discount details
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)
    maximum_discount = Column(Numeric(10, 2), nullable=True)

    # Conditions
    minimum_purchase = Column(Numeric(10, 2), nullable=True)
    minimum_items = Column(Integer, nullable=True)
    first_purchase_only = Column(Boolean, nullable=False, default=False)
    customer_segments = Column(JSON, nullable=True)

    # Usage limits; usage_count is only moved by the atomic increment
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    user_usage_limit = Column(Integer, nullable=True)

    # Validity
    valid_from = Column(DateTime(timezone=True), nullable=True, default=utcnow)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Applicability
    applicable_to = Column(String(20), nullable=False, default=DiscountScope.ALL.value)
    applicable_ids = Column(JSON, nullable=True)
    excluded_products = Column(JSON, nullable=True)
    excluded_categories = Column(JSON, nullable=True)

    # Conflict resolution
    priority = Column(Integer, nullable=False, default=0)
    stackable = Column(Boolean, nullable=False, default=False)
    auto_apply = Column(Boolean, nullable=False, default=False)

    # Admin metadata
    campaign_name = Column(String(100), nullable=True)
    discount_category = Column(String(50), nullable=True)
    created_by = Column(String(64), nullable=True)

    # Constraints
    __table_args__ = (
        CheckConstraint("discount_value > 0", name="check_positive_discount"),
        CheckConstraint("usage_limit IS NULL OR usage_limit > 0", name="check_positive_usage_limit"),
        CheckConstraint("usage_count >= 0", name="check_non_negative_usage_count"),
        Index("idx_discount_codes_active_valid", "is_active", "valid_from", "valid_until"),
        Index("idx_discount_codes_auto_apply", "auto_apply", "is_active"),
    )

    def is_within_window(self, now) -> bool:
        """valid_from is inclusive, valid_until exclusive; null bounds are open"""
        if self.valid_from is not None and now < as_utc(self.valid_from):
            return False
        if self.valid_until is not None and now >= as_utc(self.valid_until):
            return False
        return True

    def __repr__(self):
        return f"<DiscountCode(code={self.code!r}, type={self.discount_type!r})>"

class DiscountUsage(Base, UUIDModel):
    """Append-only audit row for one successful redemption"""

    __tablename__ = "discount_usages"

    discount_id = Column(Uuid(as_uuid=True), ForeignKey("discount_codes.id", ondelete="RESTRICT"), nullable=False)
    user_id = Column(String(64), nullable=True)
    order_id = Column(String(64), nullable=False)
    idempotency_key = Column(String(200), nullable=False, unique=True)

    amount_saved = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # Indexes
    __table_args__ = (
        UniqueConstraint("discount_id", "order_id", name="uq_discount_usages_discount_order"),
        Index("idx_discount_usages_discount_user", "discount_id", "user_id"),
        Index("idx_discount_usages_order", "order_id"),
    )

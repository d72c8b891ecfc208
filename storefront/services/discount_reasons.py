"""Stable reason keys returned to checkout callers for localization"""

import enum

class DiscountReason(str, enum.Enum):
    INVALID_CODE = "invalidCode"
    NOT_ACTIVE = "notActive"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usageLimitReached"
    ALREADY_USED = "alreadyUsed"
    LOGIN_REQUIRED = "loginRequired"
    FIRST_TIME_ONLY = "firstTimeOnly"
    MINIMUM_PURCHASE = "minimumPurchase"
    MINIMUM_ITEMS = "minimumItems"
    NOT_APPLICABLE_PRODUCTS = "notApplicableProducts"
    NOT_APPLICABLE_VARIANTS = "notApplicableVariants"
    NOT_APPLICABLE_CATEGORIES = "notApplicableCategories"
    NOT_APPLICABLE_SEGMENT = "notApplicableSegment"
    DISCOUNT_APPLIED_CAPPED = "discountAppliedCapped"
    DISCOUNT_APPLIED_SUCCESS = "discountAppliedSuccess"
    ENTER_DISCOUNT_CODE = "enterDiscountCode"
    FAILED_TO_VALIDATE = "failedToValidate"
    NOT_STACKABLE = "notStackable"
    DISCOUNT_REMOVED = "discountRemoved"

    def __str__(self) -> str:
        return self.value

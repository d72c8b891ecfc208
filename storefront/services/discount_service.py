"""
Discount service: checkout pre-flight, auto-apply, redemption and admin
management of discount codes
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging
import uuid

from storefront.core.config import settings
from storefront.core.exceptions import (
    NotFoundException,
    BadRequestException,
    ConflictException,
    ForbiddenException,
    DuplicateResourceException,
    DiscountLimitExceeded,
    DiscountBookkeepingError,
)
from storefront.models import DiscountCode, DiscountUsage, DiscountType
from storefront.models.base import utcnow, as_utc
from storefront.schemas.cart import CartSnapshot
from storefront.schemas.discount import (
    DiscountCreate,
    DiscountUpdate,
    DiscountValidationResult,
    AutoApplyDiscount,
    FirstOrderDiscountResponse,
    PricePreviewResponse,
    AppliedDiscountResponse,
    DroppedDiscountResponse,
    DiscountResolutionResponse,
    FinalizeDiscountResponse,
)
from storefront.utils.helpers import generate_discount_code
from .customer_directory import CustomerDirectory
from .discount_calculator import (
    calculate,
    display_percentage,
    format_discount_display,
    quantize_money,
    ZERO,
)
from .discount_conflicts import (
    AppliedDiscount,
    DiscountResolution,
    SOURCE_AUTO,
    pick_best,
    price,
    resolve,
)
from .discount_eligibility import EligibilityResult
from .discount_reasons import DiscountReason
from .discount_repository import DiscountRepository, normalize_code
from . import discount_scope

logger = logging.getLogger(__name__)

GENERATE_CODE_ATTEMPTS = 10

def _applied_response(applied: AppliedDiscount) -> AppliedDiscountResponse:
    discount = applied.discount
    return AppliedDiscountResponse(
        discount_id=discount.id,
        code=discount.code,
        discount_type=discount.discount_type,
        source=applied.source,
        amount_off=applied.amount.amount_off,
        shipping_discount=applied.amount.shipping_discount,
        stackable=bool(discount.stackable),
    )

def resolution_response(resolution: DiscountResolution) -> DiscountResolutionResponse:
    """Serializable view of a conflict resolution"""
    explicit = resolution.explicit_result
    return DiscountResolutionResponse(
        applied=[_applied_response(a) for a in resolution.applied],
        dropped=[
            DroppedDiscountResponse(
                discount_id=d.discount.id,
                code=d.discount.code,
                reason=d.reason.value
            )
            for d in resolution.dropped
        ],
        code_reason=explicit.reason.value if explicit is not None else None,
        merchandise_discount=resolution.merchandise_discount,
        shipping_discount=resolution.shipping_discount,
        total_discount=resolution.total_discount,
    )

class DiscountService:
    """
    Service for discount operations
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repository = DiscountRepository(db)
        self.customers = CustomerDirectory(db)

    # Checkout

    async def validate(
        self,
        code: Optional[str],
        cart_total,
        cart_items,
        user_id: Optional[str] = None,
        shipping_fee=None,
        now: Optional[datetime] = None,
    ) -> DiscountValidationResult:
        """
        Pre-flight check of a code the shopper entered.

        Never raises for business outcomes: every failure is a reason key.
        The result is advisory; limits are enforced again on redemption.
        """
        now = now or utcnow()

        if not code or not code.strip():
            return DiscountValidationResult(
                is_valid=False,
                reason=DiscountReason.ENTER_DISCOUNT_CODE.value,
                validated_at=now
            )

        code = normalize_code(code)

        try:
            cart = CartSnapshot.build(cart_total, cart_items)
        except (ValueError, ArithmeticError) as e:
            logger.warning(f"Rejected malformed cart while validating {code}: {e}")
            return DiscountValidationResult(
                is_valid=False,
                reason=DiscountReason.FAILED_TO_VALIDATE.value,
                code=code,
                validated_at=now
            )

        try:
            discount = await self.repository.get_by_code(code)
            if discount is None:
                return DiscountValidationResult(
                    is_valid=False,
                    reason=DiscountReason.INVALID_CODE.value,
                    code=code,
                    validated_at=now
                )
            user = await self.customers.load(user_id, [discount.id])
        except SQLAlchemyError:
            logger.exception(f"Error validating discount code {code}")
            return DiscountValidationResult(
                is_valid=False,
                reason=DiscountReason.FAILED_TO_VALIDATE.value,
                code=code,
                validated_at=now
            )

        result, amount = price(discount, cart, user, now, shipping_fee)
        if not result.eligible:
            return DiscountValidationResult(
                is_valid=False,
                reason=result.reason.value,
                params=result.params,
                code=discount.code,
                validated_at=now
            )

        reason = DiscountReason.DISCOUNT_APPLIED_SUCCESS
        params: Dict[str, Any] = {}
        if amount.capped:
            reason = DiscountReason.DISCOUNT_APPLIED_CAPPED
            params = {
                "percentage": Decimal(discount.discount_value),
                "max": Decimal(discount.maximum_discount),
            }

        return DiscountValidationResult(
            is_valid=True,
            reason=reason.value,
            params=params,
            discount_id=discount.id,
            code=discount.code,
            discount_type=discount.discount_type,
            discount_value=discount.discount_value,
            maximum_discount=discount.maximum_discount,
            amount_off=amount.amount_off,
            shipping_discount=amount.shipping_discount,
            stackable=bool(discount.stackable),
            display=format_discount_display(discount.discount_type, discount.discount_value),
            validated_at=now,
        )

    @staticmethod
    def is_fresh(result: DiscountValidationResult, now: Optional[datetime] = None) -> bool:
        """Whether a pre-flight result is recent enough to show without re-running"""
        if result.validated_at is None:
            return False
        now = now or utcnow()
        ttl = timedelta(seconds=settings.DISCOUNT_PREFLIGHT_TTL_SECONDS)
        return now - as_utc(result.validated_at) <= ttl

    async def resolve_discounts(
        self,
        code: Optional[str],
        cart_total,
        cart_items,
        user_id: Optional[str] = None,
        shipping_fee=None,
        now: Optional[datetime] = None,
    ) -> DiscountResolution:
        """Entered code plus auto-apply campaigns, resolved to the applied set"""
        cart = CartSnapshot.build(cart_total, cart_items)

        explicit = None
        if code and code.strip():
            explicit = await self.repository.get_by_code(code)

        candidates = await self.repository.list_active(auto_apply_only=True)
        discount_ids = [d.id for d in candidates]
        if explicit is not None:
            discount_ids.append(explicit.id)

        user = await self.customers.load(user_id, discount_ids)
        resolution = resolve(explicit, candidates, cart, user, now, shipping_fee)

        if code and code.strip() and explicit is None:
            # Unknown code: report it the same way validate does
            resolution.explicit_result = EligibilityResult(
                eligible=False,
                reason=DiscountReason.INVALID_CODE
            )
        return resolution

    async def get_auto_apply_discounts(
        self,
        user_id: Optional[str],
        cart_total,
        cart_items,
        shipping_fee=None,
        now: Optional[datetime] = None,
    ) -> Optional[AutoApplyDiscount]:
        """Best automatic discount for the cart, or None"""
        try:
            resolution = await self.resolve_discounts(
                None, cart_total, cart_items, user_id, shipping_fee, now
            )
        except SQLAlchemyError:
            logger.exception("Error loading auto-apply discounts")
            return None

        if resolution.is_empty:
            return None

        best = resolution.applied[0]
        discount = best.discount
        return AutoApplyDiscount(
            discount_id=discount.id,
            code=discount.code,
            discount_type=discount.discount_type,
            discount_value=discount.discount_value,
            amount_off=best.amount.amount_off,
            shipping_discount=best.amount.shipping_discount,
            display=format_discount_display(discount.discount_type, discount.discount_value),
            stackable=bool(discount.stackable),
        )

    async def get_first_order_discount(
        self,
        user_id: Optional[str],
        cart_total=None,
        now: Optional[datetime] = None,
    ) -> FirstOrderDiscountResponse:
        """Welcome discount offered to signed-in shoppers with no completed order"""
        if not user_id:
            return FirstOrderDiscountResponse(
                has_first_order_discount=False,
                message="User not authenticated"
            )

        if await self.customers.count_completed_orders(str(user_id)) > 0:
            return FirstOrderDiscountResponse(
                has_first_order_discount=False,
                message="User has already placed orders"
            )

        now = now or utcnow()
        discount = await self.repository.get_by_code(settings.FIRST_ORDER_DISCOUNT_CODE)
        if (
            discount is None
            or not discount.is_active
            or not discount.first_purchase_only
            or not discount.is_within_window(now)
        ):
            return FirstOrderDiscountResponse(
                has_first_order_discount=False,
                message="First-order discount not available"
            )

        amount = calculate(discount, cart_total or ZERO)
        label = format_discount_display(discount.discount_type, discount.discount_value)
        return FirstOrderDiscountResponse(
            has_first_order_discount=True,
            discount=AutoApplyDiscount(
                discount_id=discount.id,
                code=discount.code,
                discount_type=discount.discount_type,
                discount_value=discount.discount_value,
                amount_off=amount.amount_off,
                display=f"{label} - Welcome discount!",
                stackable=bool(discount.stackable),
                is_auto_apply=False,
            )
        )

    async def preview_item_price(
        self,
        product_id: str,
        variant_id: Optional[str],
        category_id: Optional[str],
        base_price,
        now: Optional[datetime] = None,
    ) -> PricePreviewResponse:
        """Strike-through price for a catalog item under its best active discount"""
        now = now or utcnow()
        base = quantize_money(base_price)

        candidates = []
        for discount in await self.repository.list_active():
            if discount.discount_type == DiscountType.FREE_SHIPPING.value:
                continue
            if not discount.is_within_window(now):
                continue
            if discount.usage_limit is not None and (discount.usage_count or 0) >= discount.usage_limit:
                continue
            if not discount_scope.item_matches(discount, product_id, variant_id, category_id):
                continue
            candidates.append(AppliedDiscount(discount, calculate(discount, base), SOURCE_AUTO))

        best = pick_best(candidates)
        if best is None:
            return PricePreviewResponse(has_discount=False, discounted_price=base)

        discount = best.discount
        return PricePreviewResponse(
            has_discount=True,
            discount_percentage=display_percentage(best.amount.amount_off, base),
            discounted_price=quantize_money(base - best.amount.amount_off),
            discount_type=discount.discount_type,
            discount_value=discount.discount_value,
            discount_code=discount.code,
        )

    # Order confirmation

    async def ensure_confirmed_order(self, order_id: str, user_id: Optional[str]) -> None:
        """The order must exist, be paid and belong to the caller"""
        order = await self.customers.get_order(str(order_id))
        if order is None:
            raise NotFoundException("Order not found", error_code="ORDER_NOT_FOUND")

        if order.payment_status != settings.COMPLETED_PAYMENT_STATUS:
            logger.warning(f"Refused discount redemption for unpaid order {order_id}")
            raise ConflictException("Order payment is not confirmed", error_code="ORDER_NOT_PAID")

        owner = str(order.user_id) if order.user_id is not None else None
        caller = str(user_id) if user_id else None
        if owner != caller:
            logger.warning(f"User {caller} tried to redeem a discount on order {order_id} of {owner}")
            raise ForbiddenException("Order belongs to another customer", error_code="ORDER_NOT_OWNED")

    async def record_usage(
        self,
        discount_id: uuid.UUID,
        user_id: Optional[str],
        order_id: str,
        amount_saved,
        idempotency_key: Optional[str] = None,
    ) -> DiscountUsage:
        """
        Redeem a discount for a confirmed order.

        Raises NotFoundException, ConflictException (ORDER_NOT_PAID) or
        ForbiddenException when the order is missing, unpaid or someone
        else's; DiscountLimitExceeded when a cap was reached between
        pre-flight and confirmation; DiscountBookkeepingError when the
        store fails.
        """
        try:
            await self.ensure_confirmed_order(order_id, user_id)
            return await self.repository.record_usage(
                discount_id,
                str(user_id) if user_id else None,
                str(order_id),
                quantize_money(amount_saved),
                idempotency_key,
            )
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception(f"Failed to record discount {discount_id} for order {order_id}")
            raise DiscountBookkeepingError()

    async def finalize_order(
        self,
        code: Optional[str],
        cart_total,
        cart_items,
        user_id: Optional[str],
        order_id: str,
        shipping_fee=None,
        now: Optional[datetime] = None,
    ) -> FinalizeDiscountResponse:
        """
        Re-run pre-flight and redeem every applied discount for the order.

        A discount that lost a limit race is dropped with discountRemoved and
        the order total is recomputed without it; the order still proceeds.

        Each redemption commits on its own. When the store fails part way,
        DiscountBookkeepingError is raised and the redemptions recorded so
        far stay recorded; calling again for the same order is safe because
        redemptions are keyed by order and discount, so the earlier ones are
        replayed and only the missing ones are counted.
        """
        cart = CartSnapshot.build(cart_total, cart_items)
        shipping = quantize_money(shipping_fee or ZERO)

        try:
            await self.ensure_confirmed_order(order_id, user_id)
            resolution = await self.resolve_discounts(
                code, cart_total, cart_items, user_id, shipping, now
            )
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception(f"Failed to resolve discounts for order {order_id}")
            raise DiscountBookkeepingError("Failed to evaluate discounts for order")

        # A rollback expires loaded instances, so work from plain values
        planned = [_applied_response(a) for a in resolution.applied]
        summary = resolution_response(resolution)
        dropped: List[DroppedDiscountResponse] = list(summary.dropped)

        applied: List[AppliedDiscountResponse] = []
        for entry in planned:
            try:
                await self.record_usage(
                    entry.discount_id,
                    user_id,
                    order_id,
                    entry.amount_off + entry.shipping_discount,
                )
            except DiscountLimitExceeded as e:
                logger.warning(
                    f"Dropped discount {entry.code} from order {order_id}: {e.reason}"
                )
                dropped.append(
                    DroppedDiscountResponse(
                        discount_id=entry.discount_id,
                        code=entry.code,
                        reason=DiscountReason.DISCOUNT_REMOVED.value,
                        cause=e.reason
                    )
                )
                continue
            applied.append(entry)

        merchandise = quantize_money(
            min(sum((a.amount_off for a in applied), ZERO), max(cart.subtotal, ZERO))
        )
        shipping_waiver = min(max((a.shipping_discount for a in applied), default=ZERO), shipping)
        total_discount = merchandise + shipping_waiver

        return FinalizeDiscountResponse(
            order_id=str(order_id),
            applied=applied,
            dropped=dropped,
            code_reason=summary.code_reason,
            total_discount=total_discount,
            order_total=quantize_money(cart.subtotal + shipping - total_discount),
        )

    # Admin

    async def get_discounts(
        self,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        campaign: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[DiscountCode]:
        return await self.repository.list_discounts(is_active, category, campaign, search)

    async def _get_or_404(self, discount_id: uuid.UUID) -> DiscountCode:
        discount = await self.repository.get_by_id(discount_id)
        if not discount:
            raise NotFoundException("Discount not found")
        return discount

    async def get_discount(self, discount_id: uuid.UUID) -> Dict[str, Any]:
        discount = await self._get_or_404(discount_id)
        statistics = await self.repository.get_statistics(discount.id)
        return {"discount": discount, "statistics": statistics}

    async def get_discount_statistics(self, discount_id: uuid.UUID) -> Dict[str, Any]:
        discount = await self._get_or_404(discount_id)
        return await self.repository.get_statistics(discount.id)

    async def create_discount(
        self,
        data: DiscountCreate,
        created_by: Optional[str] = None
    ) -> DiscountCode:
        """Create a discount code; the code is stored uppercase and must be unique"""
        if await self.repository.code_exists(data.code):
            raise DuplicateResourceException("Discount", "code", data.code)

        payload = data.model_dump()
        payload["discount_type"] = data.discount_type.value
        payload["applicable_to"], payload["applicable_ids"] = discount_scope.normalize_scope(
            data.applicable_to.value, data.applicable_ids
        )
        if payload.get("valid_from") is None:
            payload.pop("valid_from", None)
        payload["created_by"] = created_by

        discount = await self.repository.create(payload)
        logger.info(f"Discount {discount.code} created by {created_by}")
        return discount

    async def update_discount(self, discount_id: uuid.UUID, data: DiscountUpdate) -> DiscountCode:
        """Update rule fields; usage counters are never written here"""
        discount = await self._get_or_404(discount_id)
        payload = data.model_dump(exclude_unset=True)

        if payload.get("code") and await self.repository.code_exists(payload["code"], exclude_id=discount.id):
            raise DuplicateResourceException("Discount", "code", payload["code"])

        for key in ("code", "discount_type", "discount_value", "is_active", "applicable_to",
                    "first_purchase_only", "priority", "stackable", "auto_apply"):
            if key in payload and payload[key] is None:
                raise BadRequestException(f"{key} cannot be null")

        if "discount_type" in payload:
            payload["discount_type"] = payload["discount_type"].value

        new_type = payload.get("discount_type", discount.discount_type)
        new_value = payload.get("discount_value", discount.discount_value)
        if new_type == DiscountType.PERCENTAGE.value and Decimal(new_value) > 100:
            raise BadRequestException("Percentage discounts cannot exceed 100")

        if "applicable_to" in payload or "applicable_ids" in payload:
            scope = payload["applicable_to"].value if "applicable_to" in payload else discount.applicable_to
            ids = payload["applicable_ids"] if "applicable_ids" in payload else discount.applicable_ids
            payload["applicable_to"], payload["applicable_ids"] = discount_scope.normalize_scope(scope, ids)

        discount = await self.repository.update(discount, payload)
        logger.info(f"Discount {discount.code} updated")
        return discount

    async def delete_discount(self, discount_id: uuid.UUID) -> None:
        discount = await self._get_or_404(discount_id)
        code = discount.code
        await self.repository.delete(discount)
        logger.info(f"Discount {code} deleted")

    async def toggle_discount_status(self, discount_id: uuid.UUID) -> DiscountCode:
        discount = await self._get_or_404(discount_id)
        discount = await self.repository.update(discount, {"is_active": not discount.is_active})
        logger.info(f"Discount {discount.code} active={discount.is_active}")
        return discount

    async def check_code_availability(self, code: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        return not await self.repository.code_exists(code, exclude_id)

    async def get_dashboard_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        discounts = await self.repository.list_discounts()

        return {
            "total": len(discounts),
            "active": sum(1 for d in discounts if d.is_active and d.is_within_window(now)),
            "expired": sum(
                1 for d in discounts
                if d.valid_until is not None and as_utc(d.valid_until) <= now
            ),
            "total_usage": sum(d.usage_count or 0 for d in discounts),
        }

    async def generate_discount_code(
        self,
        prefix: Optional[str] = None,
        length: Optional[int] = None
    ) -> str:
        """Random code that does not collide with an existing one"""
        for _ in range(GENERATE_CODE_ATTEMPTS):
            code = generate_discount_code(prefix, length)
            if not await self.repository.code_exists(code):
                return code

        raise ConflictException(
            "Could not generate a unique discount code",
            error_code="CODE_GENERATION_FAILED"
        )
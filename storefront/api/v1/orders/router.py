"""Order confirmation hooks that redeem discounts"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from storefront.core.database import get_db
from storefront.core.security import get_current_user_optional
from storefront.services.discount_service import DiscountService
from storefront.schemas.discount import (
    RecordUsageRequest,
    DiscountUsageResponse,
    FinalizeDiscountRequest,
    FinalizeDiscountResponse,
)

router = APIRouter()

@router.post(
    "/{order_id}/discount-usage",
    response_model=DiscountUsageResponse,
    status_code=status.HTTP_201_CREATED
)
async def record_discount_usage(
    order_id: str,
    payload: RecordUsageRequest,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a redemption for the caller's paid order

    Returns 404, 409 or 403 when the order is missing, unpaid or someone
    else's, and 409 with the reason key when a limit was reached since
    pre-flight.
    """
    service = DiscountService(db)
    return await service.record_usage(
        discount_id=payload.discount_id,
        user_id=current_user["id"] if current_user else None,
        order_id=order_id,
        amount_saved=payload.amount_saved,
        idempotency_key=payload.idempotency_key
    )

@router.post("/{order_id}/finalize-discount", response_model=FinalizeDiscountResponse)
async def finalize_order_discount(
    order_id: str,
    payload: FinalizeDiscountRequest,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Re-check and redeem the order's discounts, dropping any that lost a limit race"""
    service = DiscountService(db)
    return await service.finalize_order(
        code=payload.code,
        cart_total=payload.subtotal,
        cart_items=payload.items,
        user_id=current_user["id"] if current_user else None,
        order_id=order_id,
        shipping_fee=payload.shipping_fee
    )

"""Checkout discount router: code pre-flight, auto-apply and price previews"""

from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from decimal import Decimal

from storefront.core.database import get_db
from storefront.core.security import get_current_user_optional
from storefront.middleware.rate_limit import discount_validate_limit
from storefront.services.discount_service import DiscountService, resolution_response
from storefront.schemas.discount import (
    DiscountValidateRequest,
    DiscountValidationResult,
    AutoApplyRequest,
    AutoApplyResponse,
    FirstOrderDiscountResponse,
    PricePreviewRequest,
    PricePreviewResponse,
    DiscountResolutionResponse,
)

router = APIRouter()

def _user_id(current_user: Optional[dict]) -> Optional[str]:
    return current_user["id"] if current_user else None

@router.post("/validate", response_model=DiscountValidationResult)
@discount_validate_limit
async def validate_discount(
    request: Request,
    payload: DiscountValidateRequest,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Validate an entered code and preview the amount it removes"""
    service = DiscountService(db)
    return await service.validate(
        code=payload.code,
        cart_total=payload.subtotal,
        cart_items=payload.items,
        user_id=_user_id(current_user),
        shipping_fee=payload.shipping_fee
    )

@router.post("/auto-apply", response_model=AutoApplyResponse)
async def auto_apply_discount(
    payload: AutoApplyRequest,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Best automatic discount for the cart"""
    service = DiscountService(db)
    discount = await service.get_auto_apply_discounts(
        user_id=_user_id(current_user),
        cart_total=payload.subtotal,
        cart_items=payload.items,
        shipping_fee=payload.shipping_fee
    )
    return AutoApplyResponse(has_auto_apply=discount is not None, discount=discount)

@router.post("/resolve", response_model=DiscountResolutionResponse)
async def resolve_discounts(
    payload: DiscountValidateRequest,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Entered code and auto-apply campaigns resolved to the discounts that apply"""
    service = DiscountService(db)
    resolution = await service.resolve_discounts(
        code=payload.code,
        cart_total=payload.subtotal,
        cart_items=payload.items,
        user_id=_user_id(current_user),
        shipping_fee=payload.shipping_fee
    )
    return resolution_response(resolution)

@router.get("/first-order", response_model=FirstOrderDiscountResponse)
async def first_order_discount(
    total: Decimal = Query(Decimal("0"), ge=0),
    current_user: Optional[dict] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    service = DiscountService(db)
    return await service.get_first_order_discount(_user_id(current_user), total)

@router.post("/price-preview", response_model=PricePreviewResponse)
async def price_preview(
    payload: PricePreviewRequest,
    db: AsyncSession = Depends(get_db)
):
    """Discounted price for a product page or variant picker"""
    service = DiscountService(db)
    return await service.preview_item_price(
        product_id=payload.product_id,
        variant_id=payload.variant_id,
        category_id=payload.category_id,
        base_price=payload.base_price
    )

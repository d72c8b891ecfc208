"""Admin router for managing discount codes"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import uuid

from storefront.core.database import get_db
from storefront.core.security import require_admin
from storefront.services.discount_service import DiscountService
from storefront.schemas.discount import (
    DiscountCreate,
    DiscountUpdate,
    DiscountResponse,
    DiscountDetailResponse,
    DiscountStatistics,
    DashboardStats,
    CodeAvailabilityResponse,
    GenerateCodeRequest,
    GeneratedCodeResponse,
)

router = APIRouter()

@router.get("/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Counts for the discounts dashboard"""
    service = DiscountService(db)
    return await service.get_dashboard_stats()

@router.get("/code-availability", response_model=CodeAvailabilityResponse)
async def check_code_availability(
    code: str = Query(..., min_length=1),
    exclude_id: Optional[uuid.UUID] = None,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = DiscountService(db)
    available = await service.check_code_availability(code, exclude_id)
    return CodeAvailabilityResponse(code=code.strip().upper(), available=available)

@router.post("/generate-code", response_model=GeneratedCodeResponse)
async def generate_code(
    payload: GenerateCodeRequest,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = DiscountService(db)
    code = await service.generate_discount_code(payload.prefix, payload.length)
    return GeneratedCodeResponse(code=code)

@router.get("", response_model=List[DiscountResponse])
async def list_discounts(
    is_active: Optional[bool] = None,
    category: Optional[str] = None,
    campaign: Optional[str] = None,
    search: Optional[str] = None,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List discount codes with optional filters"""
    service = DiscountService(db)
    return await service.get_discounts(is_active, category, campaign, search)

@router.post("", response_model=DiscountResponse, status_code=status.HTTP_201_CREATED)
async def create_discount(
    payload: DiscountCreate,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = DiscountService(db)
    return await service.create_discount(payload, created_by=admin_user["id"])

@router.get("/{discount_id}", response_model=DiscountDetailResponse)
async def get_discount(
    discount_id: uuid.UUID,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Discount with its redemption statistics"""
    service = DiscountService(db)
    detail = await service.get_discount(discount_id)
    return DiscountDetailResponse(
        discount=DiscountResponse.model_validate(detail["discount"]),
        statistics=DiscountStatistics(**detail["statistics"])
    )

@router.get("/{discount_id}/statistics", response_model=DiscountStatistics)
async def get_discount_statistics(
    discount_id: uuid.UUID,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = DiscountService(db)
    return await service.get_discount_statistics(discount_id)

@router.put("/{discount_id}", response_model=DiscountResponse)
async def update_discount(
    discount_id: uuid.UUID,
    payload: DiscountUpdate,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = DiscountService(db)
    return await service.update_discount(discount_id, payload)

@router.patch("/{discount_id}/toggle", response_model=DiscountResponse)
async def toggle_discount(
    discount_id: uuid.UUID,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Activate or deactivate a discount"""
    service = DiscountService(db)
    return await service.toggle_discount_status(discount_id)

@router.delete("/{discount_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_discount(
    discount_id: uuid.UUID,
    admin_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete a never-redeemed discount; redeemed ones must be deactivated"""
    service = DiscountService(db)
    await service.delete_discount(discount_id)

"""Admin API endpoints: revenue and referral analytics, coupon management."""

from datetime import date, datetime, time, timedelta
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_admin_user
from app.core.database import get_db
from app.core.exceptions import BillingError
from app.core.rate_limit import admin_limit
from app.core.time_utils import utcnow
from app.crud import referral as referral_crud
from app.models.user import UserProfile
from app.schemas.coupon import CouponResponse, CouponStats, CreateCouponRequest, UpdateCouponRequest
from app.schemas.referral import ReferralResponse
from app.schemas.revenue import ReferralAnalytics, RevenueDashboard
from app.services.coupon_service import CouponService
from app.services.revenue_service import RevenueService

router = APIRouter()


@router.get(
    "/revenue",
    response_model=RevenueDashboard,
    summary="Get revenue dashboard",
)
@admin_limit
async def get_revenue_dashboard(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[UserProfile, Depends(get_current_admin_user)],
) -> RevenueDashboard:
    """
    Get MRR, ARR, churn, trial conversion, LTV, plan mix and the MRR trend (admin only).

    Any metric that fails to compute is reported as 0.
    """
    service = RevenueService(db)
    return await service.get_dashboard()


@router.get(
    "/revenue/export",
    summary="Export payment transactions as CSV",
    response_class=Response,
)
@admin_limit
async def export_revenue(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[UserProfile, Depends(get_current_admin_user)],
    start_date: Optional[date] = Query(None, description="First day included (YYYY-MM-DD)"),
    end_date: Optional[date] = Query(None, description="Last day included (YYYY-MM-DD)"),
) -> Response:
    """
    Download payment transactions as CSV (admin only).

    Args:
        start_date: Optional inclusive lower bound
        end_date: Optional inclusive upper bound
    """
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date, time.min) + timedelta(days=1) if end_date else None

    service = RevenueService(db)
    content = await service.export_transactions_csv(start=start, end=end)
    filename = f"revenue-export-{utcnow().strftime('%Y-%m-%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/referrals",
    response_model=list[ReferralResponse],
    summary="List referrals",
)
@admin_limit
async def list_referrals(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[UserProfile, Depends(get_current_admin_user)],
    status: Optional[str] = Query(None, description="Only referrals with this status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of referrals to return"),
) -> list[ReferralResponse]:
    """List referrals, newest first (admin only)."""
    referrals = await referral_crud.get_all_referrals(db, status=status, limit=limit)
    return [ReferralResponse.model_validate(referral) for referral in referrals]


@router.get(
    "/referrals/analytics",
    response_model=ReferralAnalytics,
    summary="Get referral analytics",
)
@admin_limit
async def get_referral_analytics(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[UserProfile, Depends(get_current_admin_user)],
) -> ReferralAnalytics:
    """Referral funnel, K-factor, six-month trend and leaderboard (admin only)."""
    service = RevenueService(db)
    return await service.get_referral_analytics()


@router.get(
    "/coupons",
    response_model=list[CouponStats],
    summary="List coupons",
)
@admin_limit
async def list_coupons(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[UserProfile, Depends(get_current_admin_user)],
) -> list[CouponStats]:
    """List coupons, newest first, with usage counters (admin only)."""
    service = CouponService(db)
    return await service.list_coupons()


@router.post(
    "/coupons",
    response_model=CouponResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a coupon",
)
@admin_limit
async def create_coupon(
    request: Request,
    body: CreateCouponRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[UserProfile, Depends(get_current_admin_user)],
) -> CouponResponse:
    """
    Create a coupon (admin only).

    Raises:
        HTTPException: 400 if the code already exists
    """
    service = CouponService(db)
    try:
        coupon = await service.create_coupon(admin, body)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return CouponResponse.model_validate(coupon)


@router.patch(
    "/coupons/{coupon_id}",
    response_model=CouponResponse,
    summary="Update a coupon",
)
@admin_limit
async def update_coupon(
    request: Request,
    coupon_id: UUID,
    body: UpdateCouponRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[UserProfile, Depends(get_current_admin_user)],
) -> CouponResponse:
    """
    Activate, deactivate, re-cap or re-date a coupon (admin only).

    Raises:
        HTTPException: 404 if the coupon does not exist
    """
    service = CouponService(db)
    try:
        coupon = await service.update_coupon(coupon_id, body)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return CouponResponse.model_validate(coupon)

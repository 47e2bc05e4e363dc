"""Referral API endpoints."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user, get_current_admin_user
from app.core.database import get_db
from app.models.user import UserProfile
from app.schemas.referral import (
    ApplyRewardRequest,
    ApplyRewardResult,
    ReferralSummaryResponse,
    TrackReferralRequest,
    TrackReferralResponse,
    ValidateCodeResponse,
)
from app.services.referral_service import ReferralService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


def get_client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/track", response_model=TrackReferralResponse)
async def track_referral(
    request: Request,
    body: TrackReferralRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TrackReferralResponse:
    """Attach the current user to a referrer.

    Rejections come back as ``success=false`` so signup is never blocked.
    """
    service = ReferralService(db)
    return await service.track_referral(
        current_user,
        body.referral_code,
        ip_address=get_client_ip(request),
        device_fingerprint=body.device_fingerprint,
    )


@router.get("/track", response_model=ValidateCodeResponse)
async def validate_referral_code(
    db: Annotated[AsyncSession, Depends(get_db)],
    code: Annotated[str, Query(min_length=1, max_length=32)],
) -> ValidateCodeResponse:
    """Check a referral code before signup."""
    service = ReferralService(db)
    return await service.validate_code(code)


@router.get("/me", response_model=ReferralSummaryResponse)
async def get_my_referrals(
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReferralSummaryResponse:
    """Get the current user's code, share link, funnel and reward headroom."""
    service = ReferralService(db)
    return await service.get_referral_summary(current_user)


@router.post("/reward", response_model=ApplyRewardResult)
async def apply_referral_reward(
    body: ApplyRewardRequest,
    admin_user: Annotated[UserProfile, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ApplyRewardResult:
    """Apply the referral reward for a paying user (admin only).

    Rewards are normally applied by the outbox worker; this is the manual path.
    """
    logger.info(f"Admin {admin_user.id} applying referral reward for {body.referred_user_id}")
    service = ReferralService(db)
    return await service.apply_reward(body.referred_user_id)

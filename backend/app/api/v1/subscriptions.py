"""Subscription API endpoints."""

import logging
import math
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user
from app.core.database import get_db
from app.core.exceptions import BillingError
from app.core.time_utils import utcnow
from app.models.subscription import SubscriptionStatus
from app.models.user import UserProfile
from app.schemas.subscription import (
    CancelSubscriptionResponse,
    CurrentSubscriptionResponse,
    PlanResponse,
    SubscriptionResponse,
)
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=list[PlanResponse])
async def get_subscription_plans(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[PlanResponse]:
    """Get all available subscription plans.

    Returns:
        List of plans, cheapest first
    """
    service = SubscriptionService(db)
    plans = await service.get_all_active_plans()
    return [PlanResponse.model_validate(plan) for plan in plans]


@router.get("/current", response_model=CurrentSubscriptionResponse)
async def get_current_subscription(
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CurrentSubscriptionResponse:
    """Get current user's subscription and whether it grants access right now.

    A trial or paid period found lapsed is expired on read.
    """
    service = SubscriptionService(db)
    now = utcnow()
    subscription = await service.get_user_subscription(current_user.id)
    if subscription is None:
        return CurrentSubscriptionResponse(subscription=None, has_access=False)

    subscription = await service.check_and_maybe_expire(subscription, now)

    is_trial = subscription.is_trial_active(now)
    has_access = is_trial or subscription.has_paid_access(now)
    window_end = (
        subscription.trial_expires_at if is_trial else subscription.subscription_expires_at
    )
    days_remaining = 0
    if has_access and window_end is not None:
        days_remaining = max(math.ceil((window_end - now).total_seconds() / 86400), 0)

    return CurrentSubscriptionResponse(
        subscription=SubscriptionResponse.model_validate(subscription),
        has_access=has_access,
        is_trial=is_trial,
        days_remaining=days_remaining,
    )


@router.post(
    "/trial",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_trial(
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SubscriptionResponse:
    """Start the signup trial.

    Raises:
        HTTPException: 400 if the user already has a subscription
    """
    service = SubscriptionService(db)
    try:
        subscription = await service.start_trial(current_user.id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return SubscriptionResponse.model_validate(subscription)


@router.post("/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CancelSubscriptionResponse:
    """Cancel auto-renewal; access continues until the end of the paid period.

    Raises:
        HTTPException: 404 without a subscription, 400 if it is not active
    """
    service = SubscriptionService(db)
    try:
        subscription = await service.cancel_subscription(current_user.id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return CancelSubscriptionResponse(
        success=subscription.status == SubscriptionStatus.CANCELED.value,
        message="Subscription canceled. Access continues until the end of the billing period.",
        access_until=subscription.subscription_expires_at,
    )

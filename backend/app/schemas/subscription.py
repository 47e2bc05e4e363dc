"""Subscription request/response schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PlanResponse(BaseModel):
    """Plan catalog entry."""

    id: UUID
    slug: str = Field(..., description="Plan slug (monthly, quarterly, half-yearly, annual)")
    name: str = Field(..., description="Plan display name")
    price: int = Field(..., description="Price in paise")
    currency: str = Field(..., description="Currency code (INR)")
    duration_days: int = Field(..., description="Length of one billing period")
    features: dict[str, Any] = Field(default_factory=dict, description="Feature map")

    model_config = {"from_attributes": True}


class SubscriptionResponse(BaseModel):
    """User subscription response schema."""

    id: UUID
    user_id: UUID
    plan: Optional[PlanResponse] = None
    status: str = Field(
        ...,
        description="Subscription status (trial, active, canceled, expired, paused)",
    )
    trial_started_at: Optional[datetime] = None
    trial_expires_at: Optional[datetime] = None
    subscription_started_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None
    auto_renew: bool = Field(..., description="Renews at the end of the period")
    canceled_at: Optional[datetime] = Field(None, description="Cancellation timestamp")
    created_at: datetime

    model_config = {"from_attributes": True}


class CurrentSubscriptionResponse(BaseModel):
    """Subscription plus derived access flags."""

    subscription: Optional[SubscriptionResponse] = None
    has_access: bool = Field(..., description="Trial or paid period currently grants access")
    is_trial: bool = False
    days_remaining: int = Field(0, description="Whole days left in the current window")


class CancelSubscriptionResponse(BaseModel):
    """Result of a cancellation."""

    success: bool = True
    message: str
    access_until: Optional[datetime] = Field(
        None, description="Access continues until this timestamp"
    )

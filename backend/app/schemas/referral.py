"""Referral request/response schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TrackReferralRequest(BaseModel):
    """Attach the current user to a referrer's code."""

    referral_code: str = Field(..., min_length=4, max_length=32)
    device_fingerprint: Optional[str] = Field(None, max_length=255)


class ReferralResponse(BaseModel):
    id: UUID
    referrer_id: UUID
    referred_id: UUID
    referral_code: Optional[str] = None
    status: str
    reward_type: Optional[str] = None
    reward_value: Optional[int] = None
    reward_applied_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TrackReferralResponse(BaseModel):
    """Tracking never fails signup: rejections come back as success=false."""

    success: bool
    message: str
    referral: Optional[ReferralResponse] = None


class ValidateCodeResponse(BaseModel):
    valid: bool
    code: Optional[str] = None
    referrer_name: Optional[str] = None
    message: Optional[str] = None


class ReferralStats(BaseModel):
    total_referrals: int = 0
    pending_count: int = 0
    signed_up_count: int = 0
    subscribed_count: int = Field(0, description="Subscribed or already rewarded")
    rewarded_count: int = 0


class RewardHeadroom(BaseModel):
    monthly_count: int
    max_per_month: int
    can_earn_more: bool
    remaining_this_month: int


class ReferralSummaryResponse(BaseModel):
    """The current user's referral code, link and progress."""

    referral_code: str
    referral_link: str
    stats: ReferralStats
    rewards: RewardHeadroom
    referrals: list[ReferralResponse] = Field(default_factory=list)


class ApplyRewardRequest(BaseModel):
    referred_user_id: UUID


class ApplyRewardResult(BaseModel):
    """Outcome of a reward attempt."""

    success: bool
    message: Optional[str] = None
    reward_type: Optional[str] = None
    reward_value: Optional[int] = None
    referrer_id: Optional[UUID] = None
    subscription_expires_at: Optional[datetime] = None

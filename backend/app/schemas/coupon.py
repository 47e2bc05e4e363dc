"""Coupon request/response schemas."""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

PLAN_SLUG_PATTERN = "^(monthly|quarterly|half-yearly|annual)$"


class ValidateCouponRequest(BaseModel):
    """Check a code against a plan before checkout."""

    code: str = Field(..., min_length=1, max_length=50)
    plan_slug: str = Field(..., pattern=PLAN_SLUG_PATTERN)


class CouponValidationResult(BaseModel):
    """Outcome of a coupon check; amounts are in paise."""

    valid: bool
    reason: str
    discount_amount: int = 0
    final_amount: int
    coupon_id: Optional[UUID] = None


class CreateCouponRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)
    discount_type: Literal["percent", "fixed"]
    discount_value: int = Field(..., ge=1, description="Percent (1-100) or paise")
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, ge=1)
    min_plan: Optional[str] = Field(None, pattern=PLAN_SLUG_PATTERN)
    first_purchase_only: bool = False
    per_user_limit: int = Field(1, ge=1)
    email_locked: Optional[str] = Field(None, max_length=255)
    campaign_name: Optional[str] = Field(None, max_length=100)

    @field_validator("discount_value")
    @classmethod
    def percent_at_most_hundred(cls, value: int, info) -> int:
        if info.data.get("discount_type") == "percent" and value > 100:
            raise ValueError("Percentage discount must be between 1 and 100")
        return value


class UpdateCouponRequest(BaseModel):
    is_active: Optional[bool] = None
    max_uses: Optional[int] = Field(None, ge=1)
    valid_until: Optional[datetime] = None


class CouponResponse(BaseModel):
    id: UUID
    code: str
    discount_type: str
    discount_value: int
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None
    min_plan: Optional[str] = None
    first_purchase_only: bool
    per_user_limit: int
    email_locked: Optional[str] = None
    campaign_name: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CouponStats(CouponResponse):
    """Coupon with redemption counters for the admin list."""

    usage_count: int = 0
    usage_percent: int = 0
    is_expired: bool = False
    is_maxed_out: bool = False

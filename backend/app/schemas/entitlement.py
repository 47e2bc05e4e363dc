"""Entitlement request/response schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class EntitlementCheckResult(BaseModel):
    """Outcome of an entitlement check."""

    allowed: bool = Field(..., description="Feature may be used now")
    reason: str = Field(..., description="Which rule decided the outcome")
    usage_count: Optional[int] = Field(None, description="Current usage in this window")
    limit_value: Optional[int] = Field(None, description="Limit of this window (null = unlimited)")
    upgrade_required: Optional[bool] = Field(
        None, description="Client should offer a plan upgrade"
    )


class EntitlementCheckRequest(BaseModel):
    """Check (and optionally consume) a feature."""

    feature_slug: str = Field(..., min_length=1, max_length=100)
    increment_usage: bool = Field(False, description="Consume one unit when allowed")


class UsageIncrementRequest(BaseModel):
    feature_slug: str = Field(..., min_length=1, max_length=100)


class UsageIncrementResponse(BaseModel):
    incremented: bool = Field(..., description="A unit was consumed")

"""Entitlement API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user
from app.core.database import get_db
from app.models.user import UserProfile
from app.schemas.entitlement import (
    EntitlementCheckRequest,
    EntitlementCheckResult,
    UsageIncrementRequest,
    UsageIncrementResponse,
)
from app.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


@router.get("/check", response_model=EntitlementCheckResult)
async def check_entitlement(
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    feature: Annotated[str, Query(min_length=1, max_length=100)],
) -> EntitlementCheckResult:
    """Check whether the current user may use ``feature`` right now."""
    service = EntitlementService(db)
    return await service.check_entitlement(current_user.id, feature)


@router.post(
    "/check",
    response_model=EntitlementCheckResult,
    responses={403: {"model": EntitlementCheckResult}},
)
async def check_and_consume(
    body: EntitlementCheckRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Check a feature and optionally consume one unit of it.

    A denied check is returned with status 403. When a unit is consumed the
    reported usage count includes it.
    """
    service = EntitlementService(db)
    result = await service.check_entitlement(current_user.id, body.feature_slug)

    if not result.allowed:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=result.model_dump(),
        )

    if body.increment_usage:
        incremented = await service.increment_usage(current_user.id, body.feature_slug)
        if incremented and result.usage_count is not None:
            result.usage_count += 1
    return result


@router.post("/usage", response_model=UsageIncrementResponse)
async def increment_usage(
    body: UsageIncrementRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UsageIncrementResponse:
    """Record one use of a feature. Never exceeds the daily limit."""
    service = EntitlementService(db)
    incremented = await service.increment_usage(current_user.id, body.feature_slug)
    return UsageIncrementResponse(incremented=incremented)

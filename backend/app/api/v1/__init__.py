"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1 import (
    admin,
    answers,
    entitlements,
    payments,
    referrals,
    schedule,
    subscriptions,
)

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(subscriptions.router)
api_router.include_router(entitlements.router)
api_router.include_router(payments.router)
api_router.include_router(referrals.router)
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(schedule.router)
api_router.include_router(answers.router)

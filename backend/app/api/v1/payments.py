"""Payment API endpoints (Razorpay checkout and webhooks)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user
from app.core.database import get_db
from app.core.exceptions import BillingError, UpstreamFailure
from app.core.rate_limit import payments_limit
from app.models.user import UserProfile
from app.schemas.coupon import CouponValidationResult, ValidateCouponRequest
from app.schemas.payment import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookResult,
)
from app.services.coupon_service import CouponService
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/create-order",
    response_model=CreateOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
@payments_limit
async def create_order(
    request: Request,
    body: CreateOrderRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CreateOrderResponse:
    """Create a gateway order for the selected plan.

    Raises:
        HTTPException: 404 unknown plan, 400 already subscribed or unusable coupon,
            502 gateway failure
    """
    service = PaymentService(db)
    try:
        return await service.create_order(current_user, body.plan_slug, coupon_code=body.coupon_code)
    except UpstreamFailure as e:
        logger.error(f"Gateway error creating order for user {current_user.id}: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create order. Please try again later.",
        )
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/validate-coupon", response_model=CouponValidationResult)
@payments_limit
async def validate_coupon(
    request: Request,
    body: ValidateCouponRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CouponValidationResult:
    """Price a plan with a coupon before checkout.

    An unusable coupon is reported with ``valid=false`` and its reason.

    Raises:
        HTTPException: 404 unknown plan
    """
    service = CouponService(db)
    try:
        return await service.validate_coupon(current_user, body.code, body.plan_slug)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/verify", response_model=VerifyPaymentResponse)
@payments_limit
async def verify_payment(
    request: Request,
    body: VerifyPaymentRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> VerifyPaymentResponse:
    """Confirm a checkout from the client callback.

    Reaches the same end state as the ``payment.captured`` webhook, whichever
    arrives first.

    Raises:
        HTTPException: 400 bad signature, 404 unknown order, 403 foreign order
    """
    service = PaymentService(db)
    try:
        return await service.verify_payment(
            current_user.id,
            body.razorpay_order_id,
            body.razorpay_payment_id,
            body.razorpay_signature,
        )
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/webhook", response_model=WebhookResult)
async def razorpay_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    x_razorpay_signature: Annotated[str | None, Header(alias="x-razorpay-signature")] = None,
) -> WebhookResult:
    """Handle gateway webhooks.

    The signature is checked over the raw body before parsing. Failures while
    applying a recognised event surface as 500 so the gateway redelivers.

    Raises:
        HTTPException: 400 bad signature or body, 404 unknown order
    """
    raw_body = await request.body()
    service = PaymentService(db)
    try:
        return await service.handle_webhook(raw_body, x_razorpay_signature)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/webhook")
async def webhook_health() -> dict:
    """Health check for the webhook endpoint."""
    return {"status": "ok", "message": "Webhook endpoint is active"}

"""Payment request/response schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class CreateOrderRequest(BaseModel):
    """Request to start a checkout for a plan."""

    plan_slug: str = Field(
        ...,
        description="Plan to subscribe to",
        pattern="^(monthly|quarterly|half-yearly|annual)$",
    )
    coupon_code: Optional[str] = Field(None, max_length=50, description="Coupon to apply")


class CreateOrderResponse(BaseModel):
    """Details the checkout widget needs."""

    order_id: str = Field(..., description="Gateway order ID")
    amount: int = Field(..., description="Amount in paise")
    currency: str
    key_id: str = Field(..., description="Public gateway key")
    plan_slug: str
    discount_amount: int = Field(0, description="Coupon discount in paise")
    coupon_code: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    """Callback values returned by the checkout widget."""

    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class VerifyPaymentResponse(BaseModel):
    success: bool
    message: str
    subscription_expires_at: Optional[str] = None


class WebhookResult(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True
    event: Optional[str] = None
    applied: bool = Field(False, description="State changed as a result of this delivery")

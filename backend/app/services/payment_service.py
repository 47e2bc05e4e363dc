"""Payment gateway integration: checkout orders, verification and webhooks."""

import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidPayloadError,
    InvalidSignatureError,
    NotFoundError,
    UpstreamFailure,
)
from app.core.security import verify_payment_signature, verify_webhook_signature
from app.core.time_utils import utcnow
from app.crud import payment as payment_crud
from app.crud import plan as plan_crud
from app.crud import subscription as subscription_crud
from app.models.payment import PaymentOrder
from app.models.user import UserProfile
from app.schemas.payment import (
    CreateOrderResponse,
    VerifyPaymentResponse,
    WebhookResult,
)
from app.services.coupon_service import CouponService
from app.services.referral_service import ReferralService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


async def create_gateway_order(
    amount: int, receipt: str, notes: dict[str, str]
) -> dict[str, Any]:
    """Create an order at the gateway.

    Args:
        amount: Amount in paise
        receipt: Merchant receipt reference
        notes: Key/value notes echoed back in webhooks

    Returns:
        Gateway order object (``id``, ``amount``, ``currency``, ...)

    Raises:
        UpstreamFailure: If the gateway rejects the call, errors or times out
    """
    try:
        async with httpx.AsyncClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS) as client:
            response = await client.post(
                f"{settings.RAZORPAY_API_BASE}/orders",
                auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET),
                json={
                    "amount": amount,
                    "currency": settings.CURRENCY,
                    "receipt": receipt,
                    "notes": notes,
                },
            )
            response.raise_for_status()
            return response.json()
    except httpx.TimeoutException as e:
        logger.error(f"Gateway order creation timed out: {e}")
        raise UpstreamFailure("Payment gateway timed out")
    except httpx.HTTPStatusError as e:
        logger.error(f"Gateway rejected order creation (status {e.response.status_code})")
        raise UpstreamFailure("Payment gateway rejected the order")
    except httpx.HTTPError as e:
        logger.error(f"Gateway order creation failed: {e}")
        raise UpstreamFailure("Payment gateway unavailable")


class PaymentService:
    """Service applying gateway payment events to orders, subscriptions and invoices."""

    def __init__(self, db: AsyncSession):
        """Initialize payment service.

        Args:
            db: Database session
        """
        self.db = db
        self.subscriptions = SubscriptionService(db)
        self.referrals = ReferralService(db)
        self.coupons = CouponService(db)
        self._handlers: dict[str, Callable[[dict[str, Any], datetime], Awaitable[bool]]] = {
            "payment.captured": self._on_payment_captured,
            "payment.failed": self._on_payment_failed,
            "subscription.activated": self._on_subscription_activated,
            "subscription.cancelled": self._on_subscription_cancelled,
            "subscription.charged": self._on_subscription_charged,
        }

    async def create_order(
        self,
        user: UserProfile,
        plan_slug: str,
        now: Optional[datetime] = None,
        coupon_code: Optional[str] = None,
    ) -> CreateOrderResponse:
        """Create a gateway order for a plan and remember it locally.

        Args:
            user: Paying user
            plan_slug: Plan to purchase
            now: Current time (defaults to utcnow)
            coupon_code: Coupon to apply; the gateway is charged the discounted price

        Returns:
            What the checkout widget needs to open

        Raises:
            NotFoundError: Unknown or inactive plan
            ConflictError: User already has an active paid subscription, or the
                coupon cannot be applied
            UpstreamFailure: Gateway call failed
        """
        now = now or utcnow()
        plan = await plan_crud.get_plan_by_slug(self.db, plan_slug)
        if plan is None:
            raise NotFoundError(f"Plan '{plan_slug}' not found")

        subscription = await subscription_crud.get_subscription_by_user(self.db, user.id)
        if subscription is not None and subscription.is_subscription_active(now):
            raise ConflictError("Active subscription already exists")

        amount, discount, applied_code = plan.price, 0, None
        notes = {"user_id": str(user.id), "plan_slug": plan.slug}
        if coupon_code:
            check = await self.coupons.validate_coupon(user, coupon_code, plan.slug, now)
            if not check.valid:
                raise ConflictError(check.reason)
            amount, discount = check.final_amount, check.discount_amount
            applied_code = coupon_code.strip().upper()
            notes["coupon_code"] = applied_code

        receipt = f"sub_{str(user.id)[:8]}_{int(now.timestamp())}"
        gateway_order = await create_gateway_order(amount, receipt, notes)
        order = await payment_crud.create_order(
            self.db,
            user_id=user.id,
            plan_slug=plan.slug,
            amount=amount,
            currency=plan.currency,
            razorpay_order_id=gateway_order["id"],
            discount_amount=discount,
            coupon_code=applied_code,
        )
        logger.info(f"Created order {order.razorpay_order_id} for user {user.id} ({plan.slug})")

        return CreateOrderResponse(
            order_id=order.razorpay_order_id,
            amount=order.amount,
            currency=order.currency,
            key_id=settings.RAZORPAY_KEY_ID,
            plan_slug=plan.slug,
            discount_amount=order.discount_amount,
            coupon_code=order.coupon_code,
        )

    async def capture_order(
        self,
        order: PaymentOrder,
        razorpay_payment_id: str,
        now: datetime,
        amount: Optional[int] = None,
        payment_method: Optional[str] = None,
    ) -> bool:
        """Apply a successful payment to an order, exactly once.

        Shared by the webhook and the client-side verify so both converge on
        the same end state. The order moves to paid through a compare-and-set;
        only the winner activates the subscription, writes the invoice and
        the ledger row, records the coupon redemption and queues the referral
        reward, all in one commit.

        Returns:
            True if this call applied the payment, False for a duplicate
        """
        won = await payment_crud.mark_order_paid(self.db, order.id, razorpay_payment_id, now)
        if not won:
            await self.db.commit()
            logger.info(f"Order {order.razorpay_order_id} already paid, ignoring duplicate capture")
            return False

        try:
            plan = await plan_crud.get_plan_by_slug(self.db, order.plan_slug)
            if plan is None:
                raise NotFoundError(f"Plan '{order.plan_slug}' not found")

            await self.subscriptions.activate_from_payment(order.user_id, plan, now)
            paid_amount = amount if amount is not None else order.amount
            await payment_crud.insert_invoice_once(
                self.db,
                user_id=order.user_id,
                amount=paid_amount,
                razorpay_payment_id=razorpay_payment_id,
                razorpay_order_id=order.razorpay_order_id,
                now=now,
            )
            await payment_crud.record_transaction_once(
                self.db,
                user_id=order.user_id,
                status="captured",
                razorpay_payment_id=razorpay_payment_id,
                razorpay_order_id=order.razorpay_order_id,
                plan_id=plan.id,
                amount=paid_amount + order.discount_amount,
                discount_amount=order.discount_amount,
                coupon_code=order.coupon_code,
                payment_method=payment_method,
                now=now,
            )
            await self.coupons.redeem(order, razorpay_payment_id, now)
            await self.referrals.mark_subscribed(order.user_id, now)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(order)
        logger.info(f"Payment {razorpay_payment_id} captured for order {order.razorpay_order_id}")
        return True

    async def verify_payment(
        self,
        user_id: UUID,
        razorpay_order_id: str,
        razorpay_payment_id: str,
        razorpay_signature: str,
        now: Optional[datetime] = None,
    ) -> VerifyPaymentResponse:
        """Client-side confirmation right after checkout.

        Raises:
            InvalidSignatureError: Signature over ``order_id|payment_id`` does not match
            NotFoundError: Unknown order
            ForbiddenError: Order belongs to another user
        """
        now = now or utcnow()
        if not verify_payment_signature(
            razorpay_order_id,
            razorpay_payment_id,
            razorpay_signature,
            settings.RAZORPAY_KEY_SECRET,
        ):
            logger.warning(f"Invalid payment signature for order {razorpay_order_id}")
            raise InvalidSignatureError("Invalid payment signature")

        order = await payment_crud.get_order_by_gateway_id(self.db, razorpay_order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.user_id != user_id:
            raise ForbiddenError("Order belongs to another user")

        await self.capture_order(order, razorpay_payment_id, now)

        subscription = await self.subscriptions.get_user_subscription(user_id)
        expires_at = (
            subscription.subscription_expires_at.isoformat()
            if subscription is not None and subscription.subscription_expires_at
            else None
        )
        return VerifyPaymentResponse(
            success=True,
            message="Payment verified, subscription active",
            subscription_expires_at=expires_at,
        )

    def verify_webhook(self, raw_body: bytes, signature: Optional[str]) -> None:
        """Check the webhook signature over the raw body before any parsing.

        Raises:
            InvalidSignatureError: If a secret is configured and the signature does not match
        """
        if not settings.RAZORPAY_WEBHOOK_SECRET:
            logger.warning("RAZORPAY_WEBHOOK_SECRET not configured, skipping webhook signature check")
            return
        if not verify_webhook_signature(raw_body, signature, settings.RAZORPAY_WEBHOOK_SECRET):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignatureError("Invalid signature")

    async def handle_webhook(
        self,
        raw_body: bytes,
        signature: Optional[str],
        now: Optional[datetime] = None,
    ) -> WebhookResult:
        """Verify and apply one gateway webhook delivery.

        Unknown event types are acknowledged without changes. Errors inside a
        recognised event propagate so the gateway redelivers.

        Raises:
            InvalidSignatureError: Bad signature (terminal, nothing applied)
            InvalidPayloadError: Body is not a JSON event
            NotFoundError: ``payment.captured`` for an unknown order
        """
        now = now or utcnow()
        self.verify_webhook(raw_body, signature)

        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise InvalidPayloadError("Webhook body is not valid JSON")
        if not isinstance(event, dict):
            raise InvalidPayloadError("Webhook body is not a JSON object")

        event_type = event.get("event")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled webhook event: {event_type}")
            return WebhookResult(received=True, event=event_type, applied=False)

        logger.info(f"Gateway webhook: {event_type}")
        try:
            applied = await handler(event.get("payload") or {}, now)
        except (KeyError, TypeError) as e:
            await self.db.rollback()
            logger.error(f"Malformed {event_type} payload: missing {e}")
            raise
        return WebhookResult(received=True, event=event_type, applied=applied)

    async def _on_payment_captured(self, payload: dict[str, Any], now: datetime) -> bool:
        entity = payload["payment"]["entity"]
        order = await payment_crud.get_order_by_gateway_id(self.db, entity["order_id"])
        if order is None:
            logger.error(f"Order not found: {entity['order_id']}")
            raise NotFoundError("Order not found")
        return await self.capture_order(
            order,
            entity["id"],
            now,
            amount=entity.get("amount"),
            payment_method=entity.get("method"),
        )

    async def _on_payment_failed(self, payload: dict[str, Any], now: datetime) -> bool:
        entity = payload["payment"]["entity"]
        order_id = entity["order_id"]
        error = entity.get("error_description")

        changed = await payment_crud.mark_order_failed(self.db, order_id, error)
        order = await payment_crud.get_order_by_gateway_id(self.db, order_id)
        if order is not None and entity.get("id"):
            await payment_crud.record_transaction_once(
                self.db,
                user_id=order.user_id,
                status="failed",
                razorpay_payment_id=entity["id"],
                razorpay_order_id=order_id,
                amount=entity.get("amount") or order.amount,
                payment_method=entity.get("method"),
                error_code=entity.get("error_code"),
                error_description=error,
                now=now,
            )
        await self.db.commit()
        logger.info(f"Payment failed: {order_id} - {error}")
        return changed

    async def _on_subscription_activated(self, payload: dict[str, Any], now: datetime) -> bool:
        entity = payload["subscription"]["entity"]
        subscription = await self.subscriptions.set_status_by_customer(
            "active",
            now,
            razorpay_subscription_id=entity.get("id"),
            razorpay_customer_id=entity.get("customer_id"),
        )
        await self.db.commit()
        logger.info(f"Subscription activated: {entity.get('id')}")
        return subscription is not None

    async def _on_subscription_cancelled(self, payload: dict[str, Any], now: datetime) -> bool:
        entity = payload["subscription"]["entity"]
        subscription = await self.subscriptions.cancel_by_gateway_subscription(entity["id"], now)
        await self.db.commit()
        logger.info(f"Subscription cancelled: {entity['id']}")
        return subscription is not None

    async def _on_subscription_charged(self, payload: dict[str, Any], now: datetime) -> bool:
        """Recurring charge: one invoice and one period extension per payment id."""
        subscription_entity = payload["subscription"]["entity"]
        payment_entity = payload["payment"]["entity"]

        subscription = await subscription_crud.get_subscription_by_gateway_ids(
            self.db,
            gateway_subscription_id=subscription_entity.get("id"),
            customer_id=subscription_entity.get("customer_id"),
        )
        if subscription is None:
            logger.warning(f"Charge for unknown gateway subscription {subscription_entity.get('id')}")
            return False

        invoice = await payment_crud.insert_invoice_once(
            self.db,
            user_id=subscription.user_id,
            amount=payment_entity.get("amount", 0),
            razorpay_payment_id=payment_entity["id"],
            now=now,
        )
        if invoice is None:
            await self.db.commit()
            logger.info(f"Recurring payment {payment_entity['id']} already applied")
            return False

        try:
            await self.subscriptions.extend_for_recurring_charge(subscription, now)
            await payment_crud.record_transaction_once(
                self.db,
                user_id=subscription.user_id,
                status="captured",
                razorpay_payment_id=payment_entity["id"],
                plan_id=subscription.plan_id,
                amount=payment_entity.get("amount", 0),
                payment_method=payment_entity.get("method"),
                now=now,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(f"Subscription charged: {subscription_entity.get('id')}")
        return True

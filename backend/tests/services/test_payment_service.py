"""Tests for checkout orders, payment verification and gateway webhooks."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidPayloadError,
    InvalidSignatureError,
    NotFoundError,
    UpstreamFailure,
)
from app.crud import payment as payment_crud
from app.crud import subscription as subscription_crud
from app.models.coupon import CouponUsage
from app.models.outbox import OutboxMessage, OutboxStatus
from app.models.payment import Invoice, OrderStatus
from app.models.referral import Referral, ReferralStatus
from app.services import payment_service as payment_module
from app.services.payment_service import PaymentService
from app.services.referral_service import REWARD_OUTBOX_KIND


@pytest.fixture
def service(db_session: AsyncSession) -> PaymentService:
    return PaymentService(db_session)


@pytest.fixture
async def order(db_session: AsyncSession, student, plans):
    return await payment_crud.create_order(db_session, student.id, "monthly", 59900, "INR", "order_1")


def captured_body(build_webhook, order_id: str = "order_1", payment_id: str = "pay_1", amount: int = 59900) -> bytes:
    return build_webhook(
        "payment.captured",
        payment={"id": payment_id, "order_id": order_id, "amount": amount, "method": "upi"},
    )


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_creates_gateway_and_local_order(self, service, db_session, student, plans, now, monkeypatch) -> None:
        calls = []

        async def fake_gateway(amount, receipt, notes):
            calls.append((amount, receipt, notes))
            return {"id": "order_gw_1", "amount": amount, "currency": "INR"}

        monkeypatch.setattr(payment_module, "create_gateway_order", fake_gateway)

        response = await service.create_order(student, "quarterly", now)

        assert response.order_id == "order_gw_1"
        assert response.amount == 149900
        assert response.currency == "INR"
        assert response.key_id == "rzp_test_key"
        assert calls[0][2] == {"user_id": str(student.id), "plan_slug": "quarterly"}
        stored = await payment_crud.get_order_by_gateway_id(db_session, "order_gw_1")
        assert stored.status == OrderStatus.CREATED

    @pytest.mark.asyncio
    async def test_unknown_plan(self, service, student, plans, now) -> None:
        with pytest.raises(NotFoundError):
            await service.create_order(student, "weekly", now)

    @pytest.mark.asyncio
    async def test_active_subscription_conflict(self, service, student, plans, make_subscription, now) -> None:
        await make_subscription(student, "active", plans["monthly"], subscription_expires_at=now + timedelta(days=5))

        with pytest.raises(ConflictError):
            await service.create_order(student, "annual", now)

    @pytest.mark.asyncio
    async def test_gateway_failure_stores_nothing(self, service, db_session, student, plans, now, monkeypatch) -> None:
        async def failing_gateway(amount, receipt, notes):
            raise UpstreamFailure("Payment gateway timed out")

        monkeypatch.setattr(payment_module, "create_gateway_order", failing_gateway)

        with pytest.raises(UpstreamFailure):
            await service.create_order(student, "monthly", now)

        assert await payment_crud.get_transactions(db_session) == []

    @pytest.mark.asyncio
    async def test_coupon_discounts_gateway_charge(
        self, service, db_session, student, plans, make_coupon, now, monkeypatch
    ) -> None:
        await make_coupon("LAUNCH20", "percent", 20)
        calls = []

        async def fake_gateway(amount, receipt, notes):
            calls.append((amount, notes))
            return {"id": "order_gw_c", "amount": amount, "currency": "INR"}

        monkeypatch.setattr(payment_module, "create_gateway_order", fake_gateway)

        response = await service.create_order(student, "monthly", now, coupon_code="launch20")

        assert (response.amount, response.discount_amount, response.coupon_code) == (47920, 11980, "LAUNCH20")
        assert calls[0][0] == 47920
        assert calls[0][1]["coupon_code"] == "LAUNCH20"
        stored = await payment_crud.get_order_by_gateway_id(db_session, "order_gw_c")
        assert (stored.amount, stored.discount_amount, stored.coupon_code) == (47920, 11980, "LAUNCH20")

    @pytest.mark.asyncio
    async def test_unusable_coupon_rejected_before_gateway(
        self, service, student, plans, make_coupon, now, monkeypatch
    ) -> None:
        await make_coupon("OLD", valid_until=now - timedelta(days=1))
        calls = []

        async def fake_gateway(amount, receipt, notes):
            calls.append(amount)
            return {"id": "order_gw_x", "amount": amount, "currency": "INR"}

        monkeypatch.setattr(payment_module, "create_gateway_order", fake_gateway)

        with pytest.raises(ConflictError, match="Coupon has expired"):
            await service.create_order(student, "monthly", now, coupon_code="OLD")
        assert calls == []


class TestVerifyPayment:
    @pytest.mark.asyncio
    async def test_valid_signature_activates(
        self, service, db_session, student, order, sign_payment, now, fetch_rows
    ) -> None:
        response = await service.verify_payment(
            student.id, "order_1", "pay_1", sign_payment("order_1", "pay_1"), now
        )

        assert response.success is True
        assert response.subscription_expires_at == (now + timedelta(days=30)).isoformat()
        subscription = await subscription_crud.get_subscription_by_user(db_session, student.id)
        assert subscription.status == "active"
        assert len(await fetch_rows(Invoice, razorpay_payment_id="pay_1")) == 1

    @pytest.mark.asyncio
    async def test_invalid_signature_changes_nothing(self, service, db_session, student, order, now) -> None:
        with pytest.raises(InvalidSignatureError):
            await service.verify_payment(student.id, "order_1", "pay_1", "0" * 64, now)

        assert (await payment_crud.get_order_by_gateway_id(db_session, "order_1")).status == OrderStatus.CREATED
        assert await subscription_crud.get_subscription_by_user(db_session, student.id) is None

    @pytest.mark.asyncio
    async def test_other_users_order(self, service, other_student, order, sign_payment, now) -> None:
        with pytest.raises(ForbiddenError):
            await service.verify_payment(other_student.id, "order_1", "pay_1", sign_payment("order_1", "pay_1"), now)

    @pytest.mark.asyncio
    async def test_unknown_order(self, service, student, sign_payment, now) -> None:
        with pytest.raises(NotFoundError):
            await service.verify_payment(student.id, "order_x", "pay_x", sign_payment("order_x", "pay_x"), now)


class TestPaymentCapturedWebhook:
    @pytest.mark.asyncio
    async def test_capture_applies_everything_once(
        self, service, db_session, student, order, build_webhook, signer, now
    ) -> None:
        body = captured_body(build_webhook)

        result = await service.handle_webhook(body, signer(body), now)

        assert result.received is True
        assert result.event == "payment.captured"
        assert result.applied is True
        paid = await payment_crud.get_order_by_gateway_id(db_session, "order_1")
        assert paid.status == OrderStatus.PAID
        assert paid.razorpay_payment_id == "pay_1"
        subscription = await subscription_crud.get_subscription_by_user(db_session, student.id)
        assert subscription.subscription_expires_at == now + timedelta(days=30)
        transactions = await payment_crud.get_transactions(db_session, status="captured")
        assert [(tx.final_amount, tx.payment_method) for tx in transactions] == [(59900, "upi")]

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_noop(
        self, service, db_session, student, order, build_webhook, signer, now, fetch_rows
    ) -> None:
        body = captured_body(build_webhook)
        await service.handle_webhook(body, signer(body), now)

        again = await service.handle_webhook(body, signer(body), now + timedelta(minutes=3))

        assert again.applied is False
        assert len(await fetch_rows(Invoice)) == 1
        subscription = await subscription_crud.get_subscription_by_user(db_session, student.id)
        assert subscription.subscription_expires_at == now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_verify_then_webhook_converge(
        self, service, db_session, student, order, build_webhook, signer, sign_payment, now, fetch_rows
    ) -> None:
        await service.verify_payment(student.id, "order_1", "pay_1", sign_payment("order_1", "pay_1"), now)
        body = captured_body(build_webhook)

        result = await service.handle_webhook(body, signer(body), now + timedelta(seconds=5))

        assert result.applied is False
        assert len(await fetch_rows(Invoice)) == 1
        assert len(await payment_crud.get_transactions(db_session)) == 1

    @pytest.mark.asyncio
    async def test_bad_signature_rejected_before_parsing(
        self, service, db_session, order, build_webhook, signer, now
    ) -> None:
        body = captured_body(build_webhook)
        signature = signer(body)
        tampered = body.replace(b"59900", b"59901")

        with pytest.raises(InvalidSignatureError):
            await service.handle_webhook(tampered, signature, now)

        assert (await payment_crud.get_order_by_gateway_id(db_session, "order_1")).status == OrderStatus.CREATED

    @pytest.mark.asyncio
    async def test_unknown_order_raises(self, service, build_webhook, signer, now) -> None:
        body = captured_body(build_webhook, order_id="order_missing")

        with pytest.raises(NotFoundError):
            await service.handle_webhook(body, signer(body), now)

    @pytest.mark.asyncio
    async def test_capture_queues_referral_reward(
        self, service, db_session, student, other_student, order, build_webhook, signer, now, fetch_rows
    ) -> None:
        db_session.add(Referral(referrer_id=other_student.id, referred_id=student.id, status=ReferralStatus.SIGNED_UP))
        await db_session.commit()
        body = captured_body(build_webhook)

        await service.handle_webhook(body, signer(body), now)

        messages = await fetch_rows(OutboxMessage, kind=REWARD_OUTBOX_KIND)
        assert len(messages) == 1
        assert messages[0].payload == {"referred_user_id": str(student.id)}
        assert messages[0].status == OutboxStatus.PENDING

    @pytest.mark.asyncio
    async def test_capture_records_coupon_once(
        self, service, db_session, student, plans, make_coupon, build_webhook, signer, now, fetch_rows
    ) -> None:
        coupon = await make_coupon("LAUNCH20", "percent", 20)
        await payment_crud.create_order(
            db_session, student.id, "monthly", 47920, "INR", "order_c", discount_amount=11980, coupon_code="LAUNCH20"
        )
        body = captured_body(build_webhook, order_id="order_c", payment_id="pay_c", amount=47920)

        await service.handle_webhook(body, signer(body), now)
        await service.handle_webhook(body, signer(body), now)

        [transaction] = await payment_crud.get_transactions(db_session, status="captured")
        assert (transaction.amount, transaction.discount_amount, transaction.final_amount) == (59900, 11980, 47920)
        assert transaction.coupon_code == "LAUNCH20"
        [usage] = await fetch_rows(CouponUsage, coupon_id=coupon.id)
        assert (usage.user_id, usage.razorpay_payment_id, usage.discount_amount) == (student.id, "pay_c", 11980)
        [invoice] = await fetch_rows(Invoice, razorpay_payment_id="pay_c")
        assert invoice.amount == 47920


class TestOtherWebhooks:
    @pytest.mark.asyncio
    async def test_payment_failed(self, service, db_session, order, build_webhook, signer, now) -> None:
        body = build_webhook(
            "payment.failed",
            payment={"id": "pay_f", "order_id": "order_1", "error_code": "BAD_REQUEST_ERROR", "error_description": "declined"},
        )

        result = await service.handle_webhook(body, signer(body), now)

        assert result.applied is True
        failed = await payment_crud.get_order_by_gateway_id(db_session, "order_1")
        assert failed.status == OrderStatus.FAILED
        assert failed.error_message == "declined"
        transactions = await payment_crud.get_transactions(db_session, status="failed")
        assert transactions[0].error_code == "BAD_REQUEST_ERROR"

    @pytest.mark.asyncio
    async def test_unhandled_event_acknowledged(self, service, build_webhook, signer, now) -> None:
        body = build_webhook("refund.created", refund={"id": "rfnd_1"})

        result = await service.handle_webhook(body, signer(body), now)

        assert result.received is True
        assert result.applied is False
        assert result.event == "refund.created"

    @pytest.mark.asyncio
    async def test_invalid_json(self, service, signer, now) -> None:
        body = b"not json"

        with pytest.raises(InvalidPayloadError):
            await service.handle_webhook(body, signer(body), now)

    @pytest.mark.asyncio
    async def test_recurring_charge_extends_once(
        self, service, db_session, student, plans, make_subscription, build_webhook, signer, now, fetch_rows
    ) -> None:
        expires = now + timedelta(days=2)
        await make_subscription(
            student, "active", plans["monthly"], subscription_expires_at=expires, razorpay_subscription_id="sub_1"
        )
        body = build_webhook(
            "subscription.charged",
            subscription={"id": "sub_1"},
            payment={"id": "pay_r1", "amount": 59900},
        )

        first = await service.handle_webhook(body, signer(body), now)
        second = await service.handle_webhook(body, signer(body), now)

        assert (first.applied, second.applied) == (True, False)
        subscription = await subscription_crud.get_subscription_by_user(db_session, student.id)
        assert subscription.subscription_expires_at == expires + timedelta(days=30)
        assert len(await fetch_rows(Invoice, razorpay_payment_id="pay_r1")) == 1

    @pytest.mark.asyncio
    async def test_subscription_cancelled(
        self, service, db_session, student, plans, make_subscription, build_webhook, signer, now
    ) -> None:
        await make_subscription(
            student,
            "active",
            plans["monthly"],
            subscription_expires_at=now + timedelta(days=9),
            razorpay_subscription_id="sub_1",
        )
        body = build_webhook("subscription.cancelled", subscription={"id": "sub_1"})

        result = await service.handle_webhook(body, signer(body), now)

        assert result.applied is True
        subscription = await subscription_crud.get_subscription_by_user(db_session, student.id)
        assert subscription.status == "canceled"
        assert subscription.has_paid_access(now + timedelta(days=8))

"""Tests for coupon validation and management."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError
from app.crud import coupon as coupon_crud
from app.crud import payment as payment_crud
from app.schemas.coupon import CreateCouponRequest, UpdateCouponRequest
from app.services.coupon_service import CouponService, compute_discount, percent_used


@pytest.fixture
def service(db_session: AsyncSession) -> CouponService:
    return CouponService(db_session)


@pytest.mark.parametrize(
    "discount_type, value, amount, expected",
    [
        ("percent", 10, 59900, 5990),
        ("percent", 15, 149900, 22485),
        ("percent", 33, 59950, 19784),  # 19783.5 rounds up
        ("fixed", 10000, 59900, 10000),
        ("fixed", 90000, 59900, 59800),  # never below one rupee
        ("percent", 100, 59900, 59800),
    ],
)
def test_compute_discount(discount_type, value, amount, expected) -> None:
    assert compute_discount(discount_type, value, amount) == expected


def test_percent_used_rounds_half_up() -> None:
    assert (percent_used(1, 8), percent_used(3, 8), percent_used(0, None)) == (13, 38, 0)


class TestValidateCoupon:
    @pytest.mark.asyncio
    async def test_valid_percent_coupon(self, service, student, plans, make_coupon, now) -> None:
        coupon = await make_coupon("LAUNCH20", "percent", 20)

        result = await service.validate_coupon(student, "launch20", "monthly", now)

        assert result.valid is True
        assert result.reason == "Coupon applied"
        assert (result.discount_amount, result.final_amount) == (11980, 47920)
        assert result.coupon_id == coupon.id

    @pytest.mark.asyncio
    async def test_unknown_code(self, service, student, plans, now) -> None:
        result = await service.validate_coupon(student, "NOPE", "monthly", now)

        assert result.valid is False
        assert result.reason == "Invalid coupon code"
        assert (result.discount_amount, result.final_amount) == (0, 59900)
        assert result.coupon_id is None

    @pytest.mark.asyncio
    async def test_unknown_plan(self, service, student, plans, now) -> None:
        with pytest.raises(NotFoundError):
            await service.validate_coupon(student, "LAUNCH20", "weekly", now)

    @pytest.mark.parametrize(
        "fields, reason",
        [
            ({"is_active": False}, "Invalid coupon code"),
            ({"valid_until_offset": timedelta(seconds=-1)}, "Coupon has expired"),
            ({"email_locked": "someone@example.com"}, "Coupon is not valid for this account"),
            ({"min_plan": "quarterly"}, "Coupon requires the quarterly plan or longer"),
        ],
    )
    @pytest.mark.asyncio
    async def test_restrictions(self, service, student, plans, make_coupon, now, fields, reason) -> None:
        fields = dict(fields)
        offset = fields.pop("valid_until_offset", None)
        if offset is not None:
            fields["valid_until"] = now + offset
        await make_coupon("RESTRICTED", **fields)

        result = await service.validate_coupon(student, "RESTRICTED", "monthly", now)

        assert result.valid is False
        assert result.reason == reason
        assert result.final_amount == 59900

    @pytest.mark.asyncio
    async def test_email_lock_ignores_case(self, service, student, plans, make_coupon, now) -> None:
        await make_coupon("VIP", email_locked="Student@Example.com")

        assert (await service.validate_coupon(student, "VIP", "monthly", now)).valid is True

    @pytest.mark.asyncio
    async def test_min_plan_allows_longer_plans(self, service, student, plans, make_coupon, now) -> None:
        await make_coupon("LONG", min_plan="quarterly")

        assert (await service.validate_coupon(student, "LONG", "annual", now)).valid is True

    @pytest.mark.asyncio
    async def test_max_uses_reached(
        self, service, db_session, student, other_student, plans, make_coupon, now
    ) -> None:
        coupon = await make_coupon("FIRST1", max_uses=1)
        await coupon_crud.record_usage_once(db_session, coupon.id, other_student.id, "pay_1", 5990)
        await db_session.commit()

        result = await service.validate_coupon(student, "FIRST1", "monthly", now)

        assert result.reason == "Coupon usage limit reached"

    @pytest.mark.asyncio
    async def test_per_user_limit(self, service, db_session, student, plans, make_coupon, now) -> None:
        coupon = await make_coupon("TWICE", per_user_limit=2)
        await coupon_crud.record_usage_once(db_session, coupon.id, student.id, "pay_1", 5990)
        await db_session.commit()
        assert (await service.validate_coupon(student, "TWICE", "monthly", now)).valid is True

        await coupon_crud.record_usage_once(db_session, coupon.id, student.id, "pay_2", 5990)
        await db_session.commit()
        result = await service.validate_coupon(student, "TWICE", "monthly", now)

        assert result.reason == "You have already used this coupon"

    @pytest.mark.asyncio
    async def test_first_purchase_only(self, service, db_session, student, plans, make_coupon, now) -> None:
        await make_coupon("WELCOME", first_purchase_only=True)
        assert (await service.validate_coupon(student, "WELCOME", "monthly", now)).valid is True

        await payment_crud.record_transaction_once(db_session, student.id, "captured", "pay_1", amount=59900, now=now)
        await db_session.commit()
        result = await service.validate_coupon(student, "WELCOME", "monthly", now)

        assert result.reason == "Coupon is valid on first purchase only"


class TestManagement:
    @pytest.mark.asyncio
    async def test_create_and_reject_duplicate(self, service, admin) -> None:
        body = CreateCouponRequest(code="diwali25", discount_type="percent", discount_value=25, max_uses=4)

        coupon = await service.create_coupon(admin, body)

        assert coupon.code == "DIWALI25"
        assert coupon.max_uses == 4
        with pytest.raises(ConflictError, match="Coupon code already exists"):
            await service.create_coupon(admin, body)

    @pytest.mark.asyncio
    async def test_list_with_usage_stats(self, service, db_session, student, make_coupon, now) -> None:
        capped = await make_coupon("CAPPED", max_uses=2)
        await make_coupon("OLD", valid_until=now - timedelta(days=1))
        await coupon_crud.record_usage_once(db_session, capped.id, student.id, "pay_1", 5990)
        await coupon_crud.record_usage_once(db_session, capped.id, student.id, "pay_2", 5990)
        await db_session.commit()

        stats = {coupon.code: coupon for coupon in await service.list_coupons(now)}

        assert (stats["CAPPED"].usage_count, stats["CAPPED"].usage_percent) == (2, 100)
        assert stats["CAPPED"].is_maxed_out is True
        assert stats["CAPPED"].is_expired is False
        assert stats["OLD"].is_expired is True
        assert stats["OLD"].is_maxed_out is False

    @pytest.mark.asyncio
    async def test_update_deactivates(self, service, student, plans, make_coupon, now) -> None:
        coupon = await make_coupon("PAUSE")

        updated = await service.update_coupon(coupon.id, UpdateCouponRequest(is_active=False))

        assert updated.is_active is False
        assert (await service.validate_coupon(student, "PAUSE", "monthly", now)).valid is False

    @pytest.mark.asyncio
    async def test_update_unknown(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.update_coupon(uuid.uuid4(), UpdateCouponRequest(is_active=False))

"""Coupon validation, redemption and admin management."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError
from app.core.time_utils import to_naive_utc, utcnow
from app.crud import coupon as coupon_crud
from app.crud import payment as payment_crud
from app.crud import plan as plan_crud
from app.models.coupon import Coupon, CouponUsage, DiscountType
from app.models.payment import PaymentOrder
from app.models.user import UserProfile
from app.schemas.coupon import (
    CouponStats,
    CouponValidationResult,
    CreateCouponRequest,
    UpdateCouponRequest,
)
from app.services.revenue_service import PLAN_MONTHS

logger = logging.getLogger(__name__)

# Smallest amount the gateway will charge (paise).
MIN_CHARGE = 100

INVALID_CODE = "Invalid coupon code"


def compute_discount(discount_type: str, discount_value: int, amount: int) -> int:
    """Discount in paise for ``amount``; percentages round half up.

    The discount never takes the charge below ``MIN_CHARGE``.
    """
    if discount_type == DiscountType.PERCENT:
        discount = (amount * discount_value + 50) // 100
    else:
        discount = discount_value
    return max(0, min(discount, amount - MIN_CHARGE))


def percent_used(used: int, max_uses: Optional[int]) -> int:
    """Whole percent of the usage cap consumed, rounded half up."""
    if not max_uses:
        return 0
    return (used * 200 + max_uses) // (2 * max_uses)


class CouponService:
    """Service for checkout coupons."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def validate_coupon(
        self,
        user: UserProfile,
        code: str,
        plan_slug: str,
        now: Optional[datetime] = None,
    ) -> CouponValidationResult:
        """Check whether ``user`` may apply ``code`` to ``plan_slug``.

        An unusable coupon is not an error: the result carries ``valid=False``,
        the reason, and the undiscounted price.

        Raises:
            NotFoundError: Unknown plan
        """
        now = now or utcnow()
        plan = await plan_crud.get_plan_by_slug(self.db, plan_slug)
        if plan is None:
            raise NotFoundError(f"Plan '{plan_slug}' not found")

        coupon = await coupon_crud.get_coupon_by_code(self.db, code)
        reason = await self._rejection(coupon, user, plan_slug, now)
        if reason is not None:
            return CouponValidationResult(valid=False, reason=reason, final_amount=plan.price)

        discount = compute_discount(coupon.discount_type, coupon.discount_value, plan.price)
        return CouponValidationResult(
            valid=True,
            reason="Coupon applied",
            discount_amount=discount,
            final_amount=plan.price - discount,
            coupon_id=coupon.id,
        )

    async def _rejection(
        self, coupon: Optional[Coupon], user: UserProfile, plan_slug: str, now: datetime
    ) -> Optional[str]:
        if coupon is None or not coupon.is_active:
            return INVALID_CODE
        if coupon.valid_until is not None and coupon.valid_until < now:
            return "Coupon has expired"
        if coupon.email_locked and coupon.email_locked.lower() != (user.email or "").lower():
            return "Coupon is not valid for this account"
        if coupon.min_plan and PLAN_MONTHS.get(plan_slug, 0) < PLAN_MONTHS.get(coupon.min_plan, 0):
            return f"Coupon requires the {coupon.min_plan} plan or longer"
        if coupon.max_uses is not None and (
            await coupon_crud.count_usages(self.db, coupon.id) >= coupon.max_uses
        ):
            return "Coupon usage limit reached"
        if await coupon_crud.count_user_usages(self.db, coupon.id, user.id) >= coupon.per_user_limit:
            return "You have already used this coupon"
        if coupon.first_purchase_only and await payment_crud.has_captured_payment(self.db, user.id):
            return "Coupon is valid on first purchase only"
        return None

    async def redeem(
        self, order: PaymentOrder, razorpay_payment_id: str, now: datetime
    ) -> Optional[CouponUsage]:
        """Stage the redemption of the order's coupon in the caller's transaction."""
        if not order.coupon_code:
            return None
        coupon = await coupon_crud.get_coupon_by_code(self.db, order.coupon_code)
        if coupon is None:
            logger.warning(f"Order {order.razorpay_order_id} references unknown coupon {order.coupon_code}")
            return None
        return await coupon_crud.record_usage_once(
            self.db,
            coupon_id=coupon.id,
            user_id=order.user_id,
            razorpay_payment_id=razorpay_payment_id,
            discount_amount=order.discount_amount,
            razorpay_order_id=order.razorpay_order_id,
            now=now,
        )

    async def create_coupon(self, admin: UserProfile, body: CreateCouponRequest) -> Coupon:
        """Create a coupon.

        Raises:
            ConflictError: The code is already taken
        """
        fields = body.model_dump(exclude={"code", "discount_type", "discount_value"})
        if fields["valid_until"] is not None:
            fields["valid_until"] = to_naive_utc(fields["valid_until"])
        coupon = await coupon_crud.create_coupon(
            self.db,
            body.code,
            body.discount_type,
            body.discount_value,
            created_by=admin.id,
            **fields,
        )
        if coupon is None:
            raise ConflictError("Coupon code already exists")
        logger.info(f"Admin {admin.id} created coupon {coupon.code}")
        return coupon

    async def update_coupon(self, coupon_id: UUID, body: UpdateCouponRequest) -> Coupon:
        """Change the activity, usage cap or expiry of a coupon.

        Raises:
            NotFoundError: Unknown coupon
        """
        coupon = await coupon_crud.get_coupon(self.db, coupon_id)
        if coupon is None:
            raise NotFoundError("Coupon not found")
        for field, value in body.model_dump(exclude_unset=True).items():
            if field == "is_active" and value is None:
                continue
            if field == "valid_until" and value is not None:
                value = to_naive_utc(value)
            setattr(coupon, field, value)
        await self.db.commit()
        await self.db.refresh(coupon)
        return coupon

    async def list_coupons(self, now: Optional[datetime] = None) -> list[CouponStats]:
        """All coupons, newest first, with their redemption counters."""
        now = now or utcnow()
        coupons = await coupon_crud.list_coupons(self.db)
        usage = await coupon_crud.count_usages_by_coupon(self.db)
        stats = []
        for coupon in coupons:
            used = usage.get(coupon.id, 0)
            stats.append(
                CouponStats.model_validate(coupon).model_copy(
                    update={
                        "usage_count": used,
                        "usage_percent": percent_used(used, coupon.max_uses),
                        "is_expired": coupon.valid_until is not None and coupon.valid_until < now,
                        "is_maxed_out": coupon.max_uses is not None and used >= coupon.max_uses,
                    }
                )
            )
        return stats

"""CRUD operations for coupons and their redemptions."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.coupon import Coupon, CouponUsage

logger = logging.getLogger(__name__)


async def get_coupon_by_code(db: AsyncSession, code: str) -> Coupon | None:
    """Codes are matched case-insensitively; they are stored upper-cased."""
    result = await db.execute(select(Coupon).where(Coupon.code == code.strip().upper()))
    return result.scalar_one_or_none()


async def get_coupon(db: AsyncSession, coupon_id: uuid.UUID) -> Coupon | None:
    result = await db.execute(select(Coupon).where(Coupon.id == coupon_id))
    return result.scalar_one_or_none()


async def list_coupons(db: AsyncSession) -> list[Coupon]:
    result = await db.execute(select(Coupon).order_by(desc(Coupon.created_at)))
    return list(result.scalars().all())


async def create_coupon(
    db: AsyncSession,
    code: str,
    discount_type: str,
    discount_value: int,
    created_by: uuid.UUID | None = None,
    **fields,
) -> Coupon | None:
    """
    Create a coupon.

    Args:
        db: Database session
        code: Coupon code (upper-cased before storing)
        discount_type: ``percent`` or ``fixed``
        discount_value: Percentage, or paise for fixed coupons
        created_by: Admin creating the coupon
        **fields: Optional restrictions (valid_until, max_uses, min_plan, ...)

    Returns:
        The new coupon, or None if the code is taken
    """
    code = code.strip().upper()
    if await get_coupon_by_code(db, code) is not None:
        return None

    coupon = Coupon(
        code=code,
        discount_type=discount_type,
        discount_value=discount_value,
        created_by=created_by,
        is_active=True,
        **fields,
    )
    try:
        async with db.begin_nested():
            db.add(coupon)
    except IntegrityError:
        logger.info(f"Coupon code {coupon.code} already exists")
        return None
    await db.commit()
    await db.refresh(coupon)
    return coupon


async def count_usages(db: AsyncSession, coupon_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon_id)
    )
    return result.scalar_one()


async def count_user_usages(db: AsyncSession, coupon_id: uuid.UUID, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(CouponUsage.id)).where(
            CouponUsage.coupon_id == coupon_id,
            CouponUsage.user_id == user_id,
        )
    )
    return result.scalar_one()


async def count_usages_by_coupon(db: AsyncSession) -> dict[uuid.UUID, int]:
    result = await db.execute(
        select(CouponUsage.coupon_id, func.count(CouponUsage.id)).group_by(CouponUsage.coupon_id)
    )
    return {coupon_id: count for coupon_id, count in result.all()}


async def record_usage_once(
    db: AsyncSession,
    coupon_id: uuid.UUID,
    user_id: uuid.UUID,
    razorpay_payment_id: str,
    discount_amount: int,
    razorpay_order_id: str | None = None,
    now: datetime | None = None,
) -> CouponUsage | None:
    """
    Record a redemption for a captured payment unless it is already recorded.

    Staged in the caller's transaction; the unique payment id makes a
    redelivered capture a no-op.

    Returns:
        The new usage, or None if the payment already redeemed the coupon
    """
    existing = await db.execute(
        select(CouponUsage.id).where(CouponUsage.razorpay_payment_id == razorpay_payment_id)
    )
    if existing.scalar_one_or_none() is not None:
        return None

    usage = CouponUsage(
        coupon_id=coupon_id,
        user_id=user_id,
        razorpay_order_id=razorpay_order_id,
        razorpay_payment_id=razorpay_payment_id,
        discount_amount=discount_amount,
    )
    if now is not None:
        usage.created_at = now
    try:
        async with db.begin_nested():
            db.add(usage)
    except IntegrityError:
        logger.info(f"Coupon usage for payment {razorpay_payment_id} already recorded")
        return None
    return usage

"""Coupon and coupon usage database models."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base
from app.core.time_utils import utcnow


class DiscountType:
    PERCENT = "percent"
    FIXED = "fixed"


class Coupon(Base):
    """Discount code applied at checkout.

    ``discount_value`` is a percentage (1-100) for percent coupons and an
    amount in paise for fixed coupons. Codes are stored upper-cased.
    """

    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        index=True,
        nullable=False,
    )
    discount_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    discount_value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    valid_until: Mapped[datetime | None] = mapped_column(nullable=True)
    max_uses: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )  # null = unlimited
    min_plan: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    first_purchase_only: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    per_user_limit: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )
    email_locked: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    campaign_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Coupon {self.code} {self.discount_type}={self.discount_value}>"


class CouponUsage(Base):
    """One row per captured payment that redeemed a coupon."""

    __tablename__ = "coupon_usages"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    razorpay_order_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    razorpay_payment_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )  # a payment redeems at most one coupon, once
    discount_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )  # paise
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<CouponUsage {self.coupon_id} payment={self.razorpay_payment_id}>"

"""Referral database model."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base
from app.core.time_utils import utcnow


class ReferralStatus:
    PENDING = "pending"
    SIGNED_UP = "signed_up"
    SUBSCRIBED = "subscribed"
    REWARDED = "rewarded"


# Status only ever moves forward along this order.
REFERRAL_STATUS_ORDER = [
    ReferralStatus.PENDING,
    ReferralStatus.SIGNED_UP,
    ReferralStatus.SUBSCRIBED,
    ReferralStatus.REWARDED,
]


class Referral(Base):
    """One row per (referrer, referred) pair; a user is referred at most once."""

    __tablename__ = "referrals"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    referrer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    referred_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    referral_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    reward_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reward_value: Mapped[int | None] = mapped_column(Integer, nullable=True)  # days
    reward_applied_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)

    # Fraud signals
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Referral {self.referrer_id} -> {self.referred_id} status={self.status}>"

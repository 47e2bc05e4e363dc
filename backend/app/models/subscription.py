"""Subscription database model."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base
from app.core.time_utils import utcnow


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a user's paid access."""

    TRIAL = "trial"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"
    PAUSED = "paused"


# None stands for "no subscription row yet".
ALLOWED_TRANSITIONS: dict[str | None, set[str]] = {
    None: {SubscriptionStatus.TRIAL.value, SubscriptionStatus.ACTIVE.value},
    SubscriptionStatus.TRIAL.value: {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.EXPIRED.value,
    },
    SubscriptionStatus.ACTIVE.value: {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.CANCELED.value,
        SubscriptionStatus.EXPIRED.value,
        SubscriptionStatus.PAUSED.value,
    },
    SubscriptionStatus.CANCELED.value: {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.EXPIRED.value,
    },
    SubscriptionStatus.EXPIRED.value: {SubscriptionStatus.ACTIVE.value},
    SubscriptionStatus.PAUSED.value: {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.EXPIRED.value,
    },
}


def can_transition(current: str | None, target: str) -> bool:
    """Whether the state machine permits ``current -> target``."""
    return target in ALLOWED_TRANSITIONS.get(current, set())


class Subscription(Base):
    """One logical subscription per user (unique on user_id)."""

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )  # null for trials and referral free months

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SubscriptionStatus.TRIAL.value,
    )

    # Trial window
    trial_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    trial_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Paid window
    subscription_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    subscription_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    auto_renew: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    canceled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Gateway identifiers (join keys for subscription.* webhooks)
    razorpay_customer_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    razorpay_subscription_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    # Relationships
    plan: Mapped["Plan | None"] = relationship(  # type: ignore
        "Plan",
        lazy="selectin",
    )

    def is_trial_active(self, now: datetime) -> bool:
        return (
            self.status == SubscriptionStatus.TRIAL.value
            and self.trial_expires_at is not None
            and now < self.trial_expires_at
        )

    def is_subscription_active(self, now: datetime) -> bool:
        return (
            self.status == SubscriptionStatus.ACTIVE.value
            and self.subscription_expires_at is not None
            and now < self.subscription_expires_at
        )

    def has_paid_access(self, now: datetime) -> bool:
        """Active, or canceled but still inside the paid period."""
        return (
            self.status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELED.value)
            and self.subscription_expires_at is not None
            and now < self.subscription_expires_at
        )

    def is_lapsed(self, now: datetime) -> bool:
        """Still flagged as granting access although its window has passed."""
        if self.status == SubscriptionStatus.TRIAL.value:
            return self.trial_expires_at is None or now >= self.trial_expires_at
        if self.status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELED.value):
            return self.subscription_expires_at is None or now >= self.subscription_expires_at
        return False

    def __repr__(self) -> str:
        """String representation."""
        return f"<Subscription user_id={self.user_id} status={self.status}>"

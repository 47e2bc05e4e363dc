"""Entitlement (per-user, per-feature usage counter) database model."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.core.time_utils import utcnow


class LimitType:
    DAILY = "daily"
    UNLIMITED = "unlimited"


class Entitlement(Base):
    """Usage allowance for one feature of one user."""

    __tablename__ = "entitlements"
    __table_args__ = (
        UniqueConstraint("user_id", "feature_slug", name="uq_entitlements_user_feature"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    feature_slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    limit_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LimitType.DAILY,
    )
    limit_value: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )  # ignored when unlimited
    usage_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    last_reset_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Entitlement user_id={self.user_id} feature={self.feature_slug} "
            f"{self.usage_count}/{self.limit_value} ({self.limit_type})>"
        )

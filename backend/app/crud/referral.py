"""CRUD operations for referrals."""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import supports_row_locks
from app.models.referral import REFERRAL_STATUS_ORDER, Referral, ReferralStatus


async def get_referral_by_referred(
    db: AsyncSession, referred_id: uuid.UUID, for_update: bool = False
) -> Referral | None:
    """
    Get the referral that brought a user in (a user is referred at most once).

    Args:
        db: Database session
        referred_id: The referred user's UUID
        for_update: Lock the row until the transaction ends (PostgreSQL)

    Returns:
        Referral or None
    """
    query = select(Referral).where(Referral.referred_id == referred_id)
    if for_update and supports_row_locks(db):
        query = query.with_for_update()
    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_referrals_by_referrer(db: AsyncSession, referrer_id: uuid.UUID) -> list[Referral]:
    result = await db.execute(
        select(Referral)
        .where(Referral.referrer_id == referrer_id)
        .order_by(Referral.created_at.desc())
    )
    return list(result.scalars().all())


async def get_all_referrals(
    db: AsyncSession, status: str | None = None, limit: int | None = None
) -> list[Referral]:
    """Referrals newest first, optionally filtered by status."""
    query = select(Referral).order_by(Referral.created_at.desc())
    if status:
        query = query.where(Referral.status == status)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_rewarded_since(
    db: AsyncSession, referrer_id: uuid.UUID, since: datetime
) -> int:
    """Rewarded referrals of a referrer with ``reward_applied_at >= since``."""
    result = await db.execute(
        select(func.count(Referral.id)).where(
            Referral.referrer_id == referrer_id,
            Referral.status == ReferralStatus.REWARDED,
            Referral.reward_applied_at >= since,
        )
    )
    return result.scalar_one()


async def count_by_ip(db: AsyncSession, referrer_id: uuid.UUID, ip_address: str) -> int:
    result = await db.execute(
        select(func.count(Referral.id)).where(
            Referral.referrer_id == referrer_id,
            Referral.ip_address == ip_address,
        )
    )
    return result.scalar_one()


async def count_by_device(
    db: AsyncSession, referrer_id: uuid.UUID, device_fingerprint: str
) -> int:
    result = await db.execute(
        select(func.count(Referral.id)).where(
            Referral.referrer_id == referrer_id,
            Referral.device_fingerprint == device_fingerprint,
        )
    )
    return result.scalar_one()


def advance_status(referral: Referral, target: str) -> bool:
    """
    Move a referral forward to ``target``.

    Status is monotonic: a request to move to an earlier (or the same)
    status is ignored.

    Returns:
        True if the status changed
    """
    current = REFERRAL_STATUS_ORDER.index(referral.status)
    if REFERRAL_STATUS_ORDER.index(target) <= current:
        return False
    referral.status = target
    return True

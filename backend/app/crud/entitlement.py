"""CRUD operations for entitlements (per-feature usage counters)."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.entitlement import Entitlement, LimitType

logger = logging.getLogger(__name__)


async def get_entitlement(
    db: AsyncSession, user_id: uuid.UUID, feature_slug: str
) -> Entitlement | None:
    result = await db.execute(
        select(Entitlement).where(
            Entitlement.user_id == user_id,
            Entitlement.feature_slug == feature_slug,
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_entitlement(
    db: AsyncSession,
    user_id: uuid.UUID,
    feature_slug: str,
    default_limit: int,
    now: datetime,
) -> Entitlement:
    """
    Load the entitlement row, creating the free-tier default if missing.

    A concurrent creator for the same (user, feature) hits the unique
    constraint; the loser rolls back its savepoint and re-reads the winner's row.

    Args:
        db: Database session
        user_id: User UUID
        feature_slug: Feature identifier
        default_limit: Daily limit for a new row
        now: Initial last_reset_at

    Returns:
        Entitlement row
    """
    entitlement = await get_entitlement(db, user_id, feature_slug)
    if entitlement is not None:
        return entitlement

    entitlement = Entitlement(
        user_id=user_id,
        feature_slug=feature_slug,
        limit_type=LimitType.DAILY,
        limit_value=default_limit,
        usage_count=0,
        last_reset_at=now,
    )
    try:
        async with db.begin_nested():
            db.add(entitlement)
    except IntegrityError:
        logger.info(f"Entitlement {feature_slug} for user {user_id} created concurrently, re-reading")
        entitlement = await get_entitlement(db, user_id, feature_slug)
        if entitlement is None:
            raise
    return entitlement


async def reset_daily_usage(
    db: AsyncSession,
    entitlement_id: uuid.UUID,
    observed_reset_at: datetime,
    now: datetime,
) -> bool:
    """
    Zero the counter, guarded on the ``last_reset_at`` the caller observed.

    Concurrent checks that saw the same stale window reset it exactly once;
    ``last_reset_at`` never moves backwards.

    Returns:
        True if this call performed the reset
    """
    result = await db.execute(
        update(Entitlement)
        .where(
            Entitlement.id == entitlement_id,
            Entitlement.last_reset_at == observed_reset_at,
            Entitlement.last_reset_at < now,
        )
        .values(usage_count=0, last_reset_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def increment_usage_if_allowed(
    db: AsyncSession, user_id: uuid.UUID, feature_slug: str
) -> bool:
    """
    Atomically consume one unit of a feature.

    Single conditional UPDATE, so concurrent increments can never push a daily
    counter past its limit.

    Returns:
        True if a unit was consumed
    """
    result = await db.execute(
        update(Entitlement)
        .where(
            Entitlement.user_id == user_id,
            Entitlement.feature_slug == feature_slug,
            or_(
                Entitlement.limit_type == LimitType.UNLIMITED,
                Entitlement.usage_count < Entitlement.limit_value,
            ),
        )
        .values(usage_count=Entitlement.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

"""CRUD operations for subscriptions."""

import uuid
from datetime import datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import Subscription, SubscriptionStatus


async def get_subscription_by_user(
    db: AsyncSession, user_id: uuid.UUID
) -> Subscription | None:
    """
    Get the (single) subscription row of a user, whatever its status.

    Args:
        db: Database session
        user_id: User UUID

    Returns:
        Subscription or None if the user never had one
    """
    result = await db.execute(
        select(Subscription).where(Subscription.user_id == user_id).execution_options(
            populate_existing=True
        )
    )
    return result.scalar_one_or_none()


async def get_subscription_by_gateway_ids(
    db: AsyncSession,
    gateway_subscription_id: str | None = None,
    customer_id: str | None = None,
) -> Subscription | None:
    """
    Find a subscription by its gateway identifiers.

    The gateway subscription id wins when both are given; the customer id is
    the fallback join key for events that only carry the customer.
    """
    if gateway_subscription_id:
        result = await db.execute(
            select(Subscription).where(
                Subscription.razorpay_subscription_id == gateway_subscription_id
            )
        )
        subscription = result.scalar_one_or_none()
        if subscription is not None:
            return subscription
    if customer_id:
        result = await db.execute(
            select(Subscription).where(Subscription.razorpay_customer_id == customer_id)
        )
        return result.scalars().first()
    return None


async def set_status_if_unchanged(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    observed_status: str,
    new_status: str,
    now: datetime,
) -> bool:
    """
    Compare-and-set the status of a subscription.

    Only updates the row if its status is still ``observed_status``, so two
    readers racing on the same lapsed row perform the transition once.

    Returns:
        True if this call changed the row
    """
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription_id,
            Subscription.status == observed_status,
        )
        .values(status=new_status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_lapsed_subscriptions(
    db: AsyncSession, now: datetime, limit: int = 500
) -> list[Subscription]:
    """Subscriptions still flagged trial/active/canceled whose window has passed."""
    result = await db.execute(
        select(Subscription)
        .where(
            or_(
                and_(
                    Subscription.status == SubscriptionStatus.TRIAL.value,
                    Subscription.trial_expires_at <= now,
                ),
                and_(
                    Subscription.status.in_(
                        [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELED.value]
                    ),
                    Subscription.subscription_expires_at <= now,
                ),
            )
        )
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_all_subscriptions(db: AsyncSession) -> list[Subscription]:
    """Snapshot of every subscription (revenue aggregation)."""
    result = await db.execute(select(Subscription))
    return list(result.scalars().all())

"""Entitlement ledger: decides whether a user may use a feature right now."""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.time_utils import utcnow
from app.crud import entitlement as entitlement_crud
from app.models.entitlement import LimitType
from app.models.subscription import SubscriptionStatus
from app.schemas.entitlement import EntitlementCheckResult
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

DAILY_WINDOW = timedelta(days=1)


class EntitlementService:
    """Per-user, per-feature access checks and usage counting.

    Checking never consumes: callers increment explicitly after a successful
    use, so the UI can check without spending a unit.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.subscriptions = SubscriptionService(db)

    async def check_entitlement(
        self,
        user_id: UUID,
        feature_slug: str,
        now: Optional[datetime] = None,
    ) -> EntitlementCheckResult:
        """Decide access for ``feature_slug``; the first matching rule wins.

        1. No subscription row: denied, upgrade required.
        2. Trial still running: allowed without touching counters. A lapsed
           trial is expired and evaluation falls through.
        3. Paid period still running (active, or canceled before period end):
           allowed without touching counters. A lapsed period is expired and
           evaluation falls through.
        4. Free tier: load or create the feature's counter.
        5. Unlimited counter: allowed.
        6. Daily counter older than a day: reset once, allowed.
        7. Under the limit: allowed.
        8. Otherwise denied, upgrade required.

        Args:
            user_id: User ID
            feature_slug: Feature identifier
            now: Current time (defaults to utcnow)

        Returns:
            EntitlementCheckResult
        """
        now = now or utcnow()

        subscription = await self.subscriptions.get_user_subscription(user_id)
        if subscription is None:
            return EntitlementCheckResult(
                allowed=False,
                reason="No subscription found",
                upgrade_required=True,
            )

        if subscription.status == SubscriptionStatus.TRIAL.value:
            if subscription.is_trial_active(now):
                return EntitlementCheckResult(allowed=True, reason="trial_active")
            await self.subscriptions.check_and_maybe_expire(subscription, now)

        if subscription.status in (
            SubscriptionStatus.ACTIVE.value,
            SubscriptionStatus.CANCELED.value,
        ):
            if subscription.has_paid_access(now):
                return EntitlementCheckResult(allowed=True, reason="subscription_active")
            await self.subscriptions.check_and_maybe_expire(subscription, now)

        entitlement = await entitlement_crud.get_or_create_entitlement(
            self.db,
            user_id,
            feature_slug,
            default_limit=settings.FREE_TIER_DAILY_LIMIT,
            now=now,
        )

        if entitlement.limit_type == LimitType.UNLIMITED:
            await self.db.commit()
            return EntitlementCheckResult(
                allowed=True,
                reason="unlimited",
                usage_count=entitlement.usage_count,
            )

        if (
            entitlement.limit_type == LimitType.DAILY
            and now - entitlement.last_reset_at >= DAILY_WINDOW
        ):
            reset = await entitlement_crud.reset_daily_usage(
                self.db, entitlement.id, entitlement.last_reset_at, now
            )
            await self.db.commit()
            await self.db.refresh(entitlement)
            if reset:
                logger.debug(f"Reset daily usage of {feature_slug} for user {user_id}")
            return EntitlementCheckResult(
                allowed=True,
                reason="daily_limit_reset",
                usage_count=entitlement.usage_count,
                limit_value=entitlement.limit_value,
            )

        await self.db.commit()

        limit_value = entitlement.limit_value or 0
        if entitlement.usage_count < limit_value:
            return EntitlementCheckResult(
                allowed=True,
                reason="within_limit",
                usage_count=entitlement.usage_count,
                limit_value=limit_value,
            )

        return EntitlementCheckResult(
            allowed=False,
            reason="limit_reached",
            usage_count=entitlement.usage_count,
            limit_value=limit_value,
            upgrade_required=True,
        )

    async def increment_usage(
        self,
        user_id: UUID,
        feature_slug: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Consume one unit of a feature after a successful use.

        Returns:
            True if a unit was consumed, False if the limit was already reached
        """
        now = now or utcnow()
        await entitlement_crud.get_or_create_entitlement(
            self.db,
            user_id,
            feature_slug,
            default_limit=settings.FREE_TIER_DAILY_LIMIT,
            now=now,
        )
        incremented = await entitlement_crud.increment_usage_if_allowed(
            self.db, user_id, feature_slug
        )
        await self.db.commit()
        if not incremented:
            logger.info(f"Usage of {feature_slug} for user {user_id} not incremented: limit reached")
        return incremented

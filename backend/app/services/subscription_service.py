"""Subscription lifecycle: trial, activation, renewal, cancellation and expiry."""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError
from app.core.time_utils import utcnow
from app.crud import audit as audit_crud
from app.crud import plan as plan_crud
from app.crud import subscription as subscription_crud
from app.models.plan import Plan
from app.models.subscription import Subscription, SubscriptionStatus, can_transition

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Service owning every state change of a user's subscription.

    Methods that are building blocks of a larger write (payment capture,
    referral reward) only stage changes on the session; the caller commits.
    User-facing operations commit themselves.
    """

    def __init__(self, db: AsyncSession):
        """Initialize subscription service.

        Args:
            db: Database session
        """
        self.db = db

    async def get_all_active_plans(self) -> list[Plan]:
        return await plan_crud.get_active_plans(self.db)

    async def get_user_subscription(self, user_id: UUID) -> Optional[Subscription]:
        """Get user's subscription row, whatever its status.

        Args:
            user_id: User ID

        Returns:
            Subscription if the user ever had one, None otherwise
        """
        return await subscription_crud.get_subscription_by_user(self.db, user_id)

    def transition(self, subscription: Optional[Subscription], target: str) -> None:
        """Validate a move of the state machine.

        Raises:
            ConflictError: If the move is not allowed from the current status
        """
        current = subscription.status if subscription is not None else None
        if not can_transition(current, target):
            raise ConflictError(f"Cannot move subscription from {current or 'none'} to {target}")

    async def start_trial(self, user_id: UUID, now: Optional[datetime] = None) -> Subscription:
        """Create the signup trial.

        Args:
            user_id: User ID
            now: Current time (defaults to utcnow)

        Returns:
            Created trial subscription

        Raises:
            ConflictError: If the user already has a subscription row
        """
        now = now or utcnow()
        existing = await self.get_user_subscription(user_id)
        if existing is not None:
            raise ConflictError("Subscription already exists")
        self.transition(None, SubscriptionStatus.TRIAL.value)

        subscription = Subscription(
            user_id=user_id,
            plan=None,
            status=SubscriptionStatus.TRIAL.value,
            trial_started_at=now,
            trial_expires_at=now + timedelta(days=settings.TRIAL_DURATION_DAYS),
            auto_renew=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(subscription)
        await self.db.flush()
        audit_crud.add_subscription_event(
            self.db,
            subscription,
            "trial_started",
            {"trial_expires_at": subscription.trial_expires_at.isoformat()},
            now=now,
        )
        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(f"Started {settings.TRIAL_DURATION_DAYS}-day trial for user {user_id}")
        return subscription

    async def activate_from_payment(
        self,
        user_id: UUID,
        plan: Plan,
        now: datetime,
        razorpay_customer_id: Optional[str] = None,
        razorpay_subscription_id: Optional[str] = None,
    ) -> Subscription:
        """Upsert the user's subscription to ``active`` for one plan period.

        The window is ``[now, now + plan.duration_days)``. Does not commit.

        Args:
            user_id: Paying user
            plan: Purchased plan
            now: Capture time
            razorpay_customer_id: Gateway customer, if known
            razorpay_subscription_id: Gateway subscription, if known

        Returns:
            The active subscription
        """
        subscription = await self.get_user_subscription(user_id)
        self.transition(subscription, SubscriptionStatus.ACTIVE.value)

        if subscription is None:
            subscription = Subscription(user_id=user_id, created_at=now)
            self.db.add(subscription)
            event_type = "subscription_created"
        else:
            event_type = (
                "subscription_renewed"
                if subscription.status == SubscriptionStatus.ACTIVE.value
                else "subscription_created"
            )

        subscription.plan = plan
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.subscription_started_at = now
        subscription.subscription_expires_at = now + timedelta(days=plan.duration_days)
        subscription.auto_renew = True
        subscription.canceled_at = None
        subscription.updated_at = now
        if razorpay_customer_id:
            subscription.razorpay_customer_id = razorpay_customer_id
        if razorpay_subscription_id:
            subscription.razorpay_subscription_id = razorpay_subscription_id

        await self.db.flush()
        audit_crud.add_subscription_event(
            self.db,
            subscription,
            event_type,
            {
                "plan": plan.slug,
                "expires_at": subscription.subscription_expires_at.isoformat(),
            },
            now=now,
        )
        logger.info(
            f"Activated {plan.slug} subscription for user {user_id} "
            f"until {subscription.subscription_expires_at.isoformat()}"
        )
        return subscription

    async def cancel_subscription(
        self, user_id: UUID, now: Optional[datetime] = None
    ) -> Subscription:
        """Cancel at period end.

        Only an ``active`` subscription can be canceled. Access continues until
        ``subscription_expires_at``, which is left untouched.

        Raises:
            NotFoundError: If the user has no subscription
            ConflictError: If the subscription is not active (row not modified)
        """
        now = now or utcnow()
        subscription = await self.get_user_subscription(user_id)
        if subscription is None:
            raise NotFoundError("No subscription found")
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise ConflictError(
                f"Only active subscriptions can be canceled (current status: {subscription.status})"
            )
        self.transition(subscription, SubscriptionStatus.CANCELED.value)

        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.canceled_at = now
        subscription.auto_renew = False
        subscription.updated_at = now

        details = {
            "access_until": subscription.subscription_expires_at.isoformat()
            if subscription.subscription_expires_at
            else None
        }
        audit_crud.add_subscription_event(
            self.db, subscription, "subscription_canceled", details, now=now
        )
        audit_crud.add_audit_log(
            self.db,
            user_id=user_id,
            action="subscription_canceled",
            resource_type="subscription",
            resource_id=str(subscription.id),
            details=details,
            now=now,
        )
        await self.db.commit()
        await self.db.refresh(subscription)

        logger.info(f"User {user_id} canceled subscription, access until {details['access_until']}")
        return subscription

    async def extend_for_recurring_charge(
        self, subscription: Subscription, now: datetime
    ) -> bool:
        """Extend an active subscription by one plan period. Does not commit.

        The new period starts at ``max(now, subscription_expires_at)`` so an
        early charge never shortens the paid window.

        Returns:
            True if the subscription was extended
        """
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            logger.warning(
                f"Recurring charge for subscription {subscription.id} ignored: status is {subscription.status}"
            )
            return False
        if subscription.plan is None:
            logger.warning(f"Recurring charge for subscription {subscription.id} has no plan to extend by")
            return False
        self.transition(subscription, SubscriptionStatus.ACTIVE.value)

        base = subscription.subscription_expires_at or now
        if base < now:
            base = now
        subscription.subscription_expires_at = base + timedelta(days=subscription.plan.duration_days)
        subscription.updated_at = now
        audit_crud.add_subscription_event(
            self.db,
            subscription,
            "subscription_renewed",
            {"expires_at": subscription.subscription_expires_at.isoformat()},
            now=now,
        )
        return True

    async def set_status_by_customer(
        self,
        target: str,
        now: datetime,
        razorpay_subscription_id: Optional[str] = None,
        razorpay_customer_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        """Apply a gateway-driven status change, joining on gateway ids. Does not commit.

        Gateway subscription events carry no local user id, so the row is
        found by the gateway subscription id, then by the customer id.
        Moves the state machine does not allow are logged and skipped, so a
        stale or out-of-order event never fails the delivery.

        Returns:
            The updated subscription, or None if nothing was changed
        """
        subscription = await subscription_crud.get_subscription_by_gateway_ids(
            self.db,
            gateway_subscription_id=razorpay_subscription_id,
            customer_id=razorpay_customer_id,
        )
        if subscription is None:
            logger.warning(
                f"No subscription for gateway subscription {razorpay_subscription_id} "
                f"/ customer {razorpay_customer_id}"
            )
            return None
        if subscription.status == target and target != SubscriptionStatus.ACTIVE.value:
            return None
        if not can_transition(subscription.status, target):
            logger.warning(
                f"Ignoring gateway move of subscription {subscription.id} "
                f"from {subscription.status} to {target}"
            )
            return None

        if target == SubscriptionStatus.ACTIVE.value:
            if not subscription.has_paid_access(now):
                duration = subscription.plan.duration_days if subscription.plan else 30
                subscription.subscription_started_at = now
                subscription.subscription_expires_at = now + timedelta(days=duration)
            subscription.auto_renew = True
            subscription.canceled_at = None
            event_type = "subscription_created"
        elif target == SubscriptionStatus.CANCELED.value:
            subscription.canceled_at = now
            subscription.auto_renew = False
            event_type = "subscription_canceled"
        else:
            event_type = f"subscription_{target}"

        if razorpay_subscription_id:
            subscription.razorpay_subscription_id = razorpay_subscription_id
        subscription.status = target
        subscription.updated_at = now
        audit_crud.add_subscription_event(
            self.db, subscription, event_type, {"source": "gateway"}, now=now
        )
        return subscription

    async def cancel_by_gateway_subscription(
        self, razorpay_subscription_id: str, now: datetime
    ) -> Optional[Subscription]:
        return await self.set_status_by_customer(
            SubscriptionStatus.CANCELED.value,
            now,
            razorpay_subscription_id=razorpay_subscription_id,
        )

    async def check_and_maybe_expire(
        self, subscription: Subscription, now: Optional[datetime] = None
    ) -> Subscription:
        """Move a lapsed subscription to ``expired``.

        The write is a compare-and-set on the observed status, so concurrent
        readers of the same lapsed row expire it once and the operation is
        idempotent. Commits when it changes the row.

        Returns:
            The (possibly refreshed) subscription
        """
        now = now or utcnow()
        if not subscription.is_lapsed(now):
            return subscription

        observed = subscription.status
        changed = await subscription_crud.set_status_if_unchanged(
            self.db,
            subscription.id,
            observed,
            SubscriptionStatus.EXPIRED.value,
            now,
        )
        if changed:
            audit_crud.add_subscription_event(
                self.db,
                subscription,
                "subscription_expired",
                {"previous_status": observed},
                now=now,
            )
            logger.info(f"Subscription {subscription.id} expired (was {observed})")
        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription

    async def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        """Sweep every lapsed subscription to ``expired``.

        Returns:
            Number of subscriptions expired by this sweep
        """
        now = now or utcnow()
        expired = 0
        for subscription in await subscription_crud.get_lapsed_subscriptions(self.db, now):
            observed = subscription.status
            await self.check_and_maybe_expire(subscription, now)
            if subscription.status != observed:
                expired += 1
        if expired:
            logger.info(f"Expired {expired} lapsed subscriptions")
        return expired

"""Referral program: tracking, status progression and capped rewards."""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.time_utils import month_start, utcnow
from app.crud import audit as audit_crud
from app.crud import outbox as outbox_crud
from app.crud import referral as referral_crud
from app.crud import user as user_crud
from app.models.referral import Referral, ReferralStatus
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.user import UserProfile
from app.schemas.referral import (
    ApplyRewardResult,
    ReferralResponse,
    ReferralStats,
    ReferralSummaryResponse,
    RewardHeadroom,
    TrackReferralResponse,
    ValidateCodeResponse,
)
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

REWARD_OUTBOX_KIND = "referral.reward"
MONTHLY_LIMIT_MESSAGE = "Monthly reward limit reached"


class ReferralService:
    """Service for referral tracking and reward application."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.subscriptions = SubscriptionService(db)

    async def validate_code(self, code: str) -> ValidateCodeResponse:
        referrer = await user_crud.get_user_by_referral_code(self.db, code)
        if referrer is None:
            return ValidateCodeResponse(valid=False, message="Invalid referral code")
        return ValidateCodeResponse(
            valid=True,
            code=referrer.referral_code,
            referrer_name=referrer.full_name,
        )

    async def track_referral(
        self,
        user: UserProfile,
        referral_code: str,
        ip_address: Optional[str] = None,
        device_fingerprint: Optional[str] = None,
    ) -> TrackReferralResponse:
        """Record that ``user`` signed up with ``referral_code``.

        Rejections (unknown code, self-referral, already referred, too many
        referrals from one IP or device for this referrer) are returned as
        ``success=False`` so they never block signup.

        Args:
            user: The referred (current) user
            referral_code: Code entered at signup
            ip_address: Client address, for fraud checks
            device_fingerprint: Client device fingerprint, for fraud checks

        Returns:
            TrackReferralResponse
        """
        referrer = await user_crud.get_user_by_referral_code(self.db, referral_code)
        if referrer is None:
            return TrackReferralResponse(success=False, message="Invalid referral code")
        if referrer.id == user.id:
            return TrackReferralResponse(success=False, message="Cannot refer yourself")
        if await referral_crud.get_referral_by_referred(self.db, user.id) is not None:
            return TrackReferralResponse(
                success=False, message="User already has a referral recorded"
            )
        if ip_address and (
            await referral_crud.count_by_ip(self.db, referrer.id, ip_address)
            >= settings.REFERRAL_MAX_PER_IP
        ):
            logger.warning(f"Referral from {ip_address} for referrer {referrer.id} over IP limit")
            return TrackReferralResponse(
                success=False, message="Referral limit reached for this IP"
            )
        if device_fingerprint and (
            await referral_crud.count_by_device(self.db, referrer.id, device_fingerprint)
            >= settings.REFERRAL_MAX_PER_DEVICE
        ):
            logger.warning(f"Referral device for referrer {referrer.id} over device limit")
            return TrackReferralResponse(
                success=False, message="Referral limit reached for this device"
            )

        referral = Referral(
            referrer_id=referrer.id,
            referred_id=user.id,
            referral_code=referrer.referral_code,
            status=ReferralStatus.SIGNED_UP,
            ip_address=ip_address,
            device_fingerprint=device_fingerprint,
        )
        self.db.add(referral)
        user.referred_by = referrer.id
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(referral)

        logger.info(f"Tracked referral {referrer.id} -> {user.id}")
        return TrackReferralResponse(
            success=True,
            message="Referral tracked successfully",
            referral=ReferralResponse.model_validate(referral),
        )

    async def mark_subscribed(self, referred_user_id: UUID, now: datetime) -> bool:
        """Advance the payer's referral to ``subscribed`` and queue its reward.

        Stages changes only; called inside the payment capture transaction so
        the reward message commits together with the payment.

        Returns:
            True if a reward was queued
        """
        referral = await referral_crud.get_referral_by_referred(self.db, referred_user_id)
        if referral is None:
            return False
        if not referral_crud.advance_status(referral, ReferralStatus.SUBSCRIBED):
            return False
        outbox_crud.enqueue(
            self.db,
            REWARD_OUTBOX_KIND,
            {"referred_user_id": str(referred_user_id)},
            now,
        )
        logger.info(f"Referral for user {referred_user_id} subscribed, reward queued")
        return True

    async def apply_reward(
        self, referred_user_id: UUID, now: Optional[datetime] = None
    ) -> ApplyRewardResult:
        """Reward the referrer of ``referred_user_id``.

        Runs as one transaction: the subscription change, the referral status,
        the subscription event and the audit entry commit together or not at
        all. Rewards are capped per referrer per calendar month.

        Args:
            referred_user_id: The user whose referral is being rewarded
            now: Current time (defaults to utcnow)

        Returns:
            ApplyRewardResult; ``success=False`` only when the monthly cap is hit
        """
        now = now or utcnow()
        referral = await referral_crud.get_referral_by_referred(
            self.db, referred_user_id, for_update=True
        )
        if referral is None:
            await self.db.commit()
            return ApplyRewardResult(success=True, message="No referral found")
        if referral.status == ReferralStatus.REWARDED:
            await self.db.commit()
            return ApplyRewardResult(
                success=True,
                message="Reward already applied",
                referrer_id=referral.referrer_id,
            )

        # Rewards for the same referrer serialize here, so the count below
        # cannot be read by two transactions that both grant.
        await user_crud.get_user_by_id(self.db, referral.referrer_id, for_update=True)
        rewarded_this_month = await referral_crud.count_rewarded_since(
            self.db, referral.referrer_id, month_start(now)
        )
        if rewarded_this_month >= settings.REFERRAL_MONTHLY_REWARD_CAP:
            await self.db.commit()
            logger.info(f"Referrer {referral.referrer_id} hit the monthly reward cap")
            return ApplyRewardResult(
                success=False,
                message=MONTHLY_LIMIT_MESSAGE,
                referrer_id=referral.referrer_id,
            )

        try:
            subscription, reward_type = await self._grant_reward_days(
                referral.referrer_id, settings.REFERRAL_REWARD_DAYS, now
            )
            audit_crud.add_subscription_event(
                self.db,
                subscription,
                "referral_reward",
                {
                    "referral_id": str(referral.id),
                    "reward_type": reward_type,
                    "days": settings.REFERRAL_REWARD_DAYS,
                },
                now=now,
            )
            referral_crud.advance_status(referral, ReferralStatus.REWARDED)
            referral.reward_type = reward_type
            referral.reward_value = settings.REFERRAL_REWARD_DAYS
            referral.reward_applied_at = now
            audit_crud.add_audit_log(
                self.db,
                user_id=referral.referrer_id,
                action="referral_reward_applied",
                resource_type="referral",
                resource_id=str(referral.id),
                details={
                    "referred_id": str(referred_user_id),
                    "reward_type": reward_type,
                    "reward_value": settings.REFERRAL_REWARD_DAYS,
                },
                now=now,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception(f"Failed to apply referral reward for user {referred_user_id}")
            raise

        logger.info(
            f"Applied {reward_type} reward to referrer {referral.referrer_id} "
            f"until {subscription.subscription_expires_at.isoformat()}"
        )
        return ApplyRewardResult(
            success=True,
            reward_type=reward_type,
            reward_value=settings.REFERRAL_REWARD_DAYS,
            referrer_id=referral.referrer_id,
            subscription_expires_at=subscription.subscription_expires_at,
        )

    async def _grant_reward_days(
        self, referrer_id: UUID, reward_days: int, now: datetime
    ) -> tuple[Subscription, str]:
        """Extend an active subscription, or grant a free month otherwise."""
        subscription = await self.subscriptions.get_user_subscription(referrer_id)
        reward = timedelta(days=reward_days)

        if subscription is not None and subscription.is_subscription_active(now):
            subscription.subscription_expires_at = subscription.subscription_expires_at + reward
            subscription.updated_at = now
            return subscription, "subscription_extension"

        self.subscriptions.transition(subscription, SubscriptionStatus.ACTIVE.value)
        if subscription is None:
            subscription = Subscription(
                user_id=referrer_id,
                plan=None,
                subscription_started_at=now,
                created_at=now,
            )
            self.db.add(subscription)
            base = now
        elif subscription.has_paid_access(now):
            # canceled but still inside the paid period
            base = subscription.subscription_expires_at
        else:
            base = now
            subscription.subscription_started_at = now

        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.subscription_expires_at = base + reward
        subscription.auto_renew = False
        subscription.canceled_at = None
        subscription.updated_at = now
        await self.db.flush()
        return subscription, "free_month"

    async def get_referral_summary(
        self, user: UserProfile, now: Optional[datetime] = None
    ) -> ReferralSummaryResponse:
        """Referral code, share link, funnel counts and this month's reward headroom."""
        now = now or utcnow()
        code = await user_crud.ensure_referral_code(self.db, user)
        referrals = await referral_crud.get_referrals_by_referrer(self.db, user.id)
        counts = Counter(referral.status for referral in referrals)

        stats = ReferralStats(
            total_referrals=len(referrals),
            pending_count=counts[ReferralStatus.PENDING],
            signed_up_count=counts[ReferralStatus.SIGNED_UP],
            subscribed_count=counts[ReferralStatus.SUBSCRIBED] + counts[ReferralStatus.REWARDED],
            rewarded_count=counts[ReferralStatus.REWARDED],
        )
        monthly = await referral_crud.count_rewarded_since(self.db, user.id, month_start(now))
        cap = settings.REFERRAL_MONTHLY_REWARD_CAP
        return ReferralSummaryResponse(
            referral_code=code,
            referral_link=f"{settings.SITE_URL}/signup?ref={code}",
            stats=stats,
            rewards=RewardHeadroom(
                monthly_count=monthly,
                max_per_month=cap,
                can_earn_more=monthly < cap,
                remaining_this_month=max(cap - monthly, 0),
            ),
            referrals=[ReferralResponse.model_validate(referral) for referral in referrals],
        )

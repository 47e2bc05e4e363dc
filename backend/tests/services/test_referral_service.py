"""Tests for referral tracking and capped rewards."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud import audit as audit_crud
from app.crud import referral as referral_crud
from app.crud import subscription as subscription_crud
from app.crud import user as user_crud
from app.models.referral import Referral, ReferralStatus
from app.services.referral_service import MONTHLY_LIMIT_MESSAGE, ReferralService


@pytest.fixture
def service(db_session: AsyncSession) -> ReferralService:
    return ReferralService(db_session)


async def subscribed_referral(db: AsyncSession, referrer, referred) -> Referral:
    referral = Referral(referrer_id=referrer.id, referred_id=referred.id, status=ReferralStatus.SUBSCRIBED)
    db.add(referral)
    await db.commit()
    return referral


class TestTracking:
    @pytest.mark.asyncio
    async def test_track_referral(self, service, db_session, student, other_student) -> None:
        result = await service.track_referral(other_student, student.referral_code.lower(), "1.2.3.4", "dev-1")

        assert result.success is True
        assert result.referral.referrer_id == student.id
        assert result.referral.status == ReferralStatus.SIGNED_UP
        assert other_student.referred_by == student.id

    @pytest.mark.asyncio
    async def test_invalid_code(self, service, other_student) -> None:
        result = await service.track_referral(other_student, "NOTACODE")

        assert result.success is False
        assert result.message == "Invalid referral code"

    @pytest.mark.asyncio
    async def test_self_referral(self, service, student) -> None:
        result = await service.track_referral(student, student.referral_code)

        assert result.success is False
        assert result.message == "Cannot refer yourself"

    @pytest.mark.asyncio
    async def test_referred_only_once(self, service, student, other_student, admin) -> None:
        await service.track_referral(other_student, student.referral_code)

        result = await service.track_referral(other_student, admin.referral_code)

        assert result.success is False

    @pytest.mark.asyncio
    async def test_ip_limit_per_referrer(self, service, db_session, student) -> None:
        for i in range(3):
            user = await user_crud.create_user(db_session, f"ip{i}@example.com")
            assert (await service.track_referral(user, student.referral_code, "9.9.9.9")).success

        fourth = await user_crud.create_user(db_session, "ip3@example.com")
        result = await service.track_referral(fourth, student.referral_code, "9.9.9.9")

        assert result.success is False
        assert result.message == "Referral limit reached for this IP"

    @pytest.mark.asyncio
    async def test_device_limit(self, service, db_session, student) -> None:
        for i in range(3):
            user = await user_crud.create_user(db_session, f"dev{i}@example.com")
            await service.track_referral(user, student.referral_code, device_fingerprint="fp")

        fourth = await user_crud.create_user(db_session, "dev3@example.com")
        result = await service.track_referral(fourth, student.referral_code, device_fingerprint="fp")

        assert result.message == "Referral limit reached for this device"

    @pytest.mark.asyncio
    async def test_validate_code(self, service, student) -> None:
        valid = await service.validate_code(student.referral_code)
        invalid = await service.validate_code("ZZZZZZZZ")

        assert valid.valid is True
        assert valid.referrer_name == "Test Student"
        assert invalid.valid is False


class TestMarkSubscribed:
    @pytest.mark.asyncio
    async def test_advances_and_queues_once(self, service, db_session, student, other_student, now) -> None:
        await service.track_referral(other_student, student.referral_code)

        assert await service.mark_subscribed(other_student.id, now) is True
        await db_session.commit()
        assert await service.mark_subscribed(other_student.id, now) is False

    @pytest.mark.asyncio
    async def test_without_referral(self, service, student, now) -> None:
        assert await service.mark_subscribed(student.id, now) is False


class TestApplyReward:
    @pytest.mark.asyncio
    async def test_free_month_for_referrer_without_subscription(
        self, service, db_session, student, other_student, now
    ) -> None:
        await subscribed_referral(db_session, student, other_student)

        result = await service.apply_reward(other_student.id, now)

        assert result.success is True
        assert result.reward_type == "free_month"
        assert result.reward_value == 30
        subscription = await subscription_crud.get_subscription_by_user(db_session, student.id)
        assert subscription.status == "active"
        assert subscription.subscription_expires_at == now + timedelta(days=30)
        referral = await referral_crud.get_referral_by_referred(db_session, other_student.id)
        assert referral.status == ReferralStatus.REWARDED
        assert referral.reward_applied_at == now
        logs = await audit_crud.get_audit_logs(db_session, user_id=student.id, action="referral_reward_applied")
        assert len(logs) == 1

    @pytest.mark.asyncio
    async def test_extends_active_subscription(
        self, service, db_session, student, other_student, plans, make_subscription, now
    ) -> None:
        expires = now + timedelta(days=10)
        await make_subscription(student, "active", plans["monthly"], subscription_expires_at=expires)
        await subscribed_referral(db_session, student, other_student)

        result = await service.apply_reward(other_student.id, now)

        assert result.reward_type == "subscription_extension"
        assert result.subscription_expires_at == expires + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_canceled_in_period_extends_from_period_end(
        self, service, db_session, student, other_student, plans, make_subscription, now
    ) -> None:
        expires = now + timedelta(days=4)
        await make_subscription(student, "canceled", plans["monthly"], subscription_expires_at=expires)
        await subscribed_referral(db_session, student, other_student)

        result = await service.apply_reward(other_student.id, now)

        assert result.reward_type == "free_month"
        assert result.subscription_expires_at == expires + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_reward_is_idempotent(self, service, db_session, student, other_student, now) -> None:
        await subscribed_referral(db_session, student, other_student)
        await service.apply_reward(other_student.id, now)

        again = await service.apply_reward(other_student.id, now + timedelta(hours=1))

        assert again.success is True
        assert again.message == "Reward already applied"
        subscription = await subscription_crud.get_subscription_by_user(db_session, student.id)
        assert subscription.subscription_expires_at == now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_no_referral(self, service, student, now) -> None:
        result = await service.apply_reward(student.id, now)

        assert result.success is True
        assert result.message == "No referral found"

    @pytest.mark.asyncio
    async def test_monthly_cap(self, service, db_session, student, now) -> None:
        referred = []
        for i in range(11):
            user = await user_crud.create_user(db_session, f"ref{i}@example.com")
            await subscribed_referral(db_session, student, user)
            referred.append(user)

        results = [await service.apply_reward(user.id, now) for user in referred]

        assert all(result.success for result in results[:10])
        assert results[10].success is False
        assert results[10].message == MONTHLY_LIMIT_MESSAGE
        assert await referral_crud.count_rewarded_since(db_session, student.id, datetime(2026, 3, 1)) == 10
        capped = await referral_crud.get_referral_by_referred(db_session, referred[10].id)
        assert capped.status == ReferralStatus.SUBSCRIBED

    @pytest.mark.asyncio
    async def test_referrer_locked_before_cap_count(
        self, service, db_session, student, other_student, now, monkeypatch
    ) -> None:
        await subscribed_referral(db_session, student, other_student)
        calls = []
        get_user_by_id = user_crud.get_user_by_id
        count_rewarded_since = referral_crud.count_rewarded_since

        async def recording_get_user(db, user_id, for_update=False):
            calls.append(("lock", user_id, for_update))
            return await get_user_by_id(db, user_id, for_update=for_update)

        async def recording_count(db, referrer_id, since):
            calls.append(("count", referrer_id))
            return await count_rewarded_since(db, referrer_id, since)

        monkeypatch.setattr(user_crud, "get_user_by_id", recording_get_user)
        monkeypatch.setattr(referral_crud, "count_rewarded_since", recording_count)

        result = await service.apply_reward(other_student.id, now)

        assert result.success is True
        assert calls[:2] == [("lock", student.id, True), ("count", student.id)]

    @pytest.mark.asyncio
    async def test_cap_resets_next_month(self, service, db_session, student, now) -> None:
        referred = []
        for i in range(11):
            user = await user_crud.create_user(db_session, f"cap{i}@example.com")
            await subscribed_referral(db_session, student, user)
            referred.append(user)
        for user in referred[:10]:
            await service.apply_reward(user.id, now)

        result = await service.apply_reward(referred[10].id, datetime(2026, 4, 1, 0, 0, 1))

        assert result.success is True


class TestSummary:
    @pytest.mark.asyncio
    async def test_summary_counts(self, service, db_session, student, other_student, admin, now) -> None:
        await subscribed_referral(db_session, student, other_student)
        await service.apply_reward(other_student.id, now)
        await service.track_referral(admin, student.referral_code)

        summary = await service.get_referral_summary(student, now)

        assert summary.referral_code == student.referral_code
        assert summary.referral_link.endswith(f"/signup?ref={student.referral_code}")
        assert summary.stats.total_referrals == 2
        assert summary.stats.signed_up_count == 1
        assert summary.stats.subscribed_count == 1
        assert summary.stats.rewarded_count == 1
        assert summary.rewards.monthly_count == 1
        assert summary.rewards.remaining_this_month == 9
        assert summary.rewards.can_earn_more is True

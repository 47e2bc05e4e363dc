"""Revenue aggregation for the admin dashboard.

Metrics are re-derived from subscription and transaction snapshots on every
request. Money is kept in paise as exact fractions and only rounded (half up)
when converted to rupees for output.
"""

import csv
import io
import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import Callable, Iterable, Optional, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.time_utils import add_months, month_start, utcnow
from app.crud import payment as payment_crud
from app.crud import referral as referral_crud
from app.crud import subscription as subscription_crud
from app.crud import user as user_crud
from app.crud import plan as plan_crud
from app.models.referral import ReferralStatus
from app.models.subscription import SubscriptionStatus
from app.schemas.revenue import (
    LeaderboardEntry,
    MRRTrendPoint,
    PlanDistributionEntry,
    ReferralAnalytics,
    ReferralOverview,
    RevenueDashboard,
    RevenueMetrics,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHURN_WINDOW = timedelta(days=30)
TREND_MONTHS = 12

# Billing periods per plan, used to normalise prices to a monthly rate.
PLAN_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "half-yearly": 6,
    "half_yearly": 6,
    "annual": 12,
}

DISTRIBUTION_BUCKETS = ["free", "trial", "monthly", "quarterly", "half-yearly", "annual"]

CSV_HEADER = [
    "Transaction ID",
    "Date",
    "User Email",
    "Plan",
    "Amount",
    "Discount",
    "Final Amount",
    "Coupon Code",
    "Payment Method",
    "Status",
    "Gateway Payment ID",
]


@dataclass(frozen=True)
class SubscriptionRecord:
    """Snapshot of the subscription fields the metrics need."""

    status: str
    plan_slug: Optional[str] = None
    plan_price: int = 0
    canceled_at: Optional[datetime] = None
    trial_started_at: Optional[datetime] = None
    subscription_started_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransactionRecord:
    user_id: UUID
    final_amount: int
    status: str = "captured"


@dataclass(frozen=True)
class ExportRow:
    """One payment transaction, joined with its user email and plan name."""

    id: UUID
    created_at: datetime
    user_email: Optional[str]
    plan_name: Optional[str]
    amount: int
    discount_amount: int
    final_amount: int
    coupon_code: Optional[str]
    payment_method: Optional[str]
    status: str
    razorpay_payment_id: Optional[str]


def round_half_up(value: Fraction, places: int = 0) -> Decimal:
    """Round an exact fraction to ``places`` decimals, halves away from zero."""
    scaled = abs(value) * 10**places
    rounded = math.floor(scaled + Fraction(1, 2))
    if value < 0:
        rounded = -rounded
    return Decimal(rounded).scaleb(-places)


def paise_to_rupees(paise: Fraction) -> int:
    return int(round_half_up(Fraction(paise) / 100))


def normalized_monthly_price(plan_slug: Optional[str], price: int) -> Fraction:
    """Plan price expressed per month; unknown slugs contribute 0."""
    months = PLAN_MONTHS.get(plan_slug or "")
    if months is None:
        return Fraction(0)
    return Fraction(price, months)


def compute_mrr(records: Iterable[SubscriptionRecord]) -> Fraction:
    """MRR in paise over subscriptions with status ``active``."""
    return sum(
        (
            normalized_monthly_price(record.plan_slug, record.plan_price)
            for record in records
            if record.status == SubscriptionStatus.ACTIVE.value
        ),
        Fraction(0),
    )


def compute_arr(mrr: Fraction) -> Fraction:
    return mrr * 12


def compute_churn_rate(records: list[SubscriptionRecord], now: datetime) -> float:
    """Percent of active + recently canceled subscriptions canceled in the last 30 days."""
    since = now - CHURN_WINDOW
    active = sum(1 for r in records if r.status == SubscriptionStatus.ACTIVE.value)
    canceled = sum(
        1
        for r in records
        if r.status == SubscriptionStatus.CANCELED.value
        and r.canceled_at is not None
        and r.canceled_at >= since
    )
    if active + canceled == 0:
        return 0.0
    return float(round_half_up(Fraction(canceled, active + canceled) * 100, 2))


def compute_trial_to_paid_rate(records: list[SubscriptionRecord], now: datetime) -> float:
    """Percent of trials started in the last 30 days that are now paying."""
    since = now - CHURN_WINDOW
    trials = [r for r in records if r.trial_started_at is not None and r.trial_started_at >= since]
    if not trials:
        return 0.0
    converted = sum(
        1
        for r in trials
        if r.status == SubscriptionStatus.ACTIVE.value and r.subscription_started_at is not None
    )
    return float(round_half_up(Fraction(converted, len(trials)) * 100, 2))


def compute_ltv(transactions: Iterable[TransactionRecord]) -> tuple[Fraction, Fraction, int]:
    """Total captured revenue, revenue per paying user (both paise) and paying users."""
    total = Fraction(0)
    users = set()
    for txn in transactions:
        if txn.status != "captured":
            continue
        total += txn.final_amount
        users.add(txn.user_id)
    if not users:
        return total, Fraction(0), 0
    return total, total / len(users), len(users)


def compute_plan_distribution(records: list[SubscriptionRecord]) -> list[PlanDistributionEntry]:
    counts = {bucket: 0 for bucket in DISTRIBUTION_BUCKETS}
    for record in records:
        if record.status == SubscriptionStatus.TRIAL.value:
            counts["trial"] += 1
        elif record.status == SubscriptionStatus.ACTIVE.value and record.plan_slug:
            counts[record.plan_slug] = counts.get(record.plan_slug, 0) + 1
        elif record.status in (SubscriptionStatus.EXPIRED.value, SubscriptionStatus.CANCELED.value):
            counts["free"] += 1

    total = len(records)
    return [
        PlanDistributionEntry(
            plan=plan,
            count=count,
            percentage=int(round_half_up(Fraction(count * 100, total))) if total else 0,
        )
        for plan, count in counts.items()
    ]


def compute_mrr_trend(
    records: list[SubscriptionRecord], now: datetime, months: int = TREND_MONTHS
) -> list[MRRTrendPoint]:
    """MRR of active subscriptions grouped by the month they started.

    A subscription only counts towards the month its current period started
    in, not towards later months it stayed active.
    """
    current = month_start(now)
    trend = []
    for offset in range(months - 1, -1, -1):
        start = add_months(current, -offset)
        end = add_months(start, 1)
        in_month = [
            r
            for r in records
            if r.subscription_started_at is not None and start <= r.subscription_started_at < end
        ]
        trend.append(
            MRRTrendPoint(month=start.strftime("%b %Y"), mrr=paise_to_rupees(compute_mrr(in_month)))
        )
    return trend


def to_fixed(value: float, places: int) -> str:
    """Format a float like ``Number.prototype.toFixed``.

    The exact binary value of ``value`` is rounded half up, so ``1.005``
    (stored as 1.00499999...) gives ``"1.00"``.
    """
    quantum = Decimal(1).scaleb(-places)
    return f"{Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP):.{places}f}"


def compute_referral_kfactor(
    total_referrals: int, subscribed_referrals: int, total_users: int
) -> ReferralOverview:
    """Conversion rate, referrals per user and K-factor as display strings.

    Each factor is formatted first; the K-factor is the float product of the
    parsed display strings, matching the analytics page digit for digit.
    """
    if total_referrals > 0:
        conversion = to_fixed(subscribed_referrals / total_referrals * 100, 2)
    else:
        conversion = "0"

    if total_users > 0 and total_referrals:
        per_user = to_fixed(total_referrals / total_users, 3)
    else:
        per_user = to_fixed(0.0, 3)

    k_factor = to_fixed(float(per_user) * float(conversion) / 100, 3)
    return ReferralOverview(
        total_referrals=total_referrals,
        total_users=total_users,
        conversion_rate=f"{conversion}%",
        k_factor=k_factor,
        referrals_per_user=to_fixed(float(per_user), 2),
    )


def build_transactions_csv(rows: Iterable[ExportRow]) -> str:
    """CSV export with a fixed header; every field is double-quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in rows:
        writer.writerow(
            [
                str(row.id),
                row.created_at.strftime("%Y-%m-%d"),
                row.user_email or "N/A",
                row.plan_name or "N/A",
                f"{round_half_up(Fraction(row.amount, 100), 2):.2f}",
                f"{round_half_up(Fraction(row.discount_amount, 100), 2):.2f}",
                f"{round_half_up(Fraction(row.final_amount, 100), 2):.2f}",
                row.coupon_code or "",
                row.payment_method or "",
                row.status,
                row.razorpay_payment_id or "",
            ]
        )
    return buffer.getvalue()


def _degrade(name: str, compute: Callable[[], T], default: T) -> T:
    """Run one metric; a failure zeroes that metric only."""
    try:
        return compute()
    except Exception:
        logger.exception(f"Revenue metric '{name}' failed, reporting {default!r}")
        return default


class RevenueService:
    """Loads snapshots from the store and feeds them to the metric functions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_subscription_records(self) -> list[SubscriptionRecord]:
        return [
            SubscriptionRecord(
                status=sub.status,
                plan_slug=sub.plan.slug if sub.plan else None,
                plan_price=sub.plan.price if sub.plan else 0,
                canceled_at=sub.canceled_at,
                trial_started_at=sub.trial_started_at,
                subscription_started_at=sub.subscription_started_at,
            )
            for sub in await subscription_crud.get_all_subscriptions(self.db)
        ]

    async def load_transaction_records(self) -> list[TransactionRecord]:
        return [
            TransactionRecord(user_id=txn.user_id, final_amount=txn.final_amount, status=txn.status)
            for txn in await payment_crud.get_transactions(self.db, status="captured")
        ]

    async def get_dashboard(self, now: Optional[datetime] = None) -> RevenueDashboard:
        """Compute every dashboard metric; each one degrades to 0 independently.

        Args:
            now: Reference time (defaults to utcnow)

        Returns:
            RevenueDashboard
        """
        now = now or utcnow()
        try:
            records = await self.load_subscription_records()
        except Exception:
            logger.exception("Failed to load subscriptions for revenue dashboard")
            records = []
        try:
            transactions = await self.load_transaction_records()
        except Exception:
            logger.exception("Failed to load transactions for revenue dashboard")
            transactions = []

        mrr = _degrade("mrr", lambda: compute_mrr(records), Fraction(0))
        total_revenue, ltv, customers = _degrade(
            "ltv", lambda: compute_ltv(transactions), (Fraction(0), Fraction(0), 0)
        )
        metrics = RevenueMetrics(
            mrr=paise_to_rupees(mrr),
            arr=paise_to_rupees(compute_arr(mrr)),
            active_subscriptions=_degrade(
                "active_subscriptions",
                lambda: sum(1 for r in records if r.status == SubscriptionStatus.ACTIVE.value),
                0,
            ),
            trial_subscriptions=_degrade(
                "trial_subscriptions",
                lambda: sum(1 for r in records if r.status == SubscriptionStatus.TRIAL.value),
                0,
            ),
            churn_rate=_degrade("churn_rate", lambda: compute_churn_rate(records, now), 0.0),
            trial_to_paid_rate=_degrade(
                "trial_to_paid_rate", lambda: compute_trial_to_paid_rate(records, now), 0.0
            ),
            ltv=paise_to_rupees(ltv),
            total_revenue=paise_to_rupees(total_revenue),
            unique_customers=customers,
        )
        return RevenueDashboard(
            metrics=metrics,
            plan_distribution=_degrade(
                "plan_distribution", lambda: compute_plan_distribution(records), []
            ),
            mrr_trend=_degrade("mrr_trend", lambda: compute_mrr_trend(records, now), []),
        )

    async def export_transactions_csv(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> str:
        """CSV of payment transactions in ``[start, end)``, newest first."""
        transactions = await payment_crud.get_transactions(self.db, start=start, end=end)
        emails = await user_crud.get_emails_by_ids(self.db, {txn.user_id for txn in transactions})
        plan_names = {}
        for plan_id in {txn.plan_id for txn in transactions if txn.plan_id}:
            plan = await plan_crud.get_plan_by_id(self.db, plan_id)
            if plan is not None:
                plan_names[plan_id] = plan.name
        rows = [
            ExportRow(
                id=txn.id,
                created_at=txn.created_at,
                user_email=emails.get(txn.user_id),
                plan_name=plan_names.get(txn.plan_id) if txn.plan_id else None,
                amount=txn.amount,
                discount_amount=txn.discount_amount,
                final_amount=txn.final_amount,
                coupon_code=txn.coupon_code,
                payment_method=txn.payment_method,
                status=txn.status,
                razorpay_payment_id=txn.razorpay_payment_id,
            )
            for txn in transactions
        ]
        return build_transactions_csv(rows)

    async def get_referral_analytics(self, now: Optional[datetime] = None) -> ReferralAnalytics:
        """Referral funnel, K-factor, six-month trend and leaderboard."""
        now = now or utcnow()
        referrals = await referral_crud.get_all_referrals(self.db)
        total_users = await user_crud.count_users(self.db)
        status_counts = Counter(r.status for r in referrals)

        overview = compute_referral_kfactor(
            total_referrals=len(referrals),
            subscribed_referrals=status_counts[ReferralStatus.SUBSCRIBED],
            total_users=total_users,
        )

        since = now - timedelta(days=180)
        monthly = Counter(
            r.created_at.strftime("%Y-%m") for r in referrals if r.created_at >= since
        )

        rewarded = [r for r in referrals if r.status == ReferralStatus.REWARDED]
        per_referrer = Counter(r.referrer_id for r in rewarded)
        leaderboard = []
        for referrer_id, count in per_referrer.most_common(10):
            profile = await user_crud.get_user_by_id(self.db, referrer_id)
            leaderboard.append(
                LeaderboardEntry(
                    user_id=referrer_id,
                    full_name=profile.full_name if profile else None,
                    referral_code=profile.referral_code if profile else None,
                    count=count,
                )
            )

        timed = [r for r in rewarded if r.reward_applied_at is not None]
        avg_days = "0"
        if timed:
            total_days = sum(
                Fraction(int((r.reward_applied_at - r.created_at).total_seconds()), 86400)
                for r in timed
            )
            avg_days = f"{round_half_up(total_days / len(timed), 1):.1f}"

        return ReferralAnalytics(
            overview=overview,
            status_breakdown=dict(status_counts),
            monthly_trend=dict(sorted(monthly.items())),
            leaderboard=leaderboard,
            total_rewards=len(rewarded),
            avg_days_to_reward=avg_days,
        )

"""Revenue and referral analytics schemas (admin)."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RevenueMetrics(BaseModel):
    """Headline metrics; money in whole rupees, rates in percent."""

    mrr: int = Field(0, description="Monthly recurring revenue")
    arr: int = Field(0, description="Annual recurring revenue")
    active_subscriptions: int = 0
    trial_subscriptions: int = 0
    churn_rate: float = Field(0, description="Trailing 30-day churn")
    trial_to_paid_rate: float = Field(0, description="Trailing 30-day trial conversion")
    ltv: int = Field(0, description="Captured revenue per paying user")
    total_revenue: int = 0
    unique_customers: int = 0


class PlanDistributionEntry(BaseModel):
    plan: str
    count: int
    percentage: int


class MRRTrendPoint(BaseModel):
    month: str = Field(..., description="Month label, e.g. 'Jan 2026'")
    mrr: int = Field(..., description="MRR of subscriptions started that month (rupees)")


class RevenueDashboard(BaseModel):
    """Revenue dashboard; any metric that fails to compute is reported as 0."""

    metrics: RevenueMetrics
    plan_distribution: list[PlanDistributionEntry] = Field(default_factory=list)
    mrr_trend: list[MRRTrendPoint] = Field(default_factory=list)


class ReferralOverview(BaseModel):
    total_referrals: int = 0
    total_users: int = 0
    conversion_rate: str = Field("0%", description="Subscribed share of referrals, e.g. '25.00%'")
    k_factor: str = Field("0.000", description="Viral coefficient")
    referrals_per_user: str = "0.00"


class LeaderboardEntry(BaseModel):
    user_id: UUID
    full_name: Optional[str] = None
    referral_code: Optional[str] = None
    count: int


class ReferralAnalytics(BaseModel):
    """Referral program funnel and viral coefficient."""

    overview: ReferralOverview
    status_breakdown: dict[str, int] = Field(default_factory=dict)
    monthly_trend: dict[str, int] = Field(default_factory=dict, description="Referrals per YYYY-MM")
    leaderboard: list[LeaderboardEntry] = Field(default_factory=list)
    total_rewards: int = 0
    avg_days_to_reward: str = "0"

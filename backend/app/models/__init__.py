"""SQLAlchemy database models."""

from app.models.user import UserProfile
from app.models.plan import Plan
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.entitlement import Entitlement
from app.models.payment import Invoice, PaymentOrder, PaymentTransaction
from app.models.coupon import Coupon, CouponUsage
from app.models.referral import Referral
from app.models.audit import AuditLog, SubscriptionEvent
from app.models.outbox import OutboxMessage
from app.models.schedule import ScheduleTask, StudySchedule
from app.models.answer import AnswerEvaluation, AnswerSubmission

__all__ = [
    "UserProfile",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "Entitlement",
    "PaymentOrder",
    "Invoice",
    "PaymentTransaction",
    "Coupon",
    "CouponUsage",
    "Referral",
    "AuditLog",
    "SubscriptionEvent",
    "OutboxMessage",
    "StudySchedule",
    "ScheduleTask",
    "AnswerSubmission",
    "AnswerEvaluation",
]

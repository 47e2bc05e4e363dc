"""Helpers for audit log and subscription event rows.

These only add rows to the session; the calling service owns the commit so
the history is written in the same transaction as the change it describes.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog, SubscriptionEvent
from app.models.subscription import Subscription


def add_audit_log(
    db: AsyncSession,
    user_id: uuid.UUID | None,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
    )
    if now is not None:
        entry.created_at = now
    db.add(entry)
    return entry


def add_subscription_event(
    db: AsyncSession,
    subscription: Subscription,
    event_type: str,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> SubscriptionEvent:
    """The subscription must already have been flushed (its id is needed)."""
    event = SubscriptionEvent(
        subscription_id=subscription.id,
        user_id=subscription.user_id,
        event_type=event_type,
        details=details or {},
    )
    if now is not None:
        event.created_at = now
    db.add(event)
    return event


async def get_subscription_events(
    db: AsyncSession, subscription_id: uuid.UUID
) -> list[SubscriptionEvent]:
    result = await db.execute(
        select(SubscriptionEvent)
        .where(SubscriptionEvent.subscription_id == subscription_id)
        .order_by(SubscriptionEvent.created_at)
    )
    return list(result.scalars().all())


async def get_audit_logs(
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
    action: str | None = None,
) -> list[AuditLog]:
    query = select(AuditLog)
    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
    if action is not None:
        query = query.where(AuditLog.action == action)
    result = await db.execute(query.order_by(AuditLog.created_at))
    return list(result.scalars().all())

"""CRUD operations for outbox messages."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import supports_row_locks
from app.models.outbox import OutboxMessage, OutboxStatus


def enqueue(db: AsyncSession, kind: str, payload: dict[str, Any], now: datetime) -> OutboxMessage:
    """Add a message to the caller's session; it is committed with the caller's write."""
    message = OutboxMessage(
        kind=kind,
        payload=payload,
        status=OutboxStatus.PENDING,
        attempts=0,
        available_at=now,
    )
    db.add(message)
    return message


async def get_due_messages(db: AsyncSession, now: datetime, limit: int) -> list[OutboxMessage]:
    """Pending messages whose backoff has elapsed, oldest first."""
    query = (
        select(OutboxMessage)
        .where(
            OutboxMessage.status == OutboxStatus.PENDING,
            OutboxMessage.available_at <= now,
        )
        .order_by(OutboxMessage.created_at)
        .limit(limit)
    )
    if supports_row_locks(db):
        query = query.with_for_update(skip_locked=True)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_message(db: AsyncSession, message_id: uuid.UUID) -> OutboxMessage | None:
    result = await db.execute(
        select(OutboxMessage)
        .where(OutboxMessage.id == message_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

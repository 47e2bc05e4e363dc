"""Outbox consumer: runs follow-up work queued by committed writes."""

import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.time_utils import utcnow
from app.crud import outbox as outbox_crud
from app.models.outbox import OutboxStatus
from app.services.evaluation_service import EVALUATE_OUTBOX_KIND, EvaluationService
from app.services.referral_service import REWARD_OUTBOX_KIND, ReferralService

logger = structlog.get_logger()

# Claimed messages are hidden from other consumers for this long.
CLAIM_LEASE = timedelta(minutes=5)

Handler = Callable[[AsyncSession, dict[str, Any], datetime], Awaitable[None]]


def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff: 2, 4, 8, ... minutes after the 1st, 2nd, 3rd failure."""
    return timedelta(minutes=2**attempts)


async def _apply_referral_reward(db: AsyncSession, payload: dict[str, Any], now: datetime) -> None:
    result = await ReferralService(db).apply_reward(uuid.UUID(payload["referred_user_id"]), now)
    if not result.success:
        logger.info("outbox.reward_skipped", reason=result.message, referrer_id=str(result.referrer_id))


async def _evaluate_answer(db: AsyncSession, payload: dict[str, Any], now: datetime) -> None:
    await EvaluationService(db).evaluate_submission(uuid.UUID(payload["submission_id"]), now=now)


HANDLERS: dict[str, Handler] = {
    REWARD_OUTBOX_KIND: _apply_referral_reward,
    EVALUATE_OUTBOX_KIND: _evaluate_answer,
}


class OutboxProcessor:
    """Claims due messages and dispatches them by kind.

    Delivery is at-least-once; every handler is idempotent.
    """

    def __init__(self, db: AsyncSession, handlers: Optional[dict[str, Handler]] = None):
        self.db = db
        self.handlers = handlers if handlers is not None else HANDLERS

    async def claim(self, now: datetime) -> list[uuid.UUID]:
        messages = await outbox_crud.get_due_messages(self.db, now, settings.OUTBOX_BATCH_SIZE)
        for message in messages:
            message.available_at = now + CLAIM_LEASE
        ids = [message.id for message in messages]
        await self.db.commit()
        return ids

    async def process_pending(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Process every due message once.

        Args:
            now: Current time (defaults to utcnow)

        Returns:
            Counts of messages done, retried and failed
        """
        now = now or utcnow()
        stats = {"done": 0, "retried": 0, "failed": 0}
        for message_id in await self.claim(now):
            outcome = await self._process_one(message_id, now)
            if outcome:
                stats[outcome] += 1
        if any(stats.values()):
            logger.info("outbox.batch_processed", **stats)
        return stats

    async def _process_one(self, message_id: uuid.UUID, now: datetime) -> Optional[str]:
        message = await outbox_crud.get_message(self.db, message_id)
        if message is None or message.status != OutboxStatus.PENDING:
            return None
        kind, payload = message.kind, dict(message.payload)

        handler = self.handlers.get(kind)
        error: Optional[str] = None
        permanent = False
        if handler is None:
            error, permanent = f"No handler for message kind '{kind}'", True
        else:
            try:
                await handler(self.db, payload, now)
            except NotFoundError as exc:
                await self.db.rollback()
                error, permanent = exc.message, True
            except Exception as exc:
                await self.db.rollback()
                error = f"{type(exc).__name__}: {exc}"

        # handlers commit or roll back, so reload before updating
        message = await outbox_crud.get_message(self.db, message_id)
        if message is None:
            return None

        if error is None:
            message.status = OutboxStatus.DONE
            message.processed_at = now
            message.last_error = None
            await self.db.commit()
            logger.info("outbox.done", message_id=str(message_id), kind=kind)
            return "done"

        message.attempts += 1
        message.last_error = error
        if permanent or message.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
            message.status = OutboxStatus.FAILED
            message.processed_at = now
            outcome = "failed"
            logger.error("outbox.failed", message_id=str(message_id), kind=kind, attempts=message.attempts, error=error)
        else:
            message.available_at = now + retry_delay(message.attempts)
            outcome = "retried"
            logger.warning("outbox.retry", message_id=str(message_id), kind=kind, attempts=message.attempts, error=error)
        await self.db.commit()
        return outcome

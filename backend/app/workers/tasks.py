"""Celery background tasks: outbox delivery and subscription expiry."""

import asyncio
from typing import Any, Callable, Coroutine

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import AsyncSessionLocal
from app.core.time_utils import utcnow
from app.services.outbox_service import OutboxProcessor
from app.services.subscription_service import SubscriptionService
from app.workers.celery_app import celery_app

logger = structlog.get_logger()

SessionFactory = Callable[[], AsyncSession]


def _run(coro: Coroutine[Any, Any, dict[str, Any]]) -> dict[str, Any]:
    # Get or create event loop for Celery solo pool
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop.run_until_complete(coro)


async def run_outbox_batch(session_factory: SessionFactory = AsyncSessionLocal) -> dict[str, Any]:
    """
    Deliver one batch of due outbox messages.

    Returns:
        Counts of messages done, retried and failed
    """
    async with session_factory() as db:
        stats = await OutboxProcessor(db).process_pending(utcnow())
    return {"status": "success", **stats}


async def run_expiry_sweep(session_factory: SessionFactory = AsyncSessionLocal) -> dict[str, Any]:
    """
    Expire every trial or paid period that has lapsed.

    Returns:
        Number of subscriptions expired
    """
    async with session_factory() as db:
        expired = await SubscriptionService(db).expire_lapsed(utcnow())
    logger.info("subscriptions.expiry_sweep", expired=expired)
    return {"status": "success", "expired": expired}


@celery_app.task(name="app.workers.tasks.process_outbox")
def process_outbox() -> dict[str, Any]:
    """Periodic outbox consumer (every minute)."""
    try:
        return _run(run_outbox_batch())
    except Exception as e:
        logger.error("outbox.batch_failed", error=str(e))
        raise


@celery_app.task(name="app.workers.tasks.expire_lapsed_subscriptions")
def expire_lapsed_subscriptions() -> dict[str, Any]:
    """Periodic sweep moving lapsed subscriptions to expired (hourly)."""
    try:
        return _run(run_expiry_sweep())
    except Exception as e:
        logger.error("subscriptions.expiry_sweep_failed", error=str(e))
        raise

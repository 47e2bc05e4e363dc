"""CRUD operations for payment orders, invoices and transactions."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment import Invoice, OrderStatus, PaymentOrder, PaymentTransaction

logger = logging.getLogger(__name__)


async def create_order(
    db: AsyncSession,
    user_id: uuid.UUID,
    plan_slug: str,
    amount: int,
    currency: str,
    razorpay_order_id: str,
    discount_amount: int = 0,
    coupon_code: str | None = None,
) -> PaymentOrder:
    """
    Store a checkout attempt created at the gateway.

    Args:
        db: Database session
        user_id: Paying user
        plan_slug: Plan being purchased
        amount: Amount charged in paise (after discount)
        currency: ISO currency code
        razorpay_order_id: Gateway order id
        discount_amount: Coupon discount in paise
        coupon_code: Redeemed coupon, if any

    Returns:
        Created order
    """
    order = PaymentOrder(
        user_id=user_id,
        plan_slug=plan_slug,
        amount=amount,
        discount_amount=discount_amount,
        coupon_code=coupon_code,
        currency=currency,
        status=OrderStatus.CREATED,
        razorpay_order_id=razorpay_order_id,
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)
    return order


async def get_order_by_gateway_id(
    db: AsyncSession, razorpay_order_id: str
) -> PaymentOrder | None:
    result = await db.execute(
        select(PaymentOrder).where(PaymentOrder.razorpay_order_id == razorpay_order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def mark_order_paid(
    db: AsyncSession,
    order_id: uuid.UUID,
    razorpay_payment_id: str,
    now: datetime,
) -> bool:
    """
    Compare-and-set an order to ``paid``.

    Exactly one caller wins for a given order, whether the duplicate comes
    from a redelivered webhook or from the client-side verify racing the
    webhook. Only the winner may apply the follow-up writes.

    Returns:
        True if this call moved the order to paid
    """
    result = await db.execute(
        update(PaymentOrder)
        .where(
            PaymentOrder.id == order_id,
            PaymentOrder.status != OrderStatus.PAID,
        )
        .values(
            status=OrderStatus.PAID,
            razorpay_payment_id=razorpay_payment_id,
            paid_at=now,
            error_message=None,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_order_failed(
    db: AsyncSession, razorpay_order_id: str, error_message: str | None
) -> bool:
    """A paid order never goes back to failed."""
    result = await db.execute(
        update(PaymentOrder)
        .where(
            PaymentOrder.razorpay_order_id == razorpay_order_id,
            PaymentOrder.status != OrderStatus.PAID,
        )
        .values(status=OrderStatus.FAILED, error_message=error_message)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_invoice_by_payment_id(
    db: AsyncSession, razorpay_payment_id: str
) -> Invoice | None:
    result = await db.execute(
        select(Invoice).where(Invoice.razorpay_payment_id == razorpay_payment_id)
    )
    return result.scalar_one_or_none()


async def insert_invoice_once(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    razorpay_payment_id: str,
    razorpay_order_id: str | None = None,
    now: datetime | None = None,
) -> Invoice | None:
    """
    Insert the invoice for a payment id unless one already exists.

    The unique constraint on ``razorpay_payment_id`` is the idempotency key;
    a concurrent duplicate is rolled back to its savepoint.

    Returns:
        The new invoice, or None if the payment was already invoiced
    """
    if await get_invoice_by_payment_id(db, razorpay_payment_id) is not None:
        return None

    invoice = Invoice(
        user_id=user_id,
        amount=amount,
        status="paid",
        razorpay_payment_id=razorpay_payment_id,
        razorpay_order_id=razorpay_order_id,
    )
    if now is not None:
        invoice.created_at = now
    try:
        async with db.begin_nested():
            db.add(invoice)
    except IntegrityError:
        logger.info(f"Invoice for payment {razorpay_payment_id} already recorded")
        return None
    return invoice


async def record_transaction_once(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: str,
    razorpay_payment_id: str,
    razorpay_order_id: str | None = None,
    plan_id: uuid.UUID | None = None,
    amount: int = 0,
    discount_amount: int = 0,
    coupon_code: str | None = None,
    payment_method: str | None = None,
    error_code: str | None = None,
    error_description: str | None = None,
    now: datetime | None = None,
) -> PaymentTransaction | None:
    """
    Append a ledger row for a gateway payment, once per payment id.

    Returns:
        The new transaction, or None if the payment was already recorded
    """
    existing = await db.execute(
        select(PaymentTransaction.id).where(
            PaymentTransaction.razorpay_payment_id == razorpay_payment_id
        )
    )
    if existing.scalar_one_or_none() is not None:
        return None

    transaction = PaymentTransaction(
        user_id=user_id,
        plan_id=plan_id,
        razorpay_order_id=razorpay_order_id,
        razorpay_payment_id=razorpay_payment_id,
        amount=amount,
        discount_amount=discount_amount,
        final_amount=amount - discount_amount,
        coupon_code=coupon_code,
        payment_method=payment_method,
        status=status,
        error_code=error_code,
        error_description=error_description,
    )
    if now is not None:
        transaction.created_at = now
    try:
        async with db.begin_nested():
            db.add(transaction)
    except IntegrityError:
        logger.info(f"Transaction for payment {razorpay_payment_id} already recorded")
        return None
    return transaction


async def get_transactions(
    db: AsyncSession,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[PaymentTransaction]:
    """
    Ledger rows, newest first, optionally filtered by status and date range.

    Args:
        db: Database session
        status: Only rows with this status
        start: Inclusive lower bound on created_at
        end: Exclusive upper bound on created_at

    Returns:
        List of transactions
    """
    query = select(PaymentTransaction)
    if status:
        query = query.where(PaymentTransaction.status == status)
    if start is not None:
        query = query.where(PaymentTransaction.created_at >= start)
    if end is not None:
        query = query.where(PaymentTransaction.created_at < end)
    result = await db.execute(query.order_by(desc(PaymentTransaction.created_at)))
    return list(result.scalars().all())


async def has_captured_payment(db: AsyncSession, user_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(func.count(PaymentTransaction.id)).where(
            PaymentTransaction.user_id == user_id,
            PaymentTransaction.status == "captured",
        )
    )
    return result.scalar_one() > 0

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bikawo.domain.errors import PersistenceError
from bikawo.domain.payments import statuses
from bikawo.domain.payments.db_models import Payment

logger = logging.getLogger(__name__)


async def get_refundable_payment(session: AsyncSession, booking_id: str) -> Payment | None:
    """Return the latest payment for the booking that still holds refundable funds."""
    stmt = (
        select(Payment)
        .where(
            Payment.booking_id == booking_id,
            Payment.status.in_(statuses.REFUNDABLE_PAYMENT_STATUSES),
        )
        .order_by(Payment.created_at.desc())
    )
    result = await session.execute(stmt)
    for payment in result.scalars():
        if payment.refundable_cents > 0:
            return payment
    return None


def refund_state_label(payments: list[Payment]) -> str:
    """Summarise a cancelled booking's refund state for the admin refund list."""
    if not payments:
        return "not_applicable"
    latest = payments[-1]
    if latest.refund_status == statuses.REFUND_STATUS_UNKNOWN:
        return "unknown"
    if latest.refund_status == statuses.REFUND_STATUS_FAILED:
        return "failed"
    if (latest.refunded_amount_cents or 0) > 0:
        return "refunded"
    return "pending"


async def record_refund_outcome(
    session: AsyncSession,
    payment: Payment,
    *,
    refund_status: str,
    amount_cents: int,
    refund_id: str | None,
    recorded_at: datetime,
    note: str,
) -> Payment:
    if refund_status == statuses.REFUND_STATUS_SUCCEEDED:
        payment.refunded_amount_cents = (payment.refunded_amount_cents or 0) + amount_cents
        payment.refund_id = refund_id
        payment.refunded_at = recorded_at
    payment.refund_status = refund_status
    payment.status = statuses.payment_status_for_refund_outcome(
        refund_status, payment.amount_cents, payment.refunded_amount_cents or 0
    )
    payment.admin_notes = note if not payment.admin_notes else f"{payment.admin_notes}\n{note}"
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "payment_refund_persist_failed",
            extra={
                "extra": {
                    "payment_id": payment.payment_id,
                    "refund_status": refund_status,
                    "refund_id": refund_id,
                    "error_type": type(exc).__name__,
                }
            },
        )
        raise PersistenceError(detail="Could not record the refund outcome") from exc
    await session.refresh(payment)
    return payment

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bikawo.domain.bookings import service as booking_service
from bikawo.domain.bookings.db_models import Booking
from bikawo.domain.cancellations.service import request_gateway_refund
from bikawo.domain.errors import GatewayError, InvalidArgumentError
from bikawo.domain.notifications import service as notification_service
from bikawo.domain.payments import service as payment_service
from bikawo.domain.payments import statuses as payment_statuses
from bikawo.domain.payments.db_models import Payment
from bikawo.domain.refunds.policy import round2
from bikawo.infra.metrics import metrics
from bikawo.settings import settings

logger = logging.getLogger(__name__)

REFUND_TRIGGER_MANUAL = "manual"

REFUND_STATES = ("refunded", "pending", "failed", "unknown", "not_applicable")


@dataclass(frozen=True)
class RefundListEntry:
    booking: Booking
    payment: Payment | None
    refund_state: str


async def list_refunds(
    session: AsyncSession, *, state: str | None = None, limit: int = 100
) -> list[RefundListEntry]:
    """Cancelled bookings with their latest payment and derived refund state."""
    if state is not None and state not in REFUND_STATES:
        raise InvalidArgumentError(detail=f"Unknown refund state: {state}")
    bookings = await booking_service.list_cancelled_bookings(session, limit=limit)
    entries: list[RefundListEntry] = []
    for booking in bookings:
        payments = list(booking.payments)
        entry = RefundListEntry(
            booking=booking,
            payment=payments[-1] if payments else None,
            refund_state=payment_service.refund_state_label(payments),
        )
        if state is None or entry.refund_state == state:
            entries.append(entry)
    return entries


def _amount_to_cents(amount: Decimal | float | int | str) -> int:
    try:
        value = round2(Decimal(str(amount)))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgumentError(detail=f"Invalid refund amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise InvalidArgumentError(detail="Refund amount must be positive")
    return int(value * 100)


async def issue_manual_refund(
    session: AsyncSession,
    booking_id: str,
    *,
    amount: Decimal | float | int | str,
    reason: str,
    stripe_client: Any,
    email_adapter: Any,
    now: datetime | None = None,
) -> Payment:
    """Refund part of a booking's payment on an admin's request.

    Raises ``InvalidArgumentError`` when the amount exceeds what is left to
    refund and ``GatewayError`` when the gateway does not confirm the refund.
    """
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise InvalidArgumentError(detail="A refund reason is required")
    amount_cents = _amount_to_cents(amount)
    current = now or datetime.now(timezone.utc)

    booking = await booking_service.get_booking(session, booking_id)
    payment = await payment_service.get_refundable_payment(session, booking.booking_id)
    if payment is None or not payment.payment_intent_id:
        raise InvalidArgumentError(detail="No refundable payment for this booking")
    if amount_cents > payment.refundable_cents:
        raise InvalidArgumentError(
            detail=(
                f"Refund amount exceeds refundable balance "
                f"({payment.refundable_cents / 100:.2f})"
            )
        )

    attempt = await request_gateway_refund(
        stripe_client,
        booking_id=booking.booking_id,
        payment_intent_id=payment.payment_intent_id,
        amount_cents=amount_cents,
        currency=payment.currency or settings.currency,
        metadata={
            "booking_id": booking.booking_id,
            "refund_type": "manual_admin",
            "admin_reason": normalized_reason,
        },
        timeout_seconds=settings.stripe_refund_timeout_seconds,
        extra_key={"refunded_before": payment.refunded_amount_cents or 0},
    )
    payment = await payment_service.record_refund_outcome(
        session,
        payment,
        refund_status=attempt.status,
        amount_cents=amount_cents,
        refund_id=attempt.refund_id,
        recorded_at=current,
        note=f"Remboursement manuel {amount_cents / 100:.2f} €, statut {attempt.status}. Motif : {normalized_reason}",
    )
    metrics.record_refund(REFUND_TRIGGER_MANUAL, attempt.status, amount_cents)
    logger.info(
        "manual_refund_processed",
        extra={
            "extra": {
                "booking_id": booking.booking_id,
                "payment_id": payment.payment_id,
                "amount_cents": amount_cents,
                "refund_status": attempt.status,
            }
        },
    )

    if attempt.status != payment_statuses.REFUND_STATUS_SUCCEEDED:
        raise GatewayError(
            detail=(
                "Refund could not be confirmed by the payment gateway"
                if attempt.status == payment_statuses.REFUND_STATUS_UNKNOWN
                else "Refund request was rejected by the payment gateway"
            ),
            errors=[{"refund_status": attempt.status, "error": attempt.error}],
        )

    await notification_service.notify_client_of_manual_refund(
        session,
        booking,
        amount_cents=amount_cents,
        reason=normalized_reason,
        email_adapter=email_adapter,
    )
    return payment

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bikawo.domain.bookings import statuses as booking_statuses
from bikawo.domain.bookings.db_models import Booking
from bikawo.domain.errors import InvalidArgumentError
from bikawo.domain.notifications.db_models import Notification
from bikawo.infra.metrics import metrics

logger = logging.getLogger(__name__)

RECIPIENT_CLIENT = booking_statuses.CANCELLED_BY_CLIENT
RECIPIENT_PROVIDER = booking_statuses.CANCELLED_BY_PROVIDER
RECIPIENT_ADMIN = "admin"
RECIPIENT_TYPES = (RECIPIENT_CLIENT, RECIPIENT_PROVIDER, RECIPIENT_ADMIN)

KIND_BOOKING_CANCELLED = "booking_cancelled"
KIND_REFUND_RECONCILIATION = "refund_reconciliation_required"
KIND_MANUAL_REFUND = "manual_refund"

PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"

_ACTOR_LABELS = {
    RECIPIENT_CLIENT: "le client",
    RECIPIENT_PROVIDER: "le prestataire",
}


def _format_euros(amount_cents: int) -> str:
    return f"{amount_cents / 100:.2f} €"


def recipient_for(booking: Booking, recipient_type: str) -> tuple[str | None, str | None]:
    """Return ``(recipient_id, email)`` for one side of a booking."""
    if recipient_type == RECIPIENT_CLIENT:
        return booking.client_id, booking.client_email
    if recipient_type == RECIPIENT_PROVIDER:
        return booking.provider_id, booking.provider_email
    raise InvalidArgumentError(detail=f"Unknown recipient type: {recipient_type}")


def cancellation_message(booking: Booking, *, cancelled_by: str, refund_amount_cents: int) -> tuple[str, str]:
    actor = _ACTOR_LABELS.get(cancelled_by, cancelled_by)
    when = f"{booking.booking_date.isoformat()} à {booking.start_time.strftime('%H:%M')}"
    title = "Réservation annulée"
    message = f"La réservation du {when} a été annulée par {actor}."
    if refund_amount_cents > 0:
        message += f" Remboursement : {_format_euros(refund_amount_cents)}."
    return title, message


async def _persist(session: AsyncSession, notification: Notification) -> Notification | None:
    session.add(notification)
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "notification_persist_failed",
            extra={"extra": {"kind": notification.kind, "booking_id": notification.booking_id}},
        )
        return None
    metrics.record_notification(notification.kind, notification.recipient_type)
    return notification


async def _send_email(email_adapter: Any, recipient: str | None, subject: str, body: str) -> bool:
    if email_adapter is None or not recipient:
        return False
    try:
        return bool(await email_adapter.send_email(recipient, subject, body))
    except Exception:  # noqa: BLE001
        logger.warning(
            "notification_email_failed",
            exc_info=True,
            extra={"extra": {"recipient": recipient, "subject": subject}},
        )
        return False


async def notify_counterparty_of_cancellation(
    session: AsyncSession,
    booking: Booking,
    *,
    cancelled_by: str,
    refund_amount_cents: int,
    email_adapter: Any,
) -> Notification | None:
    """Tell the other side of the booking that it was cancelled.

    The cancelling party is never notified. Failures are logged and do not
    affect the cancellation itself.
    """
    recipient_type = booking_statuses.counterparty_of(cancelled_by)
    recipient_id, email = recipient_for(booking, recipient_type)
    if recipient_id is None:
        logger.info(
            "cancellation_notification_skipped",
            extra={"extra": {"booking_id": booking.booking_id, "recipient_type": recipient_type}},
        )
        return None

    title, message = cancellation_message(
        booking, cancelled_by=cancelled_by, refund_amount_cents=refund_amount_cents
    )
    notification = await _persist(
        session,
        Notification(
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            booking_id=booking.booking_id,
            kind=KIND_BOOKING_CANCELLED,
            title=title,
            message=message,
            priority=PRIORITY_NORMAL,
            data={
                "booking_id": booking.booking_id,
                "cancelled_by": cancelled_by,
                "refund_amount_cents": refund_amount_cents,
            },
        ),
    )
    await _send_email(email_adapter, email, title, message)
    return notification


async def alert_admin_refund_reconciliation(
    session: AsyncSession,
    booking: Booking,
    *,
    refund_status: str,
    amount_cents: int,
    payment_intent_id: str | None,
    email_adapter: Any,
    admin_email: str | None,
    error: str | None = None,
) -> Notification | None:
    """Flag a booking whose refund did not go through cleanly."""
    logger.warning(
        "refund_requires_reconciliation",
        extra={
            "extra": {
                "booking_id": booking.booking_id,
                "refund_status": refund_status,
                "amount_cents": amount_cents,
                "payment_intent_id": payment_intent_id,
                "error": error,
            }
        },
    )
    title = "Remboursement à vérifier"
    message = (
        f"Le remboursement de {_format_euros(amount_cents)} pour la réservation "
        f"{booking.booking_id} est en statut « {refund_status} ». Vérification manuelle requise."
    )
    notification = await _persist(
        session,
        Notification(
            recipient_type=RECIPIENT_ADMIN,
            recipient_id=None,
            booking_id=booking.booking_id,
            kind=KIND_REFUND_RECONCILIATION,
            title=title,
            message=message,
            priority=PRIORITY_HIGH,
            data={
                "booking_id": booking.booking_id,
                "refund_status": refund_status,
                "amount_cents": amount_cents,
                "payment_intent_id": payment_intent_id,
            },
        ),
    )
    await _send_email(email_adapter, admin_email, title, message)
    return notification


async def notify_client_of_manual_refund(
    session: AsyncSession,
    booking: Booking,
    *,
    amount_cents: int,
    reason: str,
    email_adapter: Any,
) -> Notification | None:
    title = "Remboursement effectué"
    message = (
        f"Un remboursement de {_format_euros(amount_cents)} a été effectué pour votre réservation. "
        f"Motif : {reason}"
    )
    notification = await _persist(
        session,
        Notification(
            recipient_type=RECIPIENT_CLIENT,
            recipient_id=booking.client_id,
            booking_id=booking.booking_id,
            kind=KIND_MANUAL_REFUND,
            title=title,
            message=message,
            priority=PRIORITY_NORMAL,
            data={"booking_id": booking.booking_id, "amount_cents": amount_cents},
        ),
    )
    await _send_email(email_adapter, booking.client_email, title, message)
    return notification


async def list_notifications(
    session: AsyncSession,
    *,
    recipient_type: str,
    recipient_id: str | None = None,
    limit: int = 50,
) -> list[Notification]:
    if recipient_type not in RECIPIENT_TYPES:
        raise InvalidArgumentError(detail=f"Unknown recipient type: {recipient_type}")
    stmt = select(Notification).where(Notification.recipient_type == recipient_type)
    if recipient_id is not None:
        stmt = stmt.where(Notification.recipient_id == recipient_id)
    stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())

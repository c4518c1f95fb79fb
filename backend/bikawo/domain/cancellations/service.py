"""Booking cancellation workflow.

The booking status change is committed first; the refund is requested from
the payment gateway afterwards. A refund that fails or times out never rolls
the cancellation back: it is recorded on the payment, reported to admins and
returned to the caller as a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bikawo.domain.bookings import service as booking_service
from bikawo.domain.bookings import statuses as booking_statuses
from bikawo.domain.errors import GatewayError, InvalidArgumentError
from bikawo.domain.notifications import service as notification_service
from bikawo.domain.payments import service as payment_service
from bikawo.domain.payments import statuses as payment_statuses
from bikawo.domain.refunds.policy import RefundPolicy, RefundResult, calculate_refund
from bikawo.infra.metrics import metrics
from bikawo.infra.stripe_client import call_stripe_client_method
from bikawo.infra.stripe_idempotency import make_stripe_idempotency_key
from bikawo.settings import settings
from bikawo.shared.circuit_breaker import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

REFUND_TRIGGER_CANCELLATION = "cancellation"

WARNING_REFUND_FAILED = (
    "La réservation est annulée mais le remboursement a échoué. "
    "Notre équipe a été prévenue et reviendra vers vous."
)
WARNING_REFUND_UNKNOWN = (
    "La réservation est annulée mais la confirmation du remboursement est en attente. "
    "Notre équipe vérifie le paiement."
)


@dataclass(frozen=True)
class RefundAttempt:
    status: str
    refund_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CancellationOutcome:
    booking_id: str
    refund: RefundResult
    refund_status: str
    refund_amount_cents: int = 0
    refund_id: str | None = None
    warning: str | None = None

    @property
    def refund_amount(self) -> Decimal:
        """Amount sent to the gateway, after capping at what the payment can still refund."""
        return (Decimal(self.refund_amount_cents) / 100).quantize(Decimal("0.01"))

    @property
    def refund_percentage(self) -> float:
        return self.refund.refund_percentage


def _validate_actor(cancelled_by: str) -> str:
    if cancelled_by not in booking_statuses.CANCELLING_ACTORS:
        raise InvalidArgumentError(
            detail=f"cancelledBy must be one of {', '.join(booking_statuses.CANCELLING_ACTORS)}"
        )
    return cancelled_by


def refund_note(refund: RefundResult, *, reason: str, refund_status: str) -> str:
    return (
        f"Annulation : remboursement {refund.refund_percentage:g}% "
        f"({refund.refund_amount} €), statut {refund_status}. Motif : {reason}"
    )


async def request_gateway_refund(
    stripe_client: Any,
    *,
    booking_id: str,
    payment_intent_id: str,
    amount_cents: int,
    currency: str,
    metadata: dict[str, str],
    timeout_seconds: float,
    extra_key: dict | None = None,
) -> RefundAttempt:
    """Ask the gateway for a refund and classify the result.

    Never raises for gateway trouble: a timeout yields ``unknown`` and any
    other failure yields ``failed``.
    """
    idempotency_key = make_stripe_idempotency_key(
        "booking_refund",
        booking_id=booking_id,
        payment_intent_id=payment_intent_id,
        amount_cents=amount_cents,
        currency=currency,
        extra=extra_key,
    )
    try:
        refund = await call_stripe_client_method(
            stripe_client,
            "create_refund",
            payment_intent_id=payment_intent_id,
            amount_cents=amount_cents,
            metadata=metadata,
            idempotency_key=idempotency_key,
            timeout_seconds=timeout_seconds,
        )
    except TimeoutError:
        logger.warning(
            "stripe_refund_timeout",
            extra={"extra": {"booking_id": booking_id, "timeout_seconds": timeout_seconds}},
        )
        return RefundAttempt(status=payment_statuses.REFUND_STATUS_UNKNOWN, error="timeout")
    except CircuitBreakerOpenError:
        error = GatewayError(detail="Payment gateway unavailable (circuit open)")
        logger.warning(
            "stripe_refund_circuit_open",
            extra={"extra": {"booking_id": booking_id}},
        )
        return RefundAttempt(status=payment_statuses.REFUND_STATUS_FAILED, error=error.detail)
    except Exception as exc:  # noqa: BLE001
        error = GatewayError(detail=f"Refund request failed: {type(exc).__name__}")
        logger.warning(
            "stripe_refund_failed",
            exc_info=exc,
            extra={"extra": {"booking_id": booking_id, "error_type": type(exc).__name__}},
        )
        return RefundAttempt(status=payment_statuses.REFUND_STATUS_FAILED, error=error.detail)

    refund_id = getattr(refund, "id", None)
    if refund_id is None and isinstance(refund, dict):
        refund_id = refund.get("id")
    gateway_status = getattr(refund, "status", None)
    if gateway_status is None and isinstance(refund, dict):
        gateway_status = refund.get("status")
    if gateway_status in {"failed", "canceled"}:
        return RefundAttempt(
            status=payment_statuses.REFUND_STATUS_FAILED,
            refund_id=refund_id,
            error=f"refund_{gateway_status}",
        )
    return RefundAttempt(status=payment_statuses.REFUND_STATUS_SUCCEEDED, refund_id=refund_id)


async def cancel_booking(
    session: AsyncSession,
    booking_id: str,
    *,
    reason: str,
    cancelled_by: str,
    stripe_client: Any,
    email_adapter: Any,
    policy: RefundPolicy,
    tz: str | None = None,
    currency: str | None = None,
    now: datetime | None = None,
) -> CancellationOutcome:
    normalized_reason = booking_service.normalize_reason(reason)
    actor = _validate_actor(cancelled_by)
    zone = tz or settings.service_timezone
    current = now or datetime.now(timezone.utc)

    booking = await booking_service.get_booking(session, booking_id)
    booking_statuses.assert_valid_transition(booking.status, booking_statuses.BOOKING_STATUS_CANCELLED)
    payment = await payment_service.get_refundable_payment(session, booking.booking_id)

    refund = calculate_refund(
        booking.booking_date,
        booking.start_time,
        booking.total_price,
        policy,
        now=current,
        tz=zone,
    )
    amount_cents = refund.refund_amount_cents
    if payment is not None:
        amount_cents = min(amount_cents, payment.refundable_cents)

    booking = await booking_service.mark_cancelled(
        session,
        booking,
        cancelled_by=actor,
        reason=normalized_reason,
        cancelled_at=current,
    )
    logger.info(
        "booking_cancelled",
        extra={
            "extra": {
                "booking_id": booking.booking_id,
                "cancelled_by": actor,
                "refund_percentage": refund.refund_percentage,
                "refund_amount_cents": amount_cents,
                "tier": refund.tier.value,
            }
        },
    )

    attempt = RefundAttempt(status=payment_statuses.REFUND_STATUS_NOT_REQUIRED)
    if amount_cents > 0 and payment is not None and payment.payment_intent_id:
        attempt = await request_gateway_refund(
            stripe_client,
            booking_id=booking.booking_id,
            payment_intent_id=payment.payment_intent_id,
            amount_cents=amount_cents,
            currency=currency or payment.currency or settings.currency,
            metadata={
                "booking_id": booking.booking_id,
                "refund_percentage": f"{refund.refund_percentage:g}",
                "policy_reason": refund.tier.value,
                "cancelled_by": actor,
            },
            timeout_seconds=settings.stripe_refund_timeout_seconds,
        )
        await payment_service.record_refund_outcome(
            session,
            payment,
            refund_status=attempt.status,
            amount_cents=amount_cents,
            refund_id=attempt.refund_id,
            recorded_at=current,
            note=refund_note(refund, reason=normalized_reason, refund_status=attempt.status),
        )
    elif amount_cents > 0:
        logger.info(
            "cancellation_refund_skipped",
            extra={"extra": {"booking_id": booking.booking_id, "reason": "no_payment_intent"}},
        )
        amount_cents = 0
    metrics.record_refund(REFUND_TRIGGER_CANCELLATION, attempt.status, amount_cents)

    await notification_service.notify_counterparty_of_cancellation(
        session,
        booking,
        cancelled_by=actor,
        refund_amount_cents=amount_cents if attempt.status == payment_statuses.REFUND_STATUS_SUCCEEDED else 0,
        email_adapter=email_adapter,
    )

    warning = None
    if attempt.status in payment_statuses.RECONCILIATION_REFUND_STATUSES:
        await notification_service.alert_admin_refund_reconciliation(
            session,
            booking,
            refund_status=attempt.status,
            amount_cents=amount_cents,
            payment_intent_id=payment.payment_intent_id if payment is not None else None,
            email_adapter=email_adapter,
            admin_email=settings.admin_notification_email,
            error=attempt.error,
        )
        warning = (
            WARNING_REFUND_UNKNOWN
            if attempt.status == payment_statuses.REFUND_STATUS_UNKNOWN
            else WARNING_REFUND_FAILED
        )

    return CancellationOutcome(
        booking_id=booking.booking_id,
        refund=refund,
        refund_status=attempt.status,
        refund_amount_cents=amount_cents,
        refund_id=attempt.refund_id,
        warning=warning,
    )

from __future__ import annotations

from typing import Final

PAYMENT_STATUS_PAID: Final[str] = "paid"
PAYMENT_STATUS_PARTIALLY_REFUNDED: Final[str] = "partially_refunded"
PAYMENT_STATUS_REFUNDED: Final[str] = "refunded"
PAYMENT_STATUS_REFUND_FAILED: Final[str] = "refund_failed"
PAYMENT_STATUS_REFUND_PENDING: Final[str] = "refund_pending"

REFUNDABLE_PAYMENT_STATUSES: Final[frozenset[str]] = frozenset(
    {
        PAYMENT_STATUS_PAID,
        PAYMENT_STATUS_PARTIALLY_REFUNDED,
        PAYMENT_STATUS_REFUND_FAILED,
        PAYMENT_STATUS_REFUND_PENDING,
    }
)

REFUND_STATUS_NONE: Final[str] = "none"
REFUND_STATUS_SUCCEEDED: Final[str] = "succeeded"
REFUND_STATUS_FAILED: Final[str] = "failed"
# The gateway did not answer in time; the refund may or may not exist on Stripe.
REFUND_STATUS_UNKNOWN: Final[str] = "unknown"
# Not a payment column value: reported when no gateway call was needed.
REFUND_STATUS_NOT_REQUIRED: Final[str] = "not_required"

RECONCILIATION_REFUND_STATUSES: Final[frozenset[str]] = frozenset(
    {REFUND_STATUS_FAILED, REFUND_STATUS_UNKNOWN}
)


def payment_status_after_refund(amount_cents: int, refunded_cents: int) -> str:
    if refunded_cents <= 0:
        return PAYMENT_STATUS_PAID
    if refunded_cents >= amount_cents:
        return PAYMENT_STATUS_REFUNDED
    return PAYMENT_STATUS_PARTIALLY_REFUNDED


def payment_status_for_refund_outcome(refund_status: str, amount_cents: int, refunded_cents: int) -> str:
    if refund_status == REFUND_STATUS_FAILED:
        return PAYMENT_STATUS_REFUND_FAILED
    if refund_status == REFUND_STATUS_UNKNOWN:
        return PAYMENT_STATUS_REFUND_PENDING
    return payment_status_after_refund(amount_cents, refunded_cents)

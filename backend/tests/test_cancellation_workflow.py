from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from bikawo.domain.bookings.db_models import Booking
from bikawo.domain.cancellations.service import cancel_booking
from bikawo.domain.errors import ConflictError, InvalidArgumentError, NotFoundError
from bikawo.domain.notifications.db_models import Notification
from bikawo.domain.payments.db_models import Payment
from bikawo.domain.refunds.policy import DEFAULT_REFUND_POLICY
from bikawo.infra.stripe_idempotency import make_stripe_idempotency_key
from bikawo.settings import settings
from tests.conftest import FakeStripeClient, RecordingEmailAdapter, create_booking

NOW = datetime(2026, 6, 10, 12, 0, tzinfo=timezone.utc)


async def _cancel(session_maker, booking_id, stripe_client, email_adapter, **overrides):
    params = {
        "reason": "Empêchement de dernière minute",
        "cancelled_by": "client",
        "stripe_client": stripe_client,
        "email_adapter": email_adapter,
        "policy": DEFAULT_REFUND_POLICY,
        "tz": "Europe/Paris",
        "now": NOW,
    }
    params.update(overrides)
    async with session_maker() as session:
        return await cancel_booking(session, booking_id, **params)


async def _load(session_maker, booking_id):
    async with session_maker() as session:
        booking = await session.get(Booking, booking_id)
        payment = await session.scalar(select(Payment).where(Payment.booking_id == booking_id))
        notifications = (
            await session.execute(select(Notification).where(Notification.booking_id == booking_id))
        ).scalars().all()
        return booking, payment, list(notifications)


@pytest.mark.anyio
async def test_cancel_early_refunds_in_full(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW, price_cents=10000)
    stripe = FakeStripeClient()
    emails = RecordingEmailAdapter()

    outcome = await _cancel(async_session_maker, booking_id, stripe, emails)

    assert outcome.refund_amount == Decimal("100.00")
    assert outcome.refund_percentage == 100
    assert outcome.refund_status == "succeeded"
    assert outcome.warning is None

    assert len(stripe.refund_calls) == 1
    call = stripe.refund_calls[0]
    assert call["payment_intent_id"] == "pi_test_123"
    assert call["amount_cents"] == 10000
    assert call["timeout_seconds"] == settings.stripe_refund_timeout_seconds
    assert call["metadata"]["booking_id"] == booking_id
    assert call["metadata"]["refund_percentage"] == "100"
    assert call["idempotency_key"] == make_stripe_idempotency_key(
        "booking_refund",
        booking_id=booking_id,
        payment_intent_id="pi_test_123",
        amount_cents=10000,
        currency="eur",
    )

    booking, payment, _ = await _load(async_session_maker, booking_id)
    assert booking.status == "cancelled"
    assert booking.cancelled_by == "client"
    assert booking.cancellation_reason == "Empêchement de dernière minute"
    assert booking.cancelled_at is not None
    assert payment.status == "refunded"
    assert payment.refund_status == "succeeded"
    assert payment.refunded_amount_cents == 10000
    assert payment.refund_id == "re_test_1"
    assert "100%" in payment.admin_notes
    assert "Empêchement" in payment.admin_notes


@pytest.mark.anyio
async def test_cancel_in_middle_window_refunds_half(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=10, now=NOW, price_cents=4550)
    stripe = FakeStripeClient()

    outcome = await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    assert outcome.refund_amount == Decimal("22.75")
    assert stripe.refund_calls[0]["amount_cents"] == 2275
    _, payment, _ = await _load(async_session_maker, booking_id)
    assert payment.status == "partially_refunded"
    assert payment.refunded_amount_cents == 2275


@pytest.mark.anyio
async def test_zero_refund_skips_gateway(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=1, now=NOW)
    stripe = FakeStripeClient()

    outcome = await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    assert outcome.refund_amount == Decimal("0.00")
    assert outcome.refund_status == "not_required"
    assert outcome.warning is None
    assert stripe.refund_calls == []
    booking, payment, _ = await _load(async_session_maker, booking_id)
    assert booking.status == "cancelled"
    assert payment.status == "paid"


@pytest.mark.anyio
async def test_booking_without_payment_is_cancelled_without_gateway(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW, with_payment=False)
    stripe = FakeStripeClient()

    outcome = await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    assert outcome.refund_status == "not_required"
    assert stripe.refund_calls == []
    assert outcome.refund_amount == Decimal("0.00")


@pytest.mark.anyio
async def test_payment_without_intent_reports_no_refund(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW, payment_intent_id=None)
    stripe = FakeStripeClient()

    outcome = await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    assert outcome.refund_percentage == 100
    assert outcome.refund_amount == Decimal("0.00")
    assert outcome.refund_status == "not_required"
    assert stripe.refund_calls == []


@pytest.mark.anyio
async def test_refund_is_capped_at_remaining_refundable_amount(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW, price_cents=10000)
    async with async_session_maker() as session:
        payment = await session.scalar(select(Payment).where(Payment.booking_id == booking_id))
        payment.refunded_amount_cents = 6000
        payment.status = "partially_refunded"
        await session.commit()
    stripe = FakeStripeClient()

    outcome = await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    assert outcome.refund_percentage == 100
    assert outcome.refund_amount == Decimal("40.00")
    assert stripe.refund_calls[0]["amount_cents"] == 4000
    _, payment, _ = await _load(async_session_maker, booking_id)
    assert payment.refunded_amount_cents == 10000


@pytest.mark.anyio
async def test_gateway_failure_keeps_cancellation_and_warns(async_session_maker):
    settings.admin_notification_email = "ops@bikawo.com"
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)
    stripe = FakeStripeClient(error=RuntimeError("card_declined"))
    emails = RecordingEmailAdapter()

    outcome = await _cancel(async_session_maker, booking_id, stripe, emails)

    assert outcome.refund_status == "failed"
    assert outcome.warning is not None
    assert outcome.refund_amount == Decimal("100.00")

    booking, payment, notifications = await _load(async_session_maker, booking_id)
    assert booking.status == "cancelled"
    assert payment.status == "refund_failed"
    assert payment.refund_status == "failed"
    assert payment.refunded_amount_cents == 0

    admin_alerts = [n for n in notifications if n.recipient_type == "admin"]
    assert len(admin_alerts) == 1
    assert admin_alerts[0].kind == "refund_reconciliation_required"
    assert admin_alerts[0].priority == "high"
    assert "ops@bikawo.com" in [mail["recipient"] for mail in emails.sent]


@pytest.mark.anyio
async def test_gateway_timeout_marks_refund_unknown(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)
    stripe = FakeStripeClient(error=TimeoutError("timed out after 10s"))

    outcome = await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    assert outcome.refund_status == "unknown"
    assert outcome.warning is not None
    booking, payment, notifications = await _load(async_session_maker, booking_id)
    assert booking.status == "cancelled"
    assert payment.status == "refund_pending"
    assert payment.refund_status == "unknown"
    assert any(n.kind == "refund_reconciliation_required" for n in notifications)


@pytest.mark.anyio
async def test_gateway_reported_failure_is_failed(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)
    stripe = FakeStripeClient(refund_status="failed")

    outcome = await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    assert outcome.refund_status == "failed"
    assert outcome.refund_id == "re_test_1"


@pytest.mark.anyio
async def test_second_cancel_conflicts_and_never_refunds_twice(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)
    stripe = FakeStripeClient()
    emails = RecordingEmailAdapter()

    await _cancel(async_session_maker, booking_id, stripe, emails)
    with pytest.raises(ConflictError):
        await _cancel(async_session_maker, booking_id, stripe, emails)

    assert len(stripe.refund_calls) == 1


@pytest.mark.anyio
async def test_completed_booking_cannot_be_cancelled(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW, status="completed")
    stripe = FakeStripeClient()

    with pytest.raises(ConflictError):
        await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter())

    booking, _, _ = await _load(async_session_maker, booking_id)
    assert booking.status == "completed"
    assert stripe.refund_calls == []


@pytest.mark.anyio
async def test_unknown_booking_is_not_found(async_session_maker):
    with pytest.raises(NotFoundError):
        await _cancel(async_session_maker, "missing", FakeStripeClient(), RecordingEmailAdapter())


@pytest.mark.anyio
@pytest.mark.parametrize("reason", ["", "   ", None])
async def test_empty_reason_is_rejected_before_any_change(async_session_maker, reason):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)
    stripe = FakeStripeClient()

    with pytest.raises(InvalidArgumentError):
        await _cancel(async_session_maker, booking_id, stripe, RecordingEmailAdapter(), reason=reason)

    booking, _, _ = await _load(async_session_maker, booking_id)
    assert booking.status == "confirmed"
    assert stripe.refund_calls == []


@pytest.mark.anyio
async def test_unknown_actor_is_rejected(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)

    with pytest.raises(InvalidArgumentError):
        await _cancel(
            async_session_maker,
            booking_id,
            FakeStripeClient(),
            RecordingEmailAdapter(),
            cancelled_by="admin",
        )


@pytest.mark.anyio
async def test_client_cancellation_notifies_provider_only(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)
    emails = RecordingEmailAdapter()

    await _cancel(async_session_maker, booking_id, FakeStripeClient(), emails, cancelled_by="client")

    _, _, notifications = await _load(async_session_maker, booking_id)
    assert [(n.recipient_type, n.recipient_id) for n in notifications] == [("provider", "provider-1")]
    assert notifications[0].kind == "booking_cancelled"
    assert notifications[0].title == "Réservation annulée"
    assert [mail["recipient"] for mail in emails.sent] == ["provider@example.com"]


@pytest.mark.anyio
async def test_provider_cancellation_notifies_client_only(async_session_maker):
    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)
    emails = RecordingEmailAdapter()

    await _cancel(async_session_maker, booking_id, FakeStripeClient(), emails, cancelled_by="provider")

    _, _, notifications = await _load(async_session_maker, booking_id)
    assert [(n.recipient_type, n.recipient_id) for n in notifications] == [("client", "client-1")]
    assert [mail["recipient"] for mail in emails.sent] == ["client@example.com"]


@pytest.mark.anyio
async def test_cancellation_refund_is_independent_of_actor(async_session_maker):
    by_client = await create_booking(async_session_maker, hours_ahead=10, now=NOW)
    by_provider = await create_booking(
        async_session_maker, hours_ahead=10, now=NOW, payment_intent_id="pi_other"
    )

    client_outcome = await _cancel(
        async_session_maker, by_client, FakeStripeClient(), RecordingEmailAdapter(), cancelled_by="client"
    )
    provider_outcome = await _cancel(
        async_session_maker,
        by_provider,
        FakeStripeClient(),
        RecordingEmailAdapter(),
        cancelled_by="provider",
    )

    assert client_outcome.refund_amount == provider_outcome.refund_amount == Decimal("50.00")


@pytest.mark.anyio
async def test_email_failure_does_not_break_cancellation(async_session_maker):
    class ExplodingEmailAdapter:
        async def send_email(self, recipient, subject, body, *, headers=None):
            raise RuntimeError("smtp down")

    booking_id = await create_booking(async_session_maker, hours_ahead=48, now=NOW)

    outcome = await _cancel(async_session_maker, booking_id, FakeStripeClient(), ExplodingEmailAdapter())

    assert outcome.refund_status == "succeeded"
    _, _, notifications = await _load(async_session_maker, booking_id)
    assert len(notifications) == 1

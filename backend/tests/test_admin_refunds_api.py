import asyncio

from sqlalchemy import select

from bikawo.domain.notifications.db_models import Notification
from tests.conftest import create_booking


def _cancel(client, booking_id, cancelled_by="client"):
    response = client.post(
        f"/v1/bookings/{booking_id}/cancel",
        json={"reason": "Annulation test", "cancelledBy": cancelled_by},
    )
    assert response.status_code == 200
    return response.json()


def test_admin_routes_require_credentials(client, admin_credentials):
    assert client.get("/v1/admin/refunds").status_code == 401
    assert client.get("/v1/admin/refunds", auth=("admin", "wrong")).status_code == 401
    response = client.post(
        "/v1/admin/bookings/any/refunds",
        json={"amount": 10, "reason": "geste commercial"},
    )
    assert response.status_code == 401
    assert response.headers.get("WWW-Authenticate") == "Basic"


def test_admin_routes_reject_when_unconfigured(client):
    response = client.get("/v1/admin/refunds", auth=("admin", "secret"))

    assert response.status_code == 401


def test_refund_list_derives_states(client, async_session_maker, fake_stripe, admin_credentials):
    refunded = asyncio.run(create_booking(async_session_maker, hours_ahead=48, payment_intent_id="pi_a"))
    late = asyncio.run(create_booking(async_session_maker, hours_ahead=1, payment_intent_id="pi_b"))
    unpaid = asyncio.run(create_booking(async_session_maker, hours_ahead=48, with_payment=False))
    _cancel(client, refunded)
    _cancel(client, late)
    _cancel(client, unpaid)
    fake_stripe.error = RuntimeError("network")
    failed = asyncio.run(create_booking(async_session_maker, hours_ahead=48, payment_intent_id="pi_c"))
    _cancel(client, failed)

    response = client.get("/v1/admin/refunds", auth=admin_credentials)

    assert response.status_code == 200
    states = {item["booking"]["bookingId"]: item["refundState"] for item in response.json()["items"]}
    assert states == {
        refunded: "refunded",
        late: "pending",
        unpaid: "not_applicable",
        failed: "failed",
    }

    only_failed = client.get("/v1/admin/refunds", params={"status": "failed"}, auth=admin_credentials)
    items = only_failed.json()["items"]
    assert [item["booking"]["bookingId"] for item in items] == [failed]
    assert items[0]["payment"]["refundStatus"] == "failed"
    assert items[0]["payment"]["paymentIntentId"] == "pi_c"


def test_refund_list_rejects_unknown_state(client, admin_credentials):
    response = client.get("/v1/admin/refunds", params={"status": "lost"}, auth=admin_credentials)

    assert response.status_code == 422


def test_manual_refund_reconciles_failed_refund(client, async_session_maker, fake_stripe, admin_credentials):
    fake_stripe.error = RuntimeError("network")
    booking_id = asyncio.run(create_booking(async_session_maker, hours_ahead=48, price_cents=12000))
    body = _cancel(client, booking_id)
    assert body["refundStatus"] == "failed"

    fake_stripe.error = None
    response = client.post(
        f"/v1/admin/bookings/{booking_id}/refunds",
        json={"amount": 120, "reason": "Remboursement après échec Stripe"},
        auth=admin_credentials,
    )

    assert response.status_code == 200
    payment = response.json()
    assert payment["status"] == "refunded"
    assert payment["refundStatus"] == "succeeded"
    assert payment["refundedAmount"] == 120
    assert payment["refundId"]
    assert len(fake_stripe.refund_calls) == 2
    assert fake_stripe.refund_calls[0]["idempotency_key"] != fake_stripe.refund_calls[1]["idempotency_key"]

    async def _client_notifications():
        async with async_session_maker() as session:
            result = await session.execute(
                select(Notification).where(
                    Notification.booking_id == booking_id, Notification.kind == "manual_refund"
                )
            )
            return result.scalars().all()

    notifications = asyncio.run(_client_notifications())
    assert [n.recipient_type for n in notifications] == ["client"]


def test_manual_refund_cannot_exceed_refundable_balance(client, async_session_maker, fake_stripe, admin_credentials):
    booking_id = asyncio.run(create_booking(async_session_maker, hours_ahead=10, price_cents=10000))
    _cancel(client, booking_id)

    response = client.post(
        f"/v1/admin/bookings/{booking_id}/refunds",
        json={"amount": 60, "reason": "Geste commercial"},
        auth=admin_credentials,
    )

    assert response.status_code == 422
    assert "refundable balance" in response.json()["detail"]
    assert len(fake_stripe.refund_calls) == 1


def test_manual_refund_partial_then_remaining(client, async_session_maker, fake_stripe, admin_credentials):
    booking_id = asyncio.run(create_booking(async_session_maker, hours_ahead=10, price_cents=10000))
    _cancel(client, booking_id)

    response = client.post(
        f"/v1/admin/bookings/{booking_id}/refunds",
        json={"amount": 50, "reason": "Geste commercial"},
        auth=admin_credentials,
    )

    assert response.status_code == 200
    assert response.json()["refundedAmount"] == 100
    assert response.json()["status"] == "refunded"


def test_manual_refund_gateway_failure_is_bad_gateway(client, async_session_maker, fake_stripe, admin_credentials):
    booking_id = asyncio.run(create_booking(async_session_maker, hours_ahead=1, price_cents=10000))
    _cancel(client, booking_id)
    fake_stripe.error = RuntimeError("declined")

    response = client.post(
        f"/v1/admin/bookings/{booking_id}/refunds",
        json={"amount": 20, "reason": "Geste commercial"},
        auth=admin_credentials,
    )

    assert response.status_code == 502
    assert response.json()["errors"][0]["refund_status"] == "failed"


def test_manual_refund_validates_payload(client, admin_credentials):
    response = client.post(
        "/v1/admin/bookings/any/refunds",
        json={"amount": -5, "reason": "x"},
        auth=admin_credentials,
    )

    assert response.status_code == 422

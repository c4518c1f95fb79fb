import time
from types import SimpleNamespace

import pytest

from bikawo.infra.stripe_client import StripeClient, resolve_client
from bikawo.infra.stripe_resilience import stripe_circuit
from bikawo.settings import settings


def _fake_sdk(create):
    return SimpleNamespace(api_key=None, Refund=SimpleNamespace(create=create, retrieve=lambda refund_id: refund_id))


@pytest.mark.anyio
async def test_create_refund_calls_sdk_with_refund_payload():
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="re_123", status="succeeded")

    sdk = _fake_sdk(create)
    client = StripeClient(secret_key="sk_test_abc", stripe_sdk=sdk)

    refund = await client.create_refund(
        payment_intent_id="pi_1",
        amount_cents=4550,
        metadata={"booking_id": "b-1"},
        idempotency_key="booking-abc",
        timeout_seconds=1.0,
    )

    assert refund.id == "re_123"
    assert sdk.api_key == "sk_test_abc"
    assert calls == [
        {
            "payment_intent": "pi_1",
            "amount": 4550,
            "reason": "requested_by_customer",
            "metadata": {"booking_id": "b-1"},
            "idempotency_key": "booking-abc",
        }
    ]


@pytest.mark.anyio
async def test_create_refund_times_out():
    def slow_create(**kwargs):
        time.sleep(0.2)
        return SimpleNamespace(id="re_late")

    client = StripeClient(secret_key="sk_test_abc", stripe_sdk=_fake_sdk(slow_create))

    with pytest.raises(TimeoutError):
        await client.create_refund(
            payment_intent_id="pi_1", amount_cents=100, idempotency_key="k", timeout_seconds=0.02
        )
    stripe_circuit.reset()


@pytest.mark.anyio
async def test_create_refund_requires_secret_key(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", None)
    client = StripeClient(secret_key=None, stripe_sdk=_fake_sdk(lambda **kwargs: None))

    with pytest.raises(ValueError, match="secret key"):
        await client.create_refund(payment_intent_id="pi_1", amount_cents=100, idempotency_key="k")


@pytest.mark.anyio
async def test_create_refund_rejects_non_positive_amount():
    client = StripeClient(secret_key="sk_test_abc", stripe_sdk=_fake_sdk(lambda **kwargs: None))

    with pytest.raises(ValueError):
        await client.create_refund(payment_intent_id="pi_1", amount_cents=0, idempotency_key="k")


def test_resolve_client_prefers_state_override():
    fake = object()
    state = SimpleNamespace(stripe_client=fake, services=SimpleNamespace(stripe_client=object()))

    assert resolve_client(SimpleNamespace(state=state)) is fake


def test_resolve_client_falls_back_to_services_then_new_client():
    from_services = object()
    state = SimpleNamespace(stripe_client=None, services=SimpleNamespace(stripe_client=from_services))
    assert resolve_client(state) is from_services

    bare = SimpleNamespace()
    created = resolve_client(bare)
    assert isinstance(created, StripeClient)
    assert bare.stripe_client is created

from __future__ import annotations

import inspect
from typing import Any, Callable

import anyio

from bikawo.infra.stripe_resilience import stripe_circuit
from bikawo.settings import settings


MUTATING_METHOD_PREFIXES: tuple[str, ...] = (
    "create_",
    "cancel_",
    "refund_",
    "update_",
)

READ_ONLY_METHOD_PREFIXES: tuple[str, ...] = (
    "retrieve_",
    "list_",
)

REFUND_REASON = "requested_by_customer"


def is_mutating_method(method_name: str) -> bool:
    if method_name.startswith(READ_ONLY_METHOD_PREFIXES):
        return False
    return method_name.startswith(MUTATING_METHOD_PREFIXES)


class StripeClient:
    def __init__(
        self,
        *,
        secret_key: str | None,
        stripe_sdk: Any | None = None,
    ) -> None:
        """Initialize the Stripe gateway.

        Passing ``None`` for ``secret_key`` falls back to global settings.
        Operations fail fast with ``ValueError`` when no key is configured.
        """
        if stripe_sdk is None:
            import stripe as stripe_sdk  # type: ignore

        self.stripe = stripe_sdk
        self.secret_key = secret_key or settings.stripe_secret_key

    def _require_key(self) -> None:
        if not self.secret_key:
            raise ValueError("Stripe secret key not configured")
        self.stripe.api_key = self.secret_key

    async def _call(
        self,
        fn: Callable[..., Any],
        /,
        *args,
        timeout_seconds: float | None = None,
        **kwargs,
    ) -> Any:
        def _sync_call() -> Any:
            return fn(*args, **kwargs)

        # The SDK call is blocking; the breaker bounds how long we wait for the thread.
        return await stripe_circuit.call(
            lambda: anyio.to_thread.run_sync(_sync_call, abandon_on_cancel=True),
            timeout_seconds=timeout_seconds,
        )

    async def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
        timeout_seconds: float | None = None,
    ) -> Any:
        """Refund ``amount_cents`` of a captured payment intent."""
        self._require_key()
        if amount_cents <= 0:
            raise ValueError("Refund amount must be positive")
        payload: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": amount_cents,
            "reason": REFUND_REASON,
            "metadata": metadata or {},
        }
        extra: dict[str, Any] = {}
        if idempotency_key:
            extra["idempotency_key"] = idempotency_key
        return await self._call(
            self.stripe.Refund.create,
            timeout_seconds=timeout_seconds,
            **payload,
            **extra,
        )

    async def retrieve_refund(self, refund_id: str) -> Any:
        self._require_key()
        return await self._call(self.stripe.Refund.retrieve, refund_id)


def resolve_client(app_state: Any) -> Any:
    """Resolve the gateway for the current app.

    Priority: ``state.stripe_client`` (tests install fakes here), then
    ``state.services.stripe_client``, then a new client from settings.
    """
    state = getattr(app_state, "state", app_state)
    client = getattr(state, "stripe_client", None)
    if client is not None:
        return client
    services = getattr(state, "services", None)
    if services is not None:
        client = getattr(services, "stripe_client", None)
        if client is not None:
            return client
    app_settings = getattr(state, "app_settings", None)
    client = StripeClient(
        secret_key=getattr(app_settings, "stripe_secret_key", None) or settings.stripe_secret_key,
    )
    state.stripe_client = client
    return client


async def call_stripe_client_method(client: Any, method_name: str, /, *args, **kwargs) -> Any:
    method = getattr(client, method_name, None)
    if method is None:
        raise AttributeError(f"Stripe client missing method {method_name}")

    if is_mutating_method(method_name) and not kwargs.get("idempotency_key"):
        raise ValueError(
            f"Stripe mutation '{method_name}' requires idempotency_key to be provided"
        )

    result = method(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result

from __future__ import annotations

import hashlib
import json
from typing import Any


def _stable_extra_value(value: Any) -> str:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return str(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def make_stripe_idempotency_key(
    purpose: str,
    *,
    booking_id: str | None = None,
    payment_intent_id: str | None = None,
    amount_cents: int | None = None,
    currency: str | None = None,
    extra: dict | None = None,
) -> str:
    """Generate a deterministic idempotency key for a Stripe mutation.

    Retrying the same logical refund (same booking, payment intent, amount and
    currency) yields the same key, so Stripe replays the original response
    instead of refunding twice.

    Format: ``<prefix8>-<sha256hex32>``. The prefix is the first 8 characters
    of *purpose* with underscores turned into hyphens, which keeps keys
    readable in the Stripe dashboard.

    Args:
        purpose: Short name of the operation, e.g. ``"booking_refund"``.
        booking_id: Booking identifier, when applicable.
        payment_intent_id: Stripe payment intent the refund is drawn from.
        amount_cents: Integer amount in the smallest currency unit.
        currency: ISO 4217 currency code (normalised to lower-case).
        extra: Additional key/value pairs included in the hash, sorted by key.

    Returns:
        Idempotency key string within Stripe's 255-character limit.
    """
    parts: list[str] = [purpose]
    if booking_id is not None:
        parts.append(f"b:{booking_id}")
    if payment_intent_id is not None:
        parts.append(f"p:{payment_intent_id}")
    if amount_cents is not None:
        parts.append(f"a:{amount_cents}")
    if currency is not None:
        parts.append(f"c:{currency.lower()}")
    if extra:
        for k in sorted(extra.keys()):
            parts.append(f"x:{k}:{_stable_extra_value(extra[k])}")

    raw = "|".join(parts)
    digest = hashlib.sha256(raw.encode()).hexdigest()[:32]
    prefix = purpose[:8].replace("_", "-").rstrip("-")
    return f"{prefix}-{digest}"

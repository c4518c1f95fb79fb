"""Time-windowed refund policy for booking cancellations.

A cancellation falls into one of three tiers depending on how many hours are
left before the service instant:

* more than 24 hours           -> ``RefundPolicy.more_than_24h``
* between 2 and 24 hours       -> ``RefundPolicy.between_24h_and_2h`` (both ends inclusive)
* less than 2 hours, or later  -> ``RefundPolicy.less_than_2h``

Everything in this module is pure: the caller supplies the policy, the
cancellation instant and the zone the booking was scheduled in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field

from bikawo.domain.errors import InvalidArgumentError

MORE_THAN_24H_THRESHOLD_HOURS = 24
LESS_THAN_2H_THRESHOLD_HOURS = 2
CENT = Decimal("0.01")
DEFAULT_SERVICE_TIMEZONE = "Europe/Paris"
START_TIME_PATTERN = re.compile(r"\d{2}:\d{2}(:\d{2})?")


class RefundTier(str, Enum):
    MORE_THAN_24H = "more_than_24h"
    BETWEEN_24H_AND_2H = "between_24h_and_2h"
    LESS_THAN_2H = "less_than_2h"


class RefundPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    more_than_24h: float = Field(ge=0, le=100)
    between_24h_and_2h: float = Field(ge=0, le=100)
    less_than_2h: float = Field(ge=0, le=100)

    def percentage_for(self, tier: RefundTier) -> float:
        return getattr(self, tier.value)


# Refund table used by the booking screens.
DEFAULT_REFUND_POLICY = RefundPolicy(more_than_24h=100, between_24h_and_2h=50, less_than_2h=0)
# Refund table used by the payment-side refund job; late cancellations still return 30%.
PROVIDER_COMPENSATION_REFUND_POLICY = RefundPolicy(
    more_than_24h=100, between_24h_and_2h=70, less_than_2h=30
)


@dataclass(frozen=True)
class RefundResult:
    refund_amount: Decimal
    refund_percentage: float
    tier: RefundTier
    hours_until_service: float

    @property
    def refund_amount_cents(self) -> int:
        return int((self.refund_amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_zone(tz: tzinfo | str) -> tzinfo:
    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidArgumentError(detail=f"Unknown timezone: {tz!r}") from exc


def _parse_service_date(service_date: date | str) -> date:
    if isinstance(service_date, datetime):
        return service_date.date()
    if isinstance(service_date, date):
        return service_date
    if isinstance(service_date, str):
        try:
            return date.fromisoformat(service_date.strip())
        except ValueError as exc:
            raise InvalidArgumentError(detail=f"Invalid service date: {service_date!r}") from exc
    raise InvalidArgumentError(detail=f"Invalid service date: {service_date!r}")


def _parse_start_time(service_start_time: time | str) -> time:
    if isinstance(service_start_time, time):
        return service_start_time.replace(tzinfo=None)
    if isinstance(service_start_time, str):
        raw = service_start_time.strip()
        # strptime alone accepts single-digit fields such as "9:5".
        if not START_TIME_PATTERN.fullmatch(raw):
            raise InvalidArgumentError(detail=f"Invalid service start time: {service_start_time!r}")
        for fmt in ("%H:%M", "%H:%M:%S"):
            try:
                return datetime.strptime(raw, fmt).time()
            except ValueError:
                continue
    raise InvalidArgumentError(detail=f"Invalid service start time: {service_start_time!r}")


def _parse_price(total_price: Decimal | int | float | str) -> Decimal:
    if isinstance(total_price, bool):
        raise InvalidArgumentError(detail="Total price must be a number")
    try:
        price = Decimal(str(total_price))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgumentError(detail=f"Invalid total price: {total_price!r}") from exc
    if not price.is_finite():
        raise InvalidArgumentError(detail=f"Invalid total price: {total_price!r}")
    if price < 0:
        raise InvalidArgumentError(detail="Total price must not be negative")
    return price


def resolve_service_instant(
    service_date: date | str,
    service_start_time: time | str,
    tz: tzinfo | str,
) -> datetime:
    """Combine a booking's date and start time into an aware UTC instant.

    The wall-clock values are interpreted in ``tz``, never in the host's zone.
    """
    local = datetime.combine(
        _parse_service_date(service_date),
        _parse_start_time(service_start_time),
        tzinfo=resolve_zone(tz),
    )
    return local.astimezone(timezone.utc)


def hours_until(instant: datetime, now: datetime) -> float:
    if now.tzinfo is None or now.utcoffset() is None:
        raise InvalidArgumentError(detail="Cancellation time must be timezone-aware")
    return (instant - now).total_seconds() / 3600


def select_tier(hours_until_service: float) -> RefundTier:
    if hours_until_service > MORE_THAN_24H_THRESHOLD_HOURS:
        return RefundTier.MORE_THAN_24H
    if hours_until_service >= LESS_THAN_2H_THRESHOLD_HOURS:
        return RefundTier.BETWEEN_24H_AND_2H
    return RefundTier.LESS_THAN_2H


def calculate_refund(
    service_date: date | str,
    service_start_time: time | str,
    total_price: Decimal | int | float | str,
    policy: RefundPolicy = DEFAULT_REFUND_POLICY,
    *,
    now: datetime | None = None,
    tz: tzinfo | str = DEFAULT_SERVICE_TIMEZONE,
) -> RefundResult:
    price = _parse_price(total_price)
    instant = resolve_service_instant(service_date, service_start_time, tz)
    current = now if now is not None else datetime.now(timezone.utc)
    remaining = hours_until(instant, current)

    tier = select_tier(remaining)
    percentage = policy.percentage_for(tier)
    amount = round2(price * Decimal(str(percentage)) / Decimal(100))
    return RefundResult(
        refund_amount=amount,
        refund_percentage=percentage,
        tier=tier,
        hours_until_service=remaining,
    )


def policy_from_settings(app_settings) -> RefundPolicy:
    return RefundPolicy(
        more_than_24h=app_settings.refund_policy_more_than_24h,
        between_24h_and_2h=app_settings.refund_policy_between_24h_and_2h,
        less_than_2h=app_settings.refund_policy_less_than_2h,
    )

from __future__ import annotations

from typing import Final

from bikawo.domain.errors import ConflictError, InvalidArgumentError

BOOKING_STATUS_PENDING: Final[str] = "pending"
BOOKING_STATUS_CONFIRMED: Final[str] = "confirmed"
BOOKING_STATUS_ASSIGNED: Final[str] = "assigned"
BOOKING_STATUS_IN_PROGRESS: Final[str] = "in_progress"
BOOKING_STATUS_COMPLETED: Final[str] = "completed"
BOOKING_STATUS_CANCELLED: Final[str] = "cancelled"

BOOKING_STATUSES: Final[tuple[str, ...]] = (
    BOOKING_STATUS_PENDING,
    BOOKING_STATUS_CONFIRMED,
    BOOKING_STATUS_ASSIGNED,
    BOOKING_STATUS_IN_PROGRESS,
    BOOKING_STATUS_COMPLETED,
    BOOKING_STATUS_CANCELLED,
)

TERMINAL_STATUSES: Final[frozenset[str]] = frozenset(
    {BOOKING_STATUS_COMPLETED, BOOKING_STATUS_CANCELLED}
)

CANCELLED_BY_CLIENT: Final[str] = "client"
CANCELLED_BY_PROVIDER: Final[str] = "provider"
CANCELLING_ACTORS: Final[tuple[str, ...]] = (CANCELLED_BY_CLIENT, CANCELLED_BY_PROVIDER)

_ALLOWED_TRANSITIONS: Final[dict[str, set[str]]] = {
    BOOKING_STATUS_PENDING: {
        BOOKING_STATUS_CONFIRMED,
        BOOKING_STATUS_ASSIGNED,
        BOOKING_STATUS_CANCELLED,
    },
    BOOKING_STATUS_CONFIRMED: {
        BOOKING_STATUS_ASSIGNED,
        BOOKING_STATUS_IN_PROGRESS,
        BOOKING_STATUS_CANCELLED,
    },
    BOOKING_STATUS_ASSIGNED: {BOOKING_STATUS_IN_PROGRESS, BOOKING_STATUS_CANCELLED},
    BOOKING_STATUS_IN_PROGRESS: {BOOKING_STATUS_COMPLETED, BOOKING_STATUS_CANCELLED},
    BOOKING_STATUS_COMPLETED: set(),
    BOOKING_STATUS_CANCELLED: set(),
}


def is_valid_status(value: str) -> bool:
    return value in BOOKING_STATUSES


def allowed_next_statuses(current: str) -> set[str]:
    return _ALLOWED_TRANSITIONS.get(current, set())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def assert_valid_transition(current: str, target: str) -> None:
    if not is_valid_status(target):
        raise InvalidArgumentError(detail=f"Unknown booking status: {target}")
    if current == target and not is_terminal(current):
        return
    if is_terminal(current):
        raise ConflictError(detail=f"Booking is already {current}")
    if target not in allowed_next_statuses(current):
        raise ConflictError(detail=f"Cannot move booking from {current} to {target}")


def counterparty_of(actor: str) -> str:
    if actor == CANCELLED_BY_CLIENT:
        return CANCELLED_BY_PROVIDER
    if actor == CANCELLED_BY_PROVIDER:
        return CANCELLED_BY_CLIENT
    raise InvalidArgumentError(detail=f"Unknown cancelling actor: {actor}")

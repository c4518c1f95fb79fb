import logging
from datetime import date, datetime, time, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bikawo.domain.bookings import statuses
from bikawo.domain.bookings.db_models import Booking
from bikawo.domain.errors import ConflictError, InvalidArgumentError, NotFoundError, PersistenceError
from bikawo.domain.refunds.policy import resolve_service_instant
from bikawo.infra.metrics import metrics

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 2000


async def get_booking(session: AsyncSession, booking_id: str, *, with_payments: bool = False) -> Booking:
    stmt = select(Booking).where(Booking.booking_id == booking_id)
    if with_payments:
        stmt = stmt.options(selectinload(Booking.payments))
    booking = await session.scalar(stmt)
    if booking is None:
        raise NotFoundError(detail="Booking not found")
    return booking


def normalize_reason(reason: str | None) -> str:
    normalized = (reason or "").strip()
    if not normalized:
        raise InvalidArgumentError(detail="A cancellation reason is required")
    if len(normalized) > MAX_REASON_LENGTH:
        raise InvalidArgumentError(
            detail=f"Cancellation reason must be at most {MAX_REASON_LENGTH} characters"
        )
    return normalized


async def mark_cancelled(
    session: AsyncSession,
    booking: Booking,
    *,
    cancelled_by: str,
    reason: str,
    cancelled_at: datetime,
) -> Booking:
    """Flip the booking to ``cancelled`` and commit.

    The UPDATE only matches bookings that are not already terminal, so two
    concurrent requests cannot both win: the loser sees zero affected rows.
    """
    statuses.assert_valid_transition(booking.status, statuses.BOOKING_STATUS_CANCELLED)
    stmt = (
        update(Booking)
        .where(
            Booking.booking_id == booking.booking_id,
            Booking.status.notin_(statuses.TERMINAL_STATUSES),
        )
        .values(
            status=statuses.BOOKING_STATUS_CANCELLED,
            cancelled_by=cancelled_by,
            cancelled_at=cancelled_at,
            cancellation_reason=reason,
            updated_at=cancelled_at,
        )
        .execution_options(synchronize_session=False)
    )
    try:
        result = await session.execute(stmt)
        if result.rowcount == 0:
            await session.rollback()
            raise ConflictError(detail="Booking is already cancelled or completed")
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "booking_cancel_persist_failed",
            extra={"extra": {"booking_id": booking.booking_id, "error_type": type(exc).__name__}},
        )
        raise PersistenceError(detail="Could not update the booking, please retry") from exc

    await session.refresh(booking)
    metrics.record_booking("cancelled")
    return booking


async def reschedule_booking(
    session: AsyncSession,
    booking_id: str,
    *,
    booking_date: date,
    start_time: time,
    duration_hours: float | None,
    tz: str,
    now: datetime | None = None,
) -> Booking:
    """Move a booking to a new slot and send it back for provider confirmation."""
    booking = await get_booking(session, booking_id)
    if statuses.is_terminal(booking.status):
        raise ConflictError(detail=f"Booking is already {booking.status}")

    current = now or datetime.now(timezone.utc)
    instant = resolve_service_instant(booking_date, start_time, tz)
    if instant <= current:
        raise InvalidArgumentError(detail="The new service time must be in the future")
    if duration_hours is not None and duration_hours <= 0:
        raise InvalidArgumentError(detail="Duration must be positive")

    previous = {
        "booking_date": booking.booking_date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M"),
        "status": booking.status,
    }
    values = {
        "booking_date": booking_date,
        "start_time": start_time,
        "status": statuses.BOOKING_STATUS_PENDING,
        "updated_at": current,
    }
    if duration_hours is not None:
        values["duration_hours"] = duration_hours
    # Same guard as mark_cancelled: a cancellation committed since the read wins.
    stmt = (
        update(Booking)
        .where(
            Booking.booking_id == booking.booking_id,
            Booking.status.notin_(statuses.TERMINAL_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await session.execute(stmt)
        if result.rowcount == 0:
            await session.rollback()
            raise ConflictError(detail="Booking was cancelled or completed in the meantime")
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceError(detail="Could not update the booking, please retry") from exc
    await session.refresh(booking)

    metrics.record_booking("rescheduled")
    logger.info(
        "booking_rescheduled",
        extra={"extra": {"booking_id": booking.booking_id, "previous": previous}},
    )
    return booking


async def list_cancelled_bookings(session: AsyncSession, *, limit: int = 100) -> list[Booking]:
    stmt = (
        select(Booking)
        .where(Booking.status == statuses.BOOKING_STATUS_CANCELLED)
        .options(selectinload(Booking.payments))
        .order_by(Booking.cancelled_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())

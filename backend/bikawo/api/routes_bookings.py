import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bikawo.api.problem_details import problem_details
from bikawo.dependencies import (
    get_app_settings,
    get_db_session,
    get_email_adapter,
    get_refund_policy,
    get_stripe_client,
)
from bikawo.domain.bookings import schemas as booking_schemas
from bikawo.domain.bookings import service as booking_service
from bikawo.domain.bookings import statuses as booking_statuses
from bikawo.domain.cancellations import service as cancellation_service
from bikawo.domain.errors import DomainError, InvalidArgumentError
from bikawo.domain.refunds.policy import RefundPolicy, calculate_refund
from bikawo.infra.logging import update_log_context

router = APIRouter()
logger = logging.getLogger(__name__)

CANCEL_FAILURE_FIELDS = {"success": False, "refundAmount": 0, "refundPercentage": 0}


@router.post(
    "/v1/bookings/{booking_id}/cancel",
    response_model=booking_schemas.CancelBookingResponse,
    response_model_by_alias=True,
)
async def cancel_booking(
    booking_id: str,
    payload: booking_schemas.CancelBookingRequest,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    policy: RefundPolicy = Depends(get_refund_policy),
    stripe_client: Any = Depends(get_stripe_client),
    email_adapter: Any = Depends(get_email_adapter),
    app_settings=Depends(get_app_settings),
):
    update_log_context(booking_id=booking_id)
    try:
        if payload.booking_id is not None and payload.booking_id != booking_id:
            raise InvalidArgumentError(detail="bookingId in the body does not match the URL")
        outcome = await cancellation_service.cancel_booking(
            session,
            booking_id,
            reason=payload.reason,
            cancelled_by=payload.cancelled_by,
            stripe_client=stripe_client,
            email_adapter=email_adapter,
            policy=policy,
            tz=app_settings.service_timezone,
            currency=app_settings.currency,
        )
    except DomainError as exc:
        logger.info(
            "booking_cancel_rejected",
            extra={"extra": {"booking_id": booking_id, "error": type(exc).__name__}},
        )
        return problem_details(
            request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors,
            type_=exc.type,
            extra=CANCEL_FAILURE_FIELDS,
        )

    return booking_schemas.CancelBookingResponse(
        success=True,
        refund_amount=float(outcome.refund_amount),
        refund_percentage=outcome.refund_percentage,
        refund_status=outcome.refund_status,
        warning=outcome.warning,
    )


@router.get(
    "/v1/bookings/{booking_id}/refund-quote",
    response_model=booking_schemas.RefundQuoteResponse,
    response_model_by_alias=True,
)
async def get_refund_quote(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
    policy: RefundPolicy = Depends(get_refund_policy),
    app_settings=Depends(get_app_settings),
) -> booking_schemas.RefundQuoteResponse:
    booking = await booking_service.get_booking(session, booking_id)
    booking_statuses.assert_valid_transition(booking.status, booking_statuses.BOOKING_STATUS_CANCELLED)
    result = calculate_refund(
        booking.booking_date,
        booking.start_time,
        booking.total_price,
        policy,
        tz=app_settings.service_timezone,
    )
    return booking_schemas.RefundQuoteResponse(
        booking_id=booking.booking_id,
        refund_amount=float(result.refund_amount),
        refund_percentage=result.refund_percentage,
        tier=result.tier.value,
        hours_until_service=round(result.hours_until_service, 2),
        currency=app_settings.currency,
    )


@router.post(
    "/v1/bookings/{booking_id}/reschedule",
    response_model=booking_schemas.BookingResponse,
    response_model_by_alias=True,
)
async def reschedule_booking(
    booking_id: str,
    payload: booking_schemas.RescheduleBookingRequest,
    session: AsyncSession = Depends(get_db_session),
    app_settings=Depends(get_app_settings),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.reschedule_booking(
        session,
        booking_id,
        booking_date=payload.booking_date,
        start_time=payload.start_time,
        duration_hours=payload.duration_hours,
        tz=app_settings.service_timezone,
    )
    return booking_schemas.BookingResponse.from_booking(booking)

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bikawo.api.admin_auth import AdminIdentity, require_admin
from bikawo.dependencies import get_db_session, get_email_adapter, get_stripe_client
from bikawo.domain.bookings import schemas as booking_schemas
from bikawo.domain.payments.db_models import Payment
from bikawo.domain.refunds import service as refund_service
from bikawo.infra.logging import update_log_context

router = APIRouter()


def _payment_response(payment: Payment) -> booking_schemas.RefundPaymentResponse:
    return booking_schemas.RefundPaymentResponse(
        payment_id=payment.payment_id,
        payment_intent_id=payment.payment_intent_id,
        amount=payment.amount_cents / 100,
        refunded_amount=(payment.refunded_amount_cents or 0) / 100,
        currency=payment.currency,
        status=payment.status,
        refund_status=payment.refund_status,
        refund_id=payment.refund_id,
        refunded_at=payment.refunded_at,
        admin_notes=payment.admin_notes,
    )


@router.get(
    "/v1/admin/refunds",
    response_model=booking_schemas.AdminRefundListResponse,
    response_model_by_alias=True,
)
async def list_refunds(
    refund_state: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> booking_schemas.AdminRefundListResponse:
    entries = await refund_service.list_refunds(session, state=refund_state, limit=limit)
    return booking_schemas.AdminRefundListResponse(
        items=[
            booking_schemas.AdminRefundEntry(
                booking=booking_schemas.BookingResponse.from_booking(entry.booking),
                payment=_payment_response(entry.payment) if entry.payment is not None else None,
                refund_state=entry.refund_state,
            )
            for entry in entries
        ]
    )


@router.post(
    "/v1/admin/bookings/{booking_id}/refunds",
    response_model=booking_schemas.RefundPaymentResponse,
    response_model_by_alias=True,
)
async def create_manual_refund(
    booking_id: str,
    payload: booking_schemas.ManualRefundRequest,
    session: AsyncSession = Depends(get_db_session),
    stripe_client: Any = Depends(get_stripe_client),
    email_adapter: Any = Depends(get_email_adapter),
    identity: AdminIdentity = Depends(require_admin),
) -> booking_schemas.RefundPaymentResponse:
    update_log_context(booking_id=booking_id, admin=identity.username)
    payment = await refund_service.issue_manual_refund(
        session,
        booking_id,
        amount=payload.amount,
        reason=payload.reason,
        stripe_client=stripe_client,
        email_adapter=email_adapter,
    )
    return _payment_response(payment)

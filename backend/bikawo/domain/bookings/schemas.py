from __future__ import annotations

from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelRequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="forbid")


class CamelResponseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, from_attributes=True)


class CancelBookingRequest(CamelRequestModel):
    # Checked by the workflow so failures carry the cancellation problem body.
    reason: str = ""
    cancelled_by: str = ""
    booking_id: str | None = None


class CancelBookingResponse(CamelResponseModel):
    success: bool = True
    refund_amount: float
    refund_percentage: float
    refund_status: str
    warning: str | None = None


class RefundQuoteResponse(CamelResponseModel):
    booking_id: str
    refund_amount: float
    refund_percentage: float
    tier: str
    hours_until_service: float
    currency: str


class RescheduleBookingRequest(CamelRequestModel):
    booking_date: date
    start_time: time
    duration_hours: float | None = Field(default=None, gt=0, le=24)


class BookingResponse(CamelResponseModel):
    booking_id: str
    client_id: str
    provider_id: str | None = None
    service_type: str | None = None
    booking_date: date
    start_time: time
    duration_hours: float
    total_price: float
    status: str
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        return cls(
            booking_id=booking.booking_id,
            client_id=booking.client_id,
            provider_id=booking.provider_id,
            service_type=booking.service_type,
            booking_date=booking.booking_date,
            start_time=booking.start_time,
            duration_hours=booking.duration_hours,
            total_price=float(booking.total_price),
            status=booking.status,
            cancelled_by=booking.cancelled_by,
            cancelled_at=booking.cancelled_at,
            cancellation_reason=booking.cancellation_reason,
        )


class NotificationResponse(CamelResponseModel):
    notification_id: str
    recipient_type: str
    recipient_id: str | None = None
    booking_id: str | None = None
    kind: str
    title: str
    message: str
    priority: str
    data: dict
    created_at: datetime
    read_at: datetime | None = None


class NotificationListResponse(CamelResponseModel):
    items: list[NotificationResponse]


class RefundPaymentResponse(CamelResponseModel):
    payment_id: str
    payment_intent_id: str | None = None
    amount: float
    refunded_amount: float
    currency: str
    status: str
    refund_status: str
    refund_id: str | None = None
    refunded_at: datetime | None = None
    admin_notes: str | None = None


class AdminRefundEntry(CamelResponseModel):
    booking: BookingResponse
    payment: RefundPaymentResponse | None = None
    refund_state: str


class AdminRefundListResponse(CamelResponseModel):
    items: list[AdminRefundEntry]


class ManualRefundRequest(CamelRequestModel):
    amount: float = Field(gt=0)
    reason: str = Field(min_length=1, max_length=2000)

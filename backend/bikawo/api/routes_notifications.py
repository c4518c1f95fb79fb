from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bikawo.dependencies import get_db_session
from bikawo.domain.bookings import schemas as booking_schemas
from bikawo.domain.notifications import service as notification_service

router = APIRouter()


@router.get(
    "/v1/notifications",
    response_model=booking_schemas.NotificationListResponse,
    response_model_by_alias=True,
)
async def list_notifications(
    recipient_type: str = Query(alias="recipientType"),
    recipient_id: str | None = Query(default=None, alias="recipientId"),
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_db_session),
) -> booking_schemas.NotificationListResponse:
    notifications = await notification_service.list_notifications(
        session,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        limit=limit,
    )
    return booking_schemas.NotificationListResponse(
        items=[booking_schemas.NotificationResponse.model_validate(item) for item in notifications]
    )

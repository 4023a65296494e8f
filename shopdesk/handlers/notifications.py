from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from shopdesk.database import get_session
from shopdesk.handlers.deps import get_current_user, get_notification_service
from shopdesk.models.models import User
from shopdesk.schemas import NotificationOut, NotificationPage
from shopdesk.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPage)
async def get_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: NotificationService = Depends(get_notification_service),
):
    """Уведомления текущего пользователя с количеством непрочитанных"""
    notifications, total, unread = await service.list_notifications(session, user, page, limit)
    return NotificationPage(
        results=len(notifications),
        total_notifications=total,
        unread_count=unread,
        notifications=[NotificationOut.model_validate(n) for n in notifications],
    )


@router.patch("/{notification_id}/read", response_model=NotificationOut)
async def mark_notification_as_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: NotificationService = Depends(get_notification_service),
):
    notification = await service.mark_read(session, user, notification_id)
    return NotificationOut.model_validate(notification)


@router.delete("", status_code=204)
async def clear_all_notifications(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: NotificationService = Depends(get_notification_service),
):
    await service.clear_all(session, user)
    return Response(status_code=204)

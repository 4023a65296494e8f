from typing import Optional
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from shopdesk.database import get_session
from shopdesk.models.models import User
from shopdesk.services import access
from shopdesk.services.auth import authenticate, extract_bearer_token
from shopdesk.services.notification_service import NotificationService
from shopdesk.services.ticket_service import TicketService


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> User:
    """
    Ожидает: Authorization: Bearer <access_token>
    Возвращает пользователя из токена
    """
    token = extract_bearer_token(authorization)
    user = await authenticate(session, token, request.app.state.settings)
    # для логирования ошибок в обработчике исключений
    request.state.user_id = user.id
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    access.ensure_admin(user)
    return user


def get_ticket_service(request: Request) -> TicketService:
    return request.app.state.ticket_service


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service

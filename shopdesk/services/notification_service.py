import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from shopdesk.config import settings as default_settings, Settings
from shopdesk.exceptions import InternalError, NotFoundError
from shopdesk.models.models import ADMIN_ROLE, Notification, NotificationType, Ticket, User
from shopdesk.schemas import notification_payload, ticket_payload
from shopdesk.services.connections import ConnectionRegistry
from shopdesk.services.email import EmailService
from shopdesk.services.users import UserDirectory

logger = logging.getLogger(__name__)

NOTIFICATION_MESSAGES = {
    NotificationType.TICKET_CREATED: "Your ticket #{ticket_id} has been created successfully.",
    NotificationType.TICKET_UPDATED: "Your ticket #{ticket_id} has been updated.",
    NotificationType.TICKET_ASSIGNED: "Your ticket #{ticket_id} has been assigned to a support agent.",
    NotificationType.TICKET_ESCALATED: "Your ticket #{ticket_id} has been escalated for urgent attention.",
    NotificationType.TICKET_CLOSED: "Your ticket #{ticket_id} has been closed.",
    NotificationType.MESSAGE_RECEIVED: "You have a new message on ticket #{ticket_id}.",
}
DEFAULT_MESSAGE = "You have a ticket notification."

EMAIL_SUBJECTS = {
    NotificationType.TICKET_CREATED: "New Ticket Created",
    NotificationType.TICKET_UPDATED: "Ticket Update",
    NotificationType.TICKET_ASSIGNED: "Ticket Assigned",
    NotificationType.TICKET_ESCALATED: "Ticket Escalated",
    NotificationType.TICKET_CLOSED: "Ticket Closed",
    NotificationType.MESSAGE_RECEIVED: "New Message Received",
}
DEFAULT_SUBJECT = "Ticket Notification"

EMAIL_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>Ticket Notification</h2>
    <p>Dear {username},</p>
    <p>{message}</p>
    <a href="{link}">View Ticket</a>
</div>
"""


def _as_type(value: Any) -> Optional[NotificationType]:
    try:
        return NotificationType(value)
    except ValueError:
        return None


@dataclass
class NotificationEvent:
    target_user_id: int
    ticket_id: Optional[int]
    type: NotificationType
    message: str


class NotificationService:
    """
    Доставка уведомлений по событиям тикетов

    Каждое событие: запись в БД (обязательна), push через websocket
    и письмо (оба канала best-effort).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: ConnectionRegistry,
        email_service: EmailService,
        directory: UserDirectory,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.email_service = email_service
        self.directory = directory
        self.frontend_url = settings.FRONTEND_URL.rstrip("/")

    # === Шаблоны ===
    def render_message(self, type: Any, ticket_id: Optional[int]) -> str:
        """Текст уведомления по типу; для неизвестного типа - общий текст"""
        template = NOTIFICATION_MESSAGES.get(_as_type(type))
        if template is None:
            return DEFAULT_MESSAGE
        return template.format(ticket_id=ticket_id)

    def email_subject(self, type: Any) -> str:
        return EMAIL_SUBJECTS.get(_as_type(type), DEFAULT_SUBJECT)

    def email_body(self, username: str, message: str, ticket_id: Optional[int]) -> str:
        return EMAIL_TEMPLATE.format(
            username=html.escape(username or ""),
            message=html.escape(message),
            link=f"{self.frontend_url}/tickets/{ticket_id}",
        )

    # === Доставка одного события ===
    async def dispatch(self, event: NotificationEvent) -> Notification:
        """
        Сохраняет уведомление и пытается доставить его по двум каналам

        Raises:
            InternalError: уведомление не удалось сохранить
        """
        notification = await self._persist(event)

        await self.registry.send(event.target_user_id, "new_notification", notification_payload(notification))
        await self._send_email(event)

        return notification

    async def _persist(self, event: NotificationEvent) -> Notification:
        try:
            async with self.session_factory() as session:
                notification = Notification(
                    user_id=event.target_user_id,
                    ticket_id=event.ticket_id,
                    type=NotificationType(event.type).value,
                    message=event.message,
                    is_read=False,
                )
                session.add(notification)
                await session.commit()
                return notification
        except SQLAlchemyError as e:
            logger.error(f"Ошибка при сохранении уведомления для пользователя {event.target_user_id}: {e}")
            raise InternalError(f"Failed to create notification: {e}") from e

    async def _send_email(self, event: NotificationEvent) -> None:
        """Письмо никогда не ломает вызывающую операцию"""
        try:
            user = await self.directory.get_user(event.target_user_id)
            if user is None or not user.email:
                logger.warning(f"Нет адреса для письма пользователю {event.target_user_id}")
                return
            await self.email_service.send(
                user.email,
                self.email_subject(event.type),
                self.email_body(user.username, event.message, event.ticket_id),
            )
        except Exception as e:
            logger.error(f"Ошибка при отправке письма пользователю {event.target_user_id}: {e!r}")

    async def notify(self, user_id: int, ticket: Ticket, type: NotificationType) -> Notification:
        return await self.dispatch(NotificationEvent(
            target_user_id=user_id,
            ticket_id=ticket.id,
            type=type,
            message=self.render_message(type, ticket.id),
        ))

    # === События тикетов ===
    async def notify_ticket_created(self, ticket: Ticket) -> Notification:
        return await self.notify(ticket.user_id, ticket, NotificationType.TICKET_CREATED)

    async def notify_ticket_assigned(self, ticket: Ticket) -> Notification:
        return await self.notify(ticket.user_id, ticket, NotificationType.TICKET_ASSIGNED)

    async def notify_ticket_closed(self, ticket: Ticket) -> Notification:
        return await self.notify(ticket.user_id, ticket, NotificationType.TICKET_CLOSED)

    async def broadcast_new_ticket(self, ticket: Ticket) -> int:
        """Новый тикет всем подключенным администраторам"""
        return await self.registry.broadcast_to_role(ADMIN_ROLE, "new_ticket", ticket_payload(ticket))

    async def fan_out_ticket_update(self, ticket: Ticket, type: NotificationType) -> List[Any]:
        """
        Рассылка по трем независимым адресатам: владелец, назначенный сотрудник,
        администраторы. Ошибка одной ветки не мешает остальным.
        """
        payload = ticket_payload(ticket)
        branches = [self._notify_party(ticket.user_id, ticket, type, payload)]
        if ticket.assigned_staff_id and ticket.assigned_staff_id != ticket.user_id:
            branches.append(self._notify_party(ticket.assigned_staff_id, ticket, type, payload))
        branches.append(self.registry.broadcast_to_role(ADMIN_ROLE, "ticket_updated", payload))

        results = await asyncio.gather(*branches, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Ошибка рассылки по тикету {ticket.id} ({type.value}): {result!r}")
        return results

    async def _notify_party(self, user_id: int, ticket: Ticket, type: NotificationType, payload: dict) -> Notification:
        await self.registry.send(user_id, "ticket_updated", payload)
        return await self.notify(user_id, ticket, type)

    # === Уведомления пользователя ===
    async def list_notifications(
        self, session: AsyncSession, user: User, page: int = 1, limit: int = 10
    ) -> Tuple[List[Notification], int, int]:
        """
        Уведомления пользователя, новые сверху

        Returns:
            Tuple: (уведомления страницы, всего уведомлений, непрочитанных)
        """
        notifications = list(await session.scalars(
            select(Notification)
            .where(Notification.user_id == user.id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ))
        total = await session.scalar(
            select(func.count(Notification.id)).where(Notification.user_id == user.id)
        ) or 0
        unread = await session.scalar(
            select(func.count(Notification.id))
            .where(Notification.user_id == user.id, Notification.is_read.is_(False))
        ) or 0
        return notifications, total, unread

    async def mark_read(self, session: AsyncSession, user: User, notification_id: int) -> Notification:
        notification = await session.scalar(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user.id,
            )
        )
        if notification is None:
            raise NotFoundError("No notification found with that ID")

        notification.is_read = True
        await session.commit()
        return notification

    async def clear_all(self, session: AsyncSession, user: User) -> int:
        """Удаляет все уведомления пользователя"""
        result = await session.execute(
            delete(Notification).where(Notification.user_id == user.id)
        )
        await session.commit()
        logger.info(f"Пользователь {user.id} очистил уведомления: {result.rowcount}")
        return result.rowcount

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, List, Optional, Tuple
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from shopdesk.config import settings as default_settings, Settings
from shopdesk.exceptions import InvalidArgumentError, NotFoundError, RateLimitedError
from shopdesk.models.models import (
    Message, NotificationType, Order, Ticket, TicketPriority, TicketStatus, User,
)
from shopdesk.schemas import TicketFilter
from shopdesk.services import access
from shopdesk.services.notification_service import NotificationService
from shopdesk.services.users import UserDirectory
from shopdesk.utils.text_utils import truncate_text
from shopdesk.utils.ticket_utils import (
    apply_save_rules,
    count_recent_messages,
    count_recent_tickets,
    is_escalation_due,
    mark_closed,
    raise_priority,
)

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_MESSAGE = "New ticket created"
ESCALATION_NOTE = "Ticket automatically escalated due to prolonged open status"
ALL_FILTER = "All"


def parse_status(value: str) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError:
        raise InvalidArgumentError("Invalid ticket status")


def _require_text(content: str) -> str:
    text = (content or "").strip()
    if not text:
        raise InvalidArgumentError("Message content cannot be empty")
    return text


class TicketService:
    def __init__(self, notifier: NotificationService, directory: UserDirectory, settings: Settings = default_settings):
        self.notifier = notifier
        self.directory = directory
        self.max_tickets_per_day = settings.MAX_TICKETS_PER_DAY
        self.max_messages_per_window = settings.MAX_MESSAGES_PER_WINDOW
        self.message_window = timedelta(seconds=settings.MESSAGE_WINDOW_SECONDS)
        self.escalation_age = timedelta(hours=settings.ESCALATION_AGE_HOURS)
        self.auto_assign = settings.AUTO_ASSIGN_ON_CREATE

    async def get_user_by_id(self, session: AsyncSession, user_id: int) -> Optional[User]:
        """Получает пользователя по ID"""
        return await session.get(User, user_id)

    async def get_ticket_by_id(self, session: AsyncSession, ticket_id: int) -> Optional[Ticket]:
        """Получает тикет по ID"""
        result = await session.execute(
            select(Ticket).where(Ticket.id == ticket_id)
        )
        return result.scalar_one_or_none()

    async def _require_ticket(self, session: AsyncSession, ticket_id: int) -> Ticket:
        ticket = await self.get_ticket_by_id(session, ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found")
        return ticket

    async def _save(self, session: AsyncSession, ticket: Ticket, now: Optional[datetime] = None) -> Ticket:
        """Применяет правила жизненного цикла и сохраняет тикет"""
        apply_save_rules(ticket, now)
        session.add(ticket)
        await session.commit()
        logger.info(f"Ticket {ticket.id} updated: {ticket.status}")
        return ticket

    async def _notify(self, action: str, ticket: Ticket, pending: Awaitable[Any]) -> Any:
        """
        Уведомление не откатывает уже сохраненный тикет: ошибка только логируется
        """
        try:
            return await pending
        except Exception as e:
            logger.exception(f"Уведомление '{action}' по тикету #{ticket.id} не доставлено: {e}")
            return None

    # === Создание тикета ===
    async def create_ticket(
        self,
        session: AsyncSession,
        actor: User,
        order_id: int,
        initial_message: Optional[str] = None,
        subject: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Ticket:
        """
        Создает тикет по заказу пользователя

        Raises:
            RateLimitedError: за сутки создано слишком много тикетов
            InvalidArgumentError: первое сообщение состоит из одних пробелов
            NotFoundError: заказ не найден или принадлежит другому пользователю
        """
        now = now or datetime.utcnow()
        if initial_message is not None:
            initial_message = _require_text(initial_message)

        recent = await count_recent_tickets(session, actor.id, now - timedelta(hours=24))
        if recent >= self.max_tickets_per_day:
            logger.warning(f"Пользователь {actor.id} превысил лимит тикетов ({recent} за сутки)")
            raise RateLimitedError("Too many tickets created. Please wait before creating another.")

        order = await session.get(Order, order_id)
        if order is None or order.user_id != actor.id:
            raise NotFoundError("Order not found")

        ticket = Ticket(
            user_id=actor.id,
            order_id=order.id,
            subject=subject.strip() if subject else None,
            status=TicketStatus.OPEN.value,
            priority=TicketPriority.MEDIUM.value,
            created_at=now,
            updated_at=now,
        )
        ticket.messages.append(Message(
            sender_id=actor.id,
            content=initial_message or DEFAULT_INITIAL_MESSAGE,
            is_admin=bool(actor.is_admin),
            is_system=False,
            created_at=now,
        ))

        if self.auto_assign:
            admin = await self.directory.find_least_loaded_admin()
            if admin is not None:
                ticket.assigned_staff_id = admin.id

        await self._save(session, ticket, now)
        logger.info(f"Создан тикет #{ticket.id} по заказу {order.order_number} для пользователя {actor.id}")

        await self._notify("created", ticket, self.notifier.notify_ticket_created(ticket))
        await self._notify("new_ticket", ticket, self.notifier.broadcast_new_ticket(ticket))
        if ticket.assigned_staff_id is not None:
            await self._notify("assigned", ticket, self.notifier.notify_ticket_assigned(ticket))
        if ticket.status == TicketStatus.CLOSED.value:
            await self._notify("closed", ticket, self.notifier.notify_ticket_closed(ticket))
        return ticket

    # === Получение тикетов ===
    async def get_ticket(self, session: AsyncSession, ticket_id: int, actor: User) -> Ticket:
        ticket = await self._require_ticket(session, ticket_id)
        access.ensure_can_view(ticket, actor)
        return ticket

    async def get_user_tickets(self, session: AsyncSession, actor: User) -> List[Ticket]:
        """Тикеты пользователя, новые сверху"""
        return list(await session.scalars(
            select(Ticket)
            .where(Ticket.user_id == actor.id)
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        ))

    async def get_all_tickets(self, session: AsyncSession, actor: User) -> List[Ticket]:
        access.ensure_admin(actor)
        return list(await session.scalars(
            select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc())
        ))

    # === Сообщения ===
    async def append_message(
        self,
        session: AsyncSession,
        ticket_id: int,
        content: str,
        actor: User,
        now: Optional[datetime] = None,
    ) -> Ticket:
        """
        Добавляет сообщение к тикету

        Ответ в закрытый тикет переоткрывает его (In Progress).
        """
        content = _require_text(content)
        now = now or datetime.utcnow()
        ticket = await self._require_ticket(session, ticket_id)
        access.ensure_can_message(ticket, actor)

        recent = await count_recent_messages(session, actor.id, now - self.message_window)
        if recent >= self.max_messages_per_window:
            logger.warning(f"Пользователь {actor.id} превысил лимит сообщений ({recent})")
            raise RateLimitedError("Too many messages sent. Please wait before sending more.")

        previous_status = ticket.status
        ticket.messages.append(Message(
            sender_id=actor.id,
            content=content,
            is_admin=bool(actor.is_admin),
            is_system=False,
            created_at=now,
        ))
        if previous_status == TicketStatus.CLOSED.value:
            ticket.status = TicketStatus.IN_PROGRESS.value

        await self._save(session, ticket, now)
        logger.info(f"Сообщение в тикет #{ticket.id} от {actor.id}: {truncate_text(content, 50)}")

        await self._notify(
            "message", ticket, self.notifier.fan_out_ticket_update(ticket, NotificationType.MESSAGE_RECEIVED)
        )
        if previous_status != TicketStatus.CLOSED.value and ticket.status == TicketStatus.CLOSED.value:
            await self._notify("closed", ticket, self.notifier.notify_ticket_closed(ticket))
        return ticket

    # === Статус ===
    async def set_status(
        self,
        session: AsyncSession,
        ticket_id: int,
        new_status: str,
        actor: User,
        assigned_staff_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Ticket:
        """Смена статуса и (опционально) назначение сотрудника администратором"""
        access.ensure_admin(actor)
        status = parse_status(new_status)

        ticket = await self._require_ticket(session, ticket_id)

        staff_changed = False
        if assigned_staff_id is not None:
            staff = await self.get_user_by_id(session, assigned_staff_id)
            if staff is None:
                raise NotFoundError("Staff member not found")
            staff_changed = ticket.assigned_staff_id != staff.id
            ticket.assigned_staff_id = staff.id

        previous_status = ticket.status
        if status == TicketStatus.CLOSED:
            mark_closed(ticket, now)
        else:
            ticket.status = status.value

        await self._save(session, ticket, now)

        await self._notify(
            "updated", ticket, self.notifier.fan_out_ticket_update(ticket, NotificationType.TICKET_UPDATED)
        )
        if staff_changed:
            await self._notify("assigned", ticket, self.notifier.notify_ticket_assigned(ticket))
        if previous_status != TicketStatus.CLOSED.value and ticket.status == TicketStatus.CLOSED.value:
            await self._notify("closed", ticket, self.notifier.notify_ticket_closed(ticket))
        return ticket

    # === Эскалация ===
    async def escalate(
        self,
        session: AsyncSession,
        ticket_id: int,
        actor: Optional[User] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Ticket, bool]:
        """
        Эскалирует тикет, открытый дольше суток

        Без actor вызов считается системным (плановая проверка).

        Returns:
            Tuple[Ticket, bool]: тикет и признак того, что эскалация произошла
        """
        if actor is not None:
            access.ensure_admin(actor)
        now = now or datetime.utcnow()
        ticket = await self._require_ticket(session, ticket_id)

        if not is_escalation_due(ticket, now, self.escalation_age):
            logger.info(f"Тикет #{ticket.id} не требует эскалации ({ticket.status})")
            return ticket, False

        raise_priority(ticket, TicketPriority.HIGH)
        ticket.status = TicketStatus.IN_PROGRESS.value

        senior = await self.directory.find_senior_support()
        if senior is not None:
            ticket.assigned_staff_id = senior.id

        ticket.messages.append(Message(
            sender_id=None,
            content=ESCALATION_NOTE,
            is_admin=False,
            is_system=True,
            created_at=now,
        ))

        await self._save(session, ticket, now)
        logger.info(f"Тикет #{ticket.id} эскалирован, назначен: {ticket.assigned_staff_id}")

        await self._notify(
            "escalated", ticket, self.notifier.fan_out_ticket_update(ticket, NotificationType.TICKET_ESCALATED)
        )
        return ticket, True

    async def escalate_stale_tickets(self, session: AsyncSession, now: Optional[datetime] = None) -> List[int]:
        """Плановая проверка: эскалирует все просроченные открытые тикеты"""
        now = now or datetime.utcnow()
        stale_ids = list(await session.scalars(
            select(Ticket.id)
            .where(Ticket.status == TicketStatus.OPEN.value)
            .where(Ticket.created_at < now - self.escalation_age)
            .order_by(Ticket.id)
        ))

        escalated = []
        for ticket_id in stale_ids:
            try:
                _, done = await self.escalate(session, ticket_id, now=now)
            except Exception as e:
                logger.error(f"Ошибка эскалации тикета #{ticket_id}: {e!r}")
                await session.rollback()
                continue
            if done:
                escalated.append(ticket_id)

        if escalated:
            logger.info(f"Эскалировано тикетов: {len(escalated)}")
        return escalated

    # === Поиск и аналитика ===
    async def filter_tickets(
        self, session: AsyncSession, actor: User, filters: TicketFilter
    ) -> Tuple[List[Ticket], int]:
        """
        Фильтрация и поиск тикетов для администратора

        Returns:
            Tuple[List[Ticket], int]: тикеты страницы и общее количество
        """
        access.ensure_admin(actor)

        conditions = []
        if filters.status and filters.status != ALL_FILTER:
            conditions.append(Ticket.status == filters.status)
        if filters.priority and filters.priority != ALL_FILTER:
            conditions.append(Ticket.priority == filters.priority)
        if filters.assigned_staff_id is not None:
            conditions.append(Ticket.assigned_staff_id == filters.assigned_staff_id)
        if filters.start_date is not None:
            conditions.append(Ticket.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Ticket.created_at <= filters.end_date)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(or_(
                Ticket.subject.ilike(pattern),
                Ticket.messages.any(Message.content.ilike(pattern)),
            ))

        total = await session.scalar(
            select(func.count(Ticket.id)).where(*conditions)
        ) or 0
        tickets = list(await session.scalars(
            select(Ticket)
            .where(*conditions)
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        ))
        return tickets, total

    async def get_analytics(self, session: AsyncSession, actor: User) -> Dict[str, Any]:
        """Распределение по статусам и приоритетам, среднее время решения, тикеты по месяцам"""
        access.ensure_admin(actor)

        status_rows = await session.execute(
            select(Ticket.status, func.count(Ticket.id)).group_by(Ticket.status)
        )
        priority_rows = await session.execute(
            select(Ticket.priority, func.count(Ticket.id)).group_by(Ticket.priority)
        )
        date_rows = (await session.execute(
            select(Ticket.created_at, Ticket.closed_at)
        )).all()

        resolution_times = [
            (closed_at - created_at).total_seconds()
            for created_at, closed_at in date_rows
            if created_at is not None and closed_at is not None
        ]
        per_month = Counter(
            created_at.strftime("%Y-%m") for created_at, _ in date_rows if created_at is not None
        )

        return {
            "status_distribution": {status: count for status, count in status_rows},
            "priority_distribution": {priority: count for priority, count in priority_rows},
            "avg_resolution_seconds": (
                sum(resolution_times) / len(resolution_times) if resolution_times else None
            ),
            "tickets_per_month": dict(sorted(per_month.items())),
        }

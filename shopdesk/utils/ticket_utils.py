"""
Правила жизненного цикла тикета, применяемые перед каждым сохранением,
и счетчики для контроля флуда.
"""
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from ..models.models import Message, Ticket, TicketPriority, TicketStatus
from .text_utils import mentions_urgency


def mark_closed(ticket: Ticket, now: Optional[datetime] = None) -> Ticket:
    """
    Переводит тикет в Closed

    closed_at выставляется только при первом закрытии: после переоткрытия
    и повторного закрытия остается исходное значение.
    """
    ticket.status = TicketStatus.CLOSED.value
    if ticket.closed_at is None:
        ticket.closed_at = now or datetime.utcnow()
    return ticket


def raise_priority(ticket: Ticket, floor: TicketPriority) -> Ticket:
    """Поднимает приоритет не ниже floor; понижения не бывает"""
    current = TicketPriority(ticket.priority or TicketPriority.MEDIUM.value)
    if current.rank < floor.rank:
        ticket.priority = floor.value
    return ticket


def apply_auto_close(ticket: Ticket, now: Optional[datetime] = None) -> Ticket:
    """
    Автозакрытие: если все сообщения тикета написаны администраторами,
    тикет считается отвеченным и закрывается

    Args:
        ticket: Тикет перед сохранением
        now: Текущее время (для тестов)

    Returns:
        Ticket: тот же тикет, возможно закрытый
    """
    messages = ticket.messages
    if (
        messages
        and all(msg.is_admin for msg in messages)
        and ticket.status != TicketStatus.CLOSED.value
    ):
        mark_closed(ticket, now)
    return ticket


def apply_urgent_escalation(ticket: Ticket) -> Ticket:
    """Любое сообщение со словами urgent/emergency делает приоритет Urgent"""
    if ticket.priority == TicketPriority.URGENT.value:
        return ticket
    if any(mentions_urgency(msg.content) for msg in ticket.messages):
        ticket.priority = TicketPriority.URGENT.value
    return ticket


def apply_save_rules(ticket: Ticket, now: Optional[datetime] = None) -> Ticket:
    """Все правила, выполняемые перед сохранением тикета, в фиксированном порядке"""
    apply_auto_close(ticket, now)
    apply_urgent_escalation(ticket)
    return ticket


def is_escalation_due(ticket: Ticket, now: datetime, max_age: timedelta) -> bool:
    """Эскалация нужна, если тикет открыт дольше max_age и все еще в статусе Open"""
    if ticket.status != TicketStatus.OPEN.value or ticket.created_at is None:
        return False
    return now - ticket.created_at > max_age


async def count_recent_tickets(session: AsyncSession, user_id: int, since: datetime) -> int:
    """
    Считает тикеты пользователя, созданные после since

    Args:
        session: Сессия базы данных
        user_id: ID пользователя
        since: Начало окна

    Returns:
        int: Количество тикетов
    """
    return await session.scalar(
        select(func.count(Ticket.id))
        .where(Ticket.user_id == user_id)
        .where(Ticket.created_at >= since)
    ) or 0


async def count_recent_messages(session: AsyncSession, user_id: int, since: datetime) -> int:
    """Считает сообщения пользователя во всех тикетах после since"""
    return await session.scalar(
        select(func.count(Message.id))
        .where(Message.sender_id == user_id)
        .where(Message.created_at >= since)
    ) or 0

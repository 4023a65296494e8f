from shopdesk.exceptions import ForbiddenError
from shopdesk.models.models import Ticket, User


def is_owner(ticket: Ticket, actor: User) -> bool:
    """Проверка: является ли пользователь владельцем тикета"""
    return ticket.user_id == actor.id


def can_view(ticket: Ticket, actor: User) -> bool:
    """Просмотр: владелец или администратор"""
    return is_owner(ticket, actor) or bool(actor.is_admin)


def can_message(ticket: Ticket, actor: User) -> bool:
    """
    Переписка: владелец или администратор

    Назначенный сотрудник без флага администратора писать в тикет не может.
    """
    return can_view(ticket, actor)


def can_set_status(actor: User) -> bool:
    """Смена статуса и назначение: только администратор"""
    return bool(actor.is_admin)


def ensure_can_view(ticket: Ticket, actor: User) -> None:
    if not can_view(ticket, actor):
        raise ForbiddenError("Not authorized to view this ticket")


def ensure_can_message(ticket: Ticket, actor: User) -> None:
    if not can_message(ticket, actor):
        raise ForbiddenError("Not authorized to message this ticket")


def ensure_admin(actor: User) -> None:
    if not can_set_status(actor):
        raise ForbiddenError("Admin access required")

from .models import (
    ADMIN_ROLE,
    SENIOR_SUPPORT_ROLE,
    Message,
    Notification,
    NotificationType,
    Order,
    Ticket,
    TicketPriority,
    TicketStatus,
    User,
)

__all__ = [
    'ADMIN_ROLE', 'SENIOR_SUPPORT_ROLE', 'Message', 'Notification', 'NotificationType',
    'Order', 'Ticket', 'TicketPriority', 'TicketStatus', 'User',
]

from datetime import datetime, timezone
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


# -----------------------------
# Requests
# -----------------------------
class TicketCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    order_id: int
    initial_message: Optional[str] = Field(default=None, min_length=3, max_length=500)
    subject: Optional[str] = Field(default=None, max_length=200)


class MessageCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=1000)


class StatusUpdate(BaseModel):
    # строка, а не TicketStatus: неверное значение должно давать InvalidArgument из сервиса
    status: str
    assigned_staff_id: Optional[int] = None


class TicketFilter(BaseModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    assigned_staff_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search: Optional[str] = Field(default=None, max_length=200)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # колонки DateTime хранят наивное UTC-время
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


# realtime: update_ticket carries either a reply or an admin status change
class TicketEventUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    ticket_id: int
    content: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    status: Optional[str] = None
    assigned_staff_id: Optional[int] = None


# -----------------------------
# Responses
# -----------------------------
class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: Optional[int]
    content: str
    is_admin: bool
    is_system: bool
    created_at: Optional[datetime]


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    order_id: int
    subject: Optional[str]
    status: str
    priority: str
    assigned_staff_id: Optional[int]
    messages: List[MessageOut]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    closed_at: Optional[datetime]


class TicketPage(BaseModel):
    tickets: List[TicketOut]
    total_pages: int
    current_page: int
    total_tickets: int


class EscalationOut(BaseModel):
    escalated: bool
    ticket: TicketOut


class TicketAnalytics(BaseModel):
    status_distribution: Dict[str, int]
    priority_distribution: Dict[str, int]
    avg_resolution_seconds: Optional[float]
    tickets_per_month: Dict[str, int]


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    ticket_id: Optional[int]
    type: str
    message: str
    is_read: bool
    created_at: Optional[datetime]


class NotificationPage(BaseModel):
    status: str = "success"
    results: int
    total_notifications: int
    unread_count: int
    notifications: List[NotificationOut]


def ticket_payload(ticket) -> dict:
    """Тикет в виде JSON-совместимого словаря для push-событий"""
    return TicketOut.model_validate(ticket).model_dump(mode="json")


def notification_payload(notification) -> dict:
    return NotificationOut.model_validate(notification).model_dump(mode="json")


from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from shopdesk.database import get_session
from shopdesk.handlers.deps import get_current_user, get_ticket_service, require_admin
from shopdesk.models.models import User
from shopdesk.schemas import (
    EscalationOut,
    MessageCreate,
    StatusUpdate,
    TicketAnalytics,
    TicketCreate,
    TicketFilter,
    TicketOut,
    TicketPage,
)
from shopdesk.services.ticket_service import TicketService

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=TicketOut, status_code=201)
async def create_ticket(
    payload: TicketCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    """Создание тикета по заказу пользователя"""
    ticket = await service.create_ticket(
        session, user, payload.order_id, payload.initial_message, payload.subject
    )
    return TicketOut.model_validate(ticket)


@router.get("/my-tickets", response_model=List[TicketOut])
async def get_user_tickets(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    tickets = await service.get_user_tickets(session, user)
    return [TicketOut.model_validate(t) for t in tickets]


@router.get("", response_model=List[TicketOut])
async def get_all_tickets(
    user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    tickets = await service.get_all_tickets(session, user)
    return [TicketOut.model_validate(t) for t in tickets]


@router.get("/filter", response_model=TicketPage)
async def filter_tickets(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_staff_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    """Фильтрация и поиск тикетов (администратор)"""
    filters = TicketFilter(
        status=status,
        priority=priority,
        assigned_staff_id=assigned_staff_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
    tickets, total = await service.filter_tickets(session, user, filters)
    return TicketPage(
        tickets=[TicketOut.model_validate(t) for t in tickets],
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        total_tickets=total,
    )


@router.get("/analytics", response_model=TicketAnalytics)
async def get_ticket_analytics(
    user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    return TicketAnalytics(**await service.get_analytics(session, user))


@router.get("/{ticket_id}", response_model=TicketOut)
async def get_ticket(
    ticket_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.get_ticket(session, ticket_id, user)
    return TicketOut.model_validate(ticket)


@router.post("/{ticket_id}/messages", response_model=TicketOut)
async def add_ticket_message(
    ticket_id: int,
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    """Сообщение в тикет (владелец или администратор)"""
    ticket = await service.append_message(session, ticket_id, payload.content, user)
    return TicketOut.model_validate(ticket)


@router.patch("/{ticket_id}/status", response_model=TicketOut)
async def update_ticket_status(
    ticket_id: int,
    payload: StatusUpdate,
    user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.set_status(
        session, ticket_id, payload.status, user, payload.assigned_staff_id
    )
    return TicketOut.model_validate(ticket)


@router.put("/{ticket_id}/escalate", response_model=EscalationOut)
async def escalate_ticket(
    ticket_id: int,
    user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    service: TicketService = Depends(get_ticket_service),
):
    """Ручной запуск эскалации; если условия не выполнены, тикет не меняется"""
    ticket, escalated = await service.escalate(session, ticket_id, actor=user)
    return EscalationOut(escalated=escalated, ticket=TicketOut.model_validate(ticket))

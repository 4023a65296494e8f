from typing import List, Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from shopdesk.models.models import ADMIN_ROLE, SENIOR_SUPPORT_ROLE, Ticket, User


class UserDirectory:
    """Поиск пользователей по ролям для рассылок и автоназначения"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_user(self, user_id: int) -> Optional[User]:
        """Получает пользователя по ID"""
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_role_members(self, role: str) -> List[int]:
        """
        Возвращает ID пользователей с ролью

        Роль "admin" определяется флагом is_admin, остальные роли - полем role.
        """
        if role == ADMIN_ROLE:
            condition = User.is_admin.is_(True)
        else:
            condition = User.role == role
        async with self.session_factory() as session:
            result = await session.scalars(
                select(User.id).where(condition, User.is_active.is_(True)).order_by(User.id)
            )
            return list(result)

    async def find_senior_support(self) -> Optional[User]:
        """Первый активный сотрудник с ролью Senior Support"""
        async with self.session_factory() as session:
            return await session.scalar(
                select(User)
                .where(User.role == SENIOR_SUPPORT_ROLE, User.is_active.is_(True))
                .order_by(User.id)
                .limit(1)
            )

    async def find_least_loaded_admin(self) -> Optional[User]:
        """
        Администратор с наименьшим числом назначенных тикетов

        При равенстве порядок определяется базой данных.
        """
        ticket_count = func.count(Ticket.id)
        async with self.session_factory() as session:
            return await session.scalar(
                select(User)
                .outerjoin(Ticket, Ticket.assigned_staff_id == User.id)
                .where(User.is_admin.is_(True), User.is_active.is_(True))
                .group_by(User.id)
                .order_by(ticket_count.asc())
                .limit(1)
            )

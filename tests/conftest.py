import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import jwt
import pytest

from shopdesk.config import Settings
from shopdesk.database import close_db, create_engine, create_session_factory, init_db
from shopdesk.models.models import SENIOR_SUPPORT_ROLE, Order, User
from shopdesk.services.connections import ConnectionRegistry
from shopdesk.services.notification_service import NotificationService
from shopdesk.services.ticket_service import TicketService
from shopdesk.services.users import UserDirectory

TEST_SECRET = "test-secret"


class FakeConnection:
    """Соединение, которое запоминает отправленные кадры"""

    def __init__(self, fail=False, delay=0.0):
        self.frames = []
        self.fail = fail
        self.delay = delay
        self.closed_with = None

    async def send_json(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.frames.append(data)

    async def close(self, code=1000):
        self.closed_with = code

    def events(self):
        return [frame["event"] for frame in self.frames]


class FakeEmailService:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    @property
    def enabled(self):
        return True

    async def send(self, to, subject, html):
        if self.fail:
            raise RuntimeError("smtp relay is down")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return "msg-1"


def make_token(user_id, secret=TEST_SECRET, expires_in=timedelta(hours=1)):
    return jwt.encode(
        {"id": user_id, "exp": datetime.utcnow() + expires_in},
        secret,
        algorithm="HS256",
    )


def auth_headers(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


async def seed_people(session_factory):
    """Владелец, посторонний пользователь, два администратора, старший саппорт и заказы"""
    async with session_factory() as session:
        owner = User(username="alice", email="alice@example.com")
        stranger = User(username="bob", email="bob@example.com")
        admin = User(username="carol", email="carol@example.com", is_admin=True, role="admin")
        second_admin = User(username="dave", email="dave@example.com", is_admin=True, role="admin")
        senior = User(username="erin", email="erin@example.com", role=SENIOR_SUPPORT_ROLE)
        session.add_all([owner, stranger, admin, second_admin, senior])
        await session.flush()

        order = Order(user_id=owner.id, order_number="ORD-1001", total_price=42)
        stranger_order = Order(user_id=stranger.id, order_number="ORD-2001", total_price=10)
        admin_order = Order(user_id=admin.id, order_number="ORD-3001", total_price=5)
        session.add_all([order, stranger_order, admin_order])
        await session.commit()

    return SimpleNamespace(
        owner=owner,
        stranger=stranger,
        admin=admin,
        second_admin=second_admin,
        senior=senior,
        order=order,
        stranger_order=stranger_order,
        admin_order=admin_order,
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'shopdesk.db'}",
        JWT_SECRET=TEST_SECRET,
        ENVIRONMENT="production",
        EMAIL_API_URL=None,
        ESCALATION_SWEEP_INTERVAL=0,
        PUSH_SEND_TIMEOUT=0.2,
    )


@pytest.fixture
async def session_factory(settings):
    engine = create_engine(settings.database_url)
    await init_db(engine)
    yield create_session_factory(engine)
    await close_db(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def people(session_factory):
    return await seed_people(session_factory)


@pytest.fixture
def email():
    return FakeEmailService()


@pytest.fixture
def services(session_factory, settings, email):
    directory = UserDirectory(session_factory)
    registry = ConnectionRegistry(directory, send_timeout=settings.PUSH_SEND_TIMEOUT)
    notifier = NotificationService(session_factory, registry, email, directory, settings)
    tickets = TicketService(notifier, directory, settings)
    return SimpleNamespace(
        directory=directory,
        registry=registry,
        notifier=notifier,
        tickets=tickets,
        email=email,
    )

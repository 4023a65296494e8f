import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from shopdesk.exceptions import InternalError, NotFoundError
from shopdesk.models.models import Notification, NotificationType
from shopdesk.services.notification_service import (
    DEFAULT_MESSAGE,
    DEFAULT_SUBJECT,
    NotificationEvent,
    NotificationService,
)

from .conftest import FakeConnection, FakeEmailService


async def _stored(session_factory):
    async with session_factory() as session:
        return list(await session.scalars(select(Notification).order_by(Notification.id)))


def _event(people, type=NotificationType.TICKET_UPDATED, ticket_id=None):
    return NotificationEvent(
        target_user_id=people.owner.id,
        ticket_id=ticket_id,
        type=type,
        message="Your ticket has been updated.",
    )


class _BrokenSession:
    async def __aenter__(self):
        raise OperationalError("INSERT INTO notifications", {}, Exception("disk I/O error"))

    async def __aexit__(self, *exc):
        return False


def test_render_message_templates(services):
    assert services.notifier.render_message(NotificationType.TICKET_CREATED, 5) == (
        "Your ticket #5 has been created successfully."
    )
    assert services.notifier.render_message("MESSAGE_RECEIVED", 9) == "You have a new message on ticket #9."
    assert services.notifier.render_message("SOMETHING_ELSE", 9) == DEFAULT_MESSAGE
    assert services.notifier.email_subject("SOMETHING_ELSE") == DEFAULT_SUBJECT


def test_email_body_escapes_and_links(services):
    body = services.notifier.email_body("<alice>", "Your ticket #3 has been closed.", 3)

    assert "&lt;alice&gt;" in body
    assert "http://localhost:3000/tickets/3" in body


async def test_dispatch_persists_pushes_and_emails(session_factory, people, services):
    conn = FakeConnection()
    services.registry.register(people.owner.id, conn)

    notification = await services.notifier.dispatch(_event(people))

    stored = await _stored(session_factory)
    assert [n.id for n in stored] == [notification.id]
    assert stored[0].is_read is False
    assert conn.events() == ["new_notification"]
    assert conn.frames[0]["data"]["message"] == "Your ticket has been updated."
    assert services.email.sent[0]["subject"] == "Ticket Update"


async def test_dispatch_survives_push_and_email_failures(session_factory, settings, people, services):
    notifier = NotificationService(
        session_factory, services.registry, FakeEmailService(fail=True), services.directory, settings
    )
    services.registry.register(people.owner.id, FakeConnection(fail=True))

    await notifier.dispatch(_event(people))

    assert len(await _stored(session_factory)) == 1
    assert not services.registry.is_connected(people.owner.id)


async def test_dispatch_without_connection_still_persists(session_factory, people, services):
    await services.notifier.dispatch(_event(people, type=NotificationType.TICKET_CLOSED))

    stored = await _stored(session_factory)
    assert [n.type for n in stored] == [NotificationType.TICKET_CLOSED.value]


async def test_persist_failure_raises_internal_error(settings, people, services):
    notifier = NotificationService(
        lambda: _BrokenSession(), services.registry, services.email, services.directory, settings
    )

    with pytest.raises(InternalError) as exc:
        await notifier.dispatch(_event(people))

    assert exc.value.message.startswith("Failed to create notification")
    assert services.email.sent == []


async def test_fan_out_reaches_every_party(session, session_factory, people, services):
    ticket = await services.tickets.create_ticket(session, people.owner, people.order.id, "parcel is wet")
    ticket.assigned_staff_id = people.senior.id
    await session.commit()

    owner_conn, staff_conn, admin_conn = FakeConnection(), FakeConnection(), FakeConnection()
    services.registry.register(people.owner.id, owner_conn)
    services.registry.register(people.senior.id, staff_conn)
    services.registry.register(people.admin.id, admin_conn)

    await services.notifier.fan_out_ticket_update(ticket, NotificationType.TICKET_UPDATED)

    assert owner_conn.events() == ["ticket_updated", "new_notification"]
    assert staff_conn.events() == ["ticket_updated", "new_notification"]
    assert admin_conn.events() == ["ticket_updated"]

    stored = await _stored(session_factory)
    updated = [n.user_id for n in stored if n.type == NotificationType.TICKET_UPDATED.value]
    assert sorted(updated) == sorted([people.owner.id, people.senior.id])


async def test_fan_out_branch_failure_is_isolated(session, session_factory, people, services, monkeypatch):
    ticket = await services.tickets.create_ticket(session, people.owner, people.order.id, "parcel is wet")
    ticket.assigned_staff_id = people.senior.id
    await session.commit()

    async def broken_broadcast(role, event, payload):
        raise RuntimeError("directory unavailable")

    monkeypatch.setattr(services.registry, "broadcast_to_role", broken_broadcast)

    results = await services.notifier.fan_out_ticket_update(ticket, NotificationType.MESSAGE_RECEIVED)

    assert isinstance(results[-1], RuntimeError)
    stored = await _stored(session_factory)
    received = [n.user_id for n in stored if n.type == NotificationType.MESSAGE_RECEIVED.value]
    assert sorted(received) == sorted([people.owner.id, people.senior.id])


async def test_list_mark_read_and_clear(session, people, services):
    for _ in range(3):
        await services.notifier.dispatch(_event(people))
    await services.notifier.dispatch(NotificationEvent(
        target_user_id=people.stranger.id, ticket_id=None, type=NotificationType.TICKET_CREATED, message="x",
    ))

    notifications, total, unread = await services.notifier.list_notifications(session, people.owner, page=1, limit=2)
    assert len(notifications) == 2
    assert (total, unread) == (3, 3)

    marked = await services.notifier.mark_read(session, people.owner, notifications[0].id)
    assert marked.is_read is True
    _, total, unread = await services.notifier.list_notifications(session, people.owner)
    assert (total, unread) == (3, 2)

    with pytest.raises(NotFoundError):
        await services.notifier.mark_read(session, people.stranger, notifications[1].id)

    assert await services.notifier.clear_all(session, people.owner) == 3
    _, total, _ = await services.notifier.list_notifications(session, people.owner)
    assert total == 0
    _, total, _ = await services.notifier.list_notifications(session, people.stranger)
    assert total == 1

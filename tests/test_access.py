import pytest

from shopdesk.exceptions import ForbiddenError
from shopdesk.models.models import Ticket, User
from shopdesk.services import access


def _user(user_id, is_admin=False):
    return User(id=user_id, username=f"user{user_id}", email=f"user{user_id}@example.com", is_admin=is_admin)


@pytest.fixture
def ticket():
    return Ticket(id=1, user_id=1, order_id=1, assigned_staff_id=3)


def test_owner_can_view_and_message(ticket):
    owner = _user(1)

    assert access.is_owner(ticket, owner)
    assert access.can_view(ticket, owner)
    assert access.can_message(ticket, owner)
    assert not access.can_set_status(owner)


def test_admin_can_do_everything(ticket):
    admin = _user(2, is_admin=True)

    assert access.can_view(ticket, admin)
    assert access.can_message(ticket, admin)
    assert access.can_set_status(admin)
    access.ensure_admin(admin)


def test_assigned_staff_without_admin_flag_is_rejected(ticket):
    staff = _user(3)

    assert not access.can_view(ticket, staff)
    with pytest.raises(ForbiddenError) as exc:
        access.ensure_can_message(ticket, staff)
    assert exc.value.status_code == 403


def test_stranger_is_rejected(ticket):
    stranger = _user(4)

    with pytest.raises(ForbiddenError, match="Not authorized to view this ticket"):
        access.ensure_can_view(ticket, stranger)
    with pytest.raises(ForbiddenError, match="Admin access required"):
        access.ensure_admin(stranger)

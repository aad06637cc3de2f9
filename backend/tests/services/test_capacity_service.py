import pytest

from app.core.enums import ServiceType
from app.core.exceptions import SessionFullException
from app.schemas.booking import BookingCreate
from app.services.booking_service import BookingService
from app.services.capacity_service import CapacityService


def test_cancelled_bookings_free_seats(db, make_session, now):
    session = make_session(ServiceType.GROUP, capacity_max=2)
    bookings = BookingService(db)
    capacity = CapacityService(db)

    first = bookings.create_booking("01STUDENTAAAAAAAAAAAAAAAAA", BookingCreate(session_id=session.id), now=now)
    bookings.create_booking("01STUDENTBBBBBBBBBBBBBBBBB", BookingCreate(session_id=session.id), now=now)

    assert capacity.seats_remaining(session) == 0
    with pytest.raises(SessionFullException) as exc_info:
        capacity.ensure_open_seat(session)
    assert exc_info.value.details["confirmed"] == 2

    bookings.cancel_booking(first.id, "01STUDENTAAAAAAAAAAAAAAAAA", now=now)
    assert capacity.seats_remaining(session) == 1
    assert capacity.has_open_seat(session.id, 2)

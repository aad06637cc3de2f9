"""
Tests for WaitlistService: joining, seat offers, claim windows and promotion.
"""

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from app.core.enums import ServiceType
from app.core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    NotFoundException,
    SessionFullException,
)
from app.models.booking import BookingStatus
from app.repositories.event_outbox_repository import EventOutboxRepository
from app.schemas.booking import BookingCreate
from app.services.booking_service import BookingService
from app.services.waitlist_service import WaitlistService

FIRST = "01STUDENTAAAAAAAAAAAAAAAAA"
SECOND = "01STUDENTBBBBBBBBBBBBBBBBB"
THIRD = "01STUDENTCCCCCCCCCCCCCCCCC"
OPERATOR = "01OPERATORAAAAAAAAAAAAAAAA"


@pytest.fixture
def full_session(db: Session, make_session, now):
    """A single-seat session already booked by FIRST."""
    session = make_session(ServiceType.PRIVATE, capacity_max=1)
    booking = BookingService(db).create_booking(FIRST, BookingCreate(session_id=session.id), now=now)
    return session, booking


class TestJoin:
    def test_positions_increase(self, db: Session, full_session):
        session, _ = full_session
        waitlist = WaitlistService(db)

        second = waitlist.join(session.id, SECOND)
        third = waitlist.join(session.id, THIRD)

        assert (second.position, third.position) == (1, 2)
        assert [e.id for e in waitlist.list_for_session(session.id)] == [second.id, third.id]

    def test_join_twice_returns_same_entry(self, db: Session, full_session):
        session, _ = full_session
        waitlist = WaitlistService(db)
        assert waitlist.join(session.id, SECOND).id == waitlist.join(session.id, SECOND).id

    def test_cannot_join_open_session(self, db: Session, make_session):
        session = make_session(ServiceType.GROUP, capacity_max=3)
        with pytest.raises(BusinessRuleException) as exc_info:
            WaitlistService(db).join(session.id, SECOND)
        assert exc_info.value.code == "SESSION_NOT_FULL"

    def test_booked_student_cannot_join(self, db: Session, full_session):
        session, _ = full_session
        with pytest.raises(BookingConflictException):
            WaitlistService(db).join(session.id, FIRST)

    def test_unknown_session(self, db: Session):
        with pytest.raises(NotFoundException):
            WaitlistService(db).join("01MISSINGAAAAAAAAAAAAAAAAA", SECOND)

    def test_leave(self, db: Session, full_session):
        session, _ = full_session
        waitlist = WaitlistService(db)
        entry = waitlist.join(session.id, SECOND)

        waitlist.leave(entry.id, SECOND)

        assert waitlist.list_for_session(session.id) == []
        assert waitlist.list_for_student(SECOND) == []

    def test_leave_someone_elses_entry(self, db: Session, full_session):
        session, _ = full_session
        waitlist = WaitlistService(db)
        entry = waitlist.join(session.id, SECOND)
        with pytest.raises(NotFoundException):
            waitlist.leave(entry.id, THIRD)


class TestSeatOffers:
    def test_cancellation_notifies_head_of_queue(self, db: Session, full_session, now):
        session, booking = full_session
        waitlist = WaitlistService(db)
        second = waitlist.join(session.id, SECOND)
        third = waitlist.join(session.id, THIRD)

        BookingService(db).cancel_booking(booking.id, FIRST, now=now)

        db.refresh(second)
        db.refresh(third)
        assert second.notified_at == now
        assert second.notification_expires_at == now + timedelta(hours=24)
        assert third.notified_at is None
        events = EventOutboxRepository(db).list_for_aggregate(second.id)
        assert [e.event_type for e in events] == ["waitlist.notified"]

    def test_live_claim_blocks_new_offer(self, db: Session, full_session, now):
        session, booking = full_session
        waitlist = WaitlistService(db)
        waitlist.join(session.id, SECOND)
        waitlist.join(session.id, THIRD)
        BookingService(db).cancel_booking(booking.id, FIRST, now=now)

        assert waitlist.offer_freed_seat(session.id, now + timedelta(hours=1)) is None

    def test_lapsed_claim_moves_to_next_entry(self, db: Session, full_session, now):
        session, booking = full_session
        waitlist = WaitlistService(db)
        second = waitlist.join(session.id, SECOND)
        third = waitlist.join(session.id, THIRD)
        BookingService(db).cancel_booking(booking.id, FIRST, now=now)

        later = now + timedelta(hours=25)
        offered = waitlist.offer_freed_seat(session.id, later)

        assert offered is not None and offered.id == third.id
        with pytest.raises(BusinessRuleException) as exc_info:
            waitlist.promote(second.id, OPERATOR, now=later)
        assert exc_info.value.code == "WAITLIST_CLAIM_EXPIRED"

    def test_seat_held_for_another_entry(self, db: Session, full_session, now):
        session, booking = full_session
        waitlist = WaitlistService(db)
        waitlist.join(session.id, SECOND)
        third = waitlist.join(session.id, THIRD)
        BookingService(db).cancel_booking(booking.id, FIRST, now=now)

        with pytest.raises(BusinessRuleException) as exc_info:
            waitlist.promote(third.id, OPERATOR, now=now + timedelta(hours=1))
        assert exc_info.value.code == "WAITLIST_SEAT_HELD"

    def test_no_offer_while_session_full(self, db: Session, full_session, now):
        session, _ = full_session
        waitlist = WaitlistService(db)
        waitlist.join(session.id, SECOND)
        assert waitlist.offer_freed_seat(session.id, now) is None


class TestPromote:
    def test_promote_books_and_removes_entry(
        self, db: Session, full_session, make_package, now
    ):
        session, booking = full_session
        package = make_package(SECOND, total_credits=2)
        waitlist = WaitlistService(db)
        entry = waitlist.join(session.id, SECOND)
        BookingService(db).cancel_booking(booking.id, FIRST, now=now)

        promoted = waitlist.promote(entry.id, OPERATOR, package_id=package.id, now=now)

        assert promoted.status == BookingStatus.CONFIRMED.value
        assert promoted.student_id == SECOND
        assert promoted.credits_debited == 1
        assert waitlist.list_for_student(SECOND) == []
        events = EventOutboxRepository(db).list_for_aggregate(entry.id)
        assert [e.event_type for e in events] == ["waitlist.notified", "waitlist.promoted"]
        assert events[1].payload["promoted_by"] == OPERATOR

    def test_promote_into_full_session_keeps_entry(self, db: Session, full_session, now):
        session, _ = full_session
        waitlist = WaitlistService(db)
        entry = waitlist.join(session.id, SECOND)

        with pytest.raises(SessionFullException):
            waitlist.promote(entry.id, OPERATOR, now=now)
        assert [e.id for e in waitlist.list_for_session(session.id)] == [entry.id]

    def test_unknown_entry(self, db: Session):
        with pytest.raises(NotFoundException):
            WaitlistService(db).promote("01MISSINGAAAAAAAAAAAAAAAAA", OPERATOR)

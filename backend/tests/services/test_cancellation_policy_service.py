from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from app.core.exceptions import CancellationNotAllowedException
from app.schemas.booking import BookingCreate
from app.schemas.policy import CancellationPolicyUpdate
from app.services.booking_service import BookingService
from app.services.cancellation_policy_service import CancellationPolicyService, hours_until

STUDENT = "01STUDENTAAAAAAAAAAAAAAAAA"
OPERATOR = "01OPERATORAAAAAAAAAAAAAAAA"


@pytest.fixture
def policy_service(db: Session) -> CancellationPolicyService:
    return CancellationPolicyService(db)


def test_hours_until(now):
    assert hours_until(now + timedelta(minutes=90), now) == 1.5


class TestActivePolicy:
    def test_falls_back_to_settings(self, policy_service):
        policy = policy_service.get_active_policy()
        assert policy.from_settings is True
        assert policy.policy_name == "settings-default"
        assert policy.cancellation_deadline_hours == 24

    def test_set_active_policy_replaces_previous(self, policy_service):
        policy_service.set_active_policy(
            CancellationPolicyUpdate(policy_name="strict", cancellation_deadline_hours=48)
        )
        policy_service.set_active_policy(
            CancellationPolicyUpdate(policy_name="relaxed", cancellation_deadline_hours=2)
        )

        policy = policy_service.get_active_policy()
        assert policy.policy_name == "relaxed"
        assert policy.cancellation_deadline_hours == 2
        assert policy.from_settings is False


class TestEnsureCanCancel:
    def test_inside_deadline_raises_too_late(self, policy_service, make_session, now):
        session = make_session(start_at=now + timedelta(hours=23))
        with pytest.raises(CancellationNotAllowedException) as exc_info:
            policy_service.ensure_can_cancel(session, now)
        assert exc_info.value.reason == CancellationNotAllowedException.TOO_LATE
        assert exc_info.value.details["deadline_hours"] == 24

    def test_exactly_at_deadline_is_allowed(self, policy_service, make_session, now):
        session = make_session(start_at=now + timedelta(hours=24))
        policy_service.ensure_can_cancel(session, now)

    def test_operator_bypasses_deadline(self, policy_service, make_session, now):
        session = make_session(start_at=now + timedelta(hours=1))
        policy = policy_service.ensure_can_cancel(session, now, as_operator=True)
        assert policy.refund_credits_on_cancel is True

    def test_disabled_policy_blocks_operators_too(self, policy_service, make_session, now):
        policy_service.set_active_policy(CancellationPolicyUpdate(allow_cancellation=False))
        session = make_session()
        with pytest.raises(CancellationNotAllowedException) as exc_info:
            policy_service.ensure_can_cancel(session, now, as_operator=True)
        assert exc_info.value.reason == CancellationNotAllowedException.DISABLED


class TestEvaluate:
    def _book(self, db, session, now):
        return BookingService(db).create_booking(
            STUDENT, BookingCreate(session_id=session.id), now=now
        )

    def test_open_booking(self, db, policy_service, make_session, now):
        session = make_session(start_at=now + timedelta(days=3))
        booking = self._book(db, session, now)

        decision = policy_service.evaluate(booking, session, now)

        assert decision.can_cancel and decision.can_reschedule
        assert decision.reason is None
        assert decision.cancellation_deadline == session.start_at - timedelta(hours=24)

    def test_everything_disabled(self, db, policy_service, make_session, now):
        session = make_session()
        booking = self._book(db, session, now)
        policy_service.set_active_policy(
            CancellationPolicyUpdate(allow_cancellation=False, allow_rescheduling=False)
        )

        decision = policy_service.evaluate(booking, session, now)
        assert decision.reason == "Cancellations and rescheduling are not allowed"

    def test_cancel_disabled_but_reschedule_open(self, db, policy_service, make_session, now):
        session = make_session(start_at=now + timedelta(days=3))
        booking = self._book(db, session, now)
        policy_service.set_active_policy(CancellationPolicyUpdate(allow_cancellation=False))

        decision = policy_service.evaluate(booking, session, now)

        assert decision.can_cancel is False
        assert decision.can_reschedule is True
        assert decision.reason == "Cancellations are not allowed"

    def test_cancel_deadline_passed_but_reschedule_open(
        self, db, policy_service, make_session, now
    ):
        session = make_session(start_at=now + timedelta(hours=24))
        booking = self._book(db, session, now)
        policy_service.set_active_policy(
            CancellationPolicyUpdate(cancellation_deadline_hours=48, rescheduling_deadline_hours=12)
        )

        decision = policy_service.evaluate(booking, session, now)

        assert decision.can_cancel is False
        assert decision.can_reschedule is True
        assert decision.reason == "Too late to cancel (must be at least 48 hours before session)"

    def test_reschedule_blocked_but_cancel_open(self, db, policy_service, make_session, now):
        session = make_session(start_at=now + timedelta(days=3))
        booking = self._book(db, session, now)
        policy_service.set_active_policy(CancellationPolicyUpdate(allow_rescheduling=False))

        decision = policy_service.evaluate(booking, session, now)

        assert decision.can_cancel is True
        assert decision.reason == "Rescheduling is not allowed"

    def test_reschedule_limit(self, db, policy_service, make_session, now):
        session = make_session(start_at=now + timedelta(days=3))
        booking = self._book(db, session, now)
        booking.rescheduled_count = 2
        policy_service.set_active_policy(CancellationPolicyUpdate(allow_cancellation=False))

        decision = policy_service.evaluate(booking, session, now)

        assert decision.can_reschedule is False
        assert decision.reason == "Maximum reschedules reached (2)"
        with pytest.raises(CancellationNotAllowedException) as exc_info:
            policy_service.ensure_can_reschedule(booking, session, now)
        assert exc_info.value.reason == CancellationNotAllowedException.RESCHEDULE_LIMIT

    def test_cancelled_booking_cannot_be_modified(self, db, policy_service, make_session, now):
        session = make_session()
        booking = self._book(db, session, now)
        BookingService(db).cancel_booking(booking.id, STUDENT, now=now)
        db.refresh(booking)

        decision = policy_service.evaluate(booking, session, now)
        assert decision.reason == "Booking is not confirmed"
        assert decision.can_cancel is False


class TestCancelBookingUnderPolicy:
    def test_student_blocked_inside_deadline(self, db, make_session, now):
        session = make_session(start_at=now + timedelta(hours=3))
        booking = BookingService(db).create_booking(
            STUDENT, BookingCreate(session_id=session.id), now=now
        )
        with pytest.raises(CancellationNotAllowedException):
            BookingService(db).cancel_booking(booking.id, STUDENT, now=now)

    def test_no_refund_when_policy_says_so(
        self, db, policy_service, make_session, make_package, now
    ):
        policy_service.set_active_policy(CancellationPolicyUpdate(refund_credits_on_cancel=False))
        session = make_session()
        package = make_package(STUDENT, total_credits=2)
        service = BookingService(db)
        booking = service.create_booking(
            STUDENT, BookingCreate(session_id=session.id, package_id=package.id), now=now
        )

        result = service.cancel_booking(booking.id, OPERATOR, as_operator=True, now=now)

        assert result.refunded is False
        assert service.credit_service.get_balance(package.id) == 1

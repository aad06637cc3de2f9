from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
import pytest
from sqlalchemy.orm import Session

from app.core.enums import ServiceType
from app.models.booking import BookingStatus
from app.models.waitlist import WaitlistEntry
from app.schemas.booking import BookingCancel, BookingCreate, BookingResponse, SlotRequest
from app.schemas.credit import CreditPackageResponse
from app.schemas.policy import CancellationPolicyResponse, CancellationPolicyUpdate
from app.schemas.waitlist import WaitlistEntryResponse, WaitlistJoin, WaitlistPromote
from app.services.booking_service import BookingService
from app.services.cancellation_policy_service import CancellationPolicyService

STUDENT = "01STUDENTAAAAAAAAAAAAAAAAA"


class TestRequests:
    def test_slot_naive_times_are_utc(self):
        slot = SlotRequest(
            instructor_id="I1",
            start_at=datetime(2030, 1, 1, 10, 0),
            end_at=datetime(2030, 1, 1, 11, 0),
        )
        assert slot.start_at.tzinfo == timezone.utc

    def test_slot_end_after_start(self):
        start = datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            SlotRequest(instructor_id="I1", start_at=start, end_at=start)

    def test_session_and_slot_are_exclusive(self):
        start = datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            BookingCreate(
                session_id="S1",
                slot={"instructor_id": "I1", "start_at": start, "end_at": start + timedelta(hours=1)},
            )

    def test_cancel_reason_length(self):
        assert BookingCancel().reason is None
        with pytest.raises(ValidationError):
            BookingCancel(reason="x" * 1001)

    def test_waitlist_requests(self):
        assert WaitlistJoin(session_id="S1").session_id == "S1"
        with pytest.raises(ValidationError):
            WaitlistJoin(session_id="")
        promote = WaitlistPromote()
        assert promote.package_id is None
        assert promote.confirmed_cross_tier is False

    def test_policy_update_rejects_negative_hours(self):
        with pytest.raises(ValidationError):
            CancellationPolicyUpdate(cancellation_deadline_hours=-1)


class TestResponses:
    def test_booking_response_from_row(self, db: Session, make_session, now):
        session_row = make_session(ServiceType.GROUP, capacity_max=3)
        booking = BookingService(db).create_booking(
            STUDENT, BookingCreate(session_id=session_row.id), now=now
        )

        response = BookingResponse.model_validate(booking)

        assert response.id == booking.id
        assert response.status == BookingStatus.CONFIRMED
        assert response.credits_debited == 0

    def test_package_response_from_row(self, db: Session, make_package):
        package = make_package(STUDENT, total_credits=4)

        response = CreditPackageResponse.model_validate(package)

        assert response.remaining_credits == 4
        assert response.retired_at is None

    def test_waitlist_entry_response_from_row(self, db: Session, make_session):
        session_row = make_session()
        entry = WaitlistEntry(session_id=session_row.id, student_id=STUDENT, position=1)
        db.add(entry)
        db.commit()

        response = WaitlistEntryResponse.model_validate(entry)

        assert response.position == 1
        assert response.notified_at is None

    def test_policy_response_from_settings_snapshot(self, db: Session):
        snapshot = CancellationPolicyService(db).get_active_policy()

        response = CancellationPolicyResponse.model_validate(snapshot)

        assert response.from_settings is True
        assert response.cancellation_deadline_hours == 24

    def test_policy_response_from_active_row(self, db: Session):
        service = CancellationPolicyService(db)
        service.set_active_policy(
            CancellationPolicyUpdate(policy_name="strict", cancellation_deadline_hours=48)
        )

        response = CancellationPolicyResponse.model_validate(service.get_active_policy())

        assert response.from_settings is False
        assert response.policy_name == "strict"
        assert response.cancellation_deadline_hours == 48

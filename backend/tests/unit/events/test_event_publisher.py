from datetime import datetime, timezone

from app.events import BookingCreated, EventPublisher, WaitlistNotified
from app.models.event_outbox import EventOutboxStatus
from app.repositories.event_outbox_repository import EventOutboxRepository

CREATED_AT = datetime(2030, 1, 6, 9, 0, tzinfo=timezone.utc)


def _created(booking_id: str = "B1") -> BookingCreated:
    return BookingCreated(
        booking_id=booking_id,
        session_id="S1",
        student_id="ST1",
        package_id="P1",
        allowance_id=None,
        credits_debited=2,
        created_at=CREATED_AT,
    )


class TestEventPublisher:
    def test_payload_is_json_ready(self, db):
        row = EventPublisher(EventOutboxRepository(db)).publish(_created())

        assert row.event_type == "booking.created"
        assert row.aggregate_id == "B1"
        assert row.idempotency_key == "booking.created:B1"
        assert row.payload["created_at"] == CREATED_AT.isoformat()
        assert row.payload["credits_debited"] == 2

    def test_republishing_returns_existing_row(self, db):
        publisher = EventPublisher(EventOutboxRepository(db))
        first = publisher.publish(_created())
        second = publisher.publish(_created())
        assert first.id == second.id

    def test_explicit_idempotency_key(self, db):
        event = WaitlistNotified(
            entry_id="W1",
            session_id="S1",
            student_id="ST1",
            position=1,
            notified_at=CREATED_AT,
            expires_at=CREATED_AT,
        )
        publisher = EventPublisher(EventOutboxRepository(db))
        first = publisher.publish(event, idempotency_key="waitlist.notified:W1:a")
        second = publisher.publish(event, idempotency_key="waitlist.notified:W1:b")
        assert first.id != second.id

    def test_failed_delivery_is_rescheduled_then_terminal(self, db):
        repo = EventOutboxRepository(db)
        row = EventPublisher(repo).publish(_created("B9"))

        repo.mark_failed(row.id, attempt_count=1, backoff_seconds=30, error="timeout")
        assert row.status == EventOutboxStatus.PENDING.value
        assert row.last_error == "timeout"

        repo.mark_failed(row.id, attempt_count=5, backoff_seconds=30, error="gave up", terminal=True)
        assert row.status == EventOutboxStatus.FAILED.value

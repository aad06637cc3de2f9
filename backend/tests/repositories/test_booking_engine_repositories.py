from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.enums import ServiceType, SessionStatus
from app.core.exceptions import RepositoryException
from app.models.class_session import ClassSession
from app.models.waitlist import WaitlistEntry
from app.repositories.base_repository import BaseRepository
from app.repositories.cancellation_policy_repository import CancellationPolicyRepository
from app.repositories.class_session_repository import ClassSessionRepository
from app.repositories.credit_repository import CreditRepository
from app.repositories.event_outbox_repository import EventOutboxRepository
from app.repositories.waitlist_repository import WaitlistRepository

STUDENT = "01STUDENTAAAAAAAAAAAAAAAAA"


class TestClassSessionRepository:
    def test_overlap_is_half_open(self, db, make_instructor, make_session, now):
        instructor = make_instructor()
        start = now + timedelta(days=1)
        existing = make_session(instructor=instructor, start_at=start)
        repo = ClassSessionRepository(db)

        assert [s.id for s in repo.find_instructor_overlaps(
            instructor.id, start + timedelta(minutes=30), start + timedelta(minutes=90)
        )] == [existing.id]
        assert not repo.has_instructor_overlap(
            instructor.id, start + timedelta(hours=1), start + timedelta(hours=2)
        )
        assert not repo.has_instructor_overlap(
            instructor.id, start - timedelta(hours=1), start
        )

    def test_cancelled_sessions_do_not_overlap(self, db, make_instructor, make_session, now):
        instructor = make_instructor()
        start = now + timedelta(days=1)
        make_session(instructor=instructor, start_at=start, status=SessionStatus.CANCELLED)

        assert not ClassSessionRepository(db).has_instructor_overlap(
            instructor.id, start, start + timedelta(hours=1)
        )


class TestWaitlistRepository:
    def test_next_unclaimed_prefers_never_notified(self, db, make_session, now):
        session = make_session(ServiceType.GROUP, capacity_max=2)
        lapsed = WaitlistEntry(
            session_id=session.id,
            student_id="01AAAAAAAAAAAAAAAAAAAAAAAA",
            position=1,
            notified_at=now - timedelta(hours=30),
            notification_expires_at=now - timedelta(hours=6),
        )
        fresh = WaitlistEntry(
            session_id=session.id, student_id="01BBBBBBBBBBBBBBBBBBBBBBBB", position=2
        )
        db.add_all([lapsed, fresh])
        db.flush()
        repo = WaitlistRepository(db)

        assert repo.next_unclaimed(session.id, now).id == fresh.id
        assert repo.find_active_claim(session.id, now) is None
        assert repo.get_max_position(session.id) == 2

    def test_max_position_empty(self, db, make_session):
        assert WaitlistRepository(db).get_max_position(make_session().id) == 0


class TestCancellationPolicyRepository:
    def test_only_one_active(self, db):
        repo = CancellationPolicyRepository(db)
        repo.create(policy_name="old", is_active=True)
        repo.deactivate_all()
        repo.create(policy_name="new", is_active=True)

        active = repo.get_active_policy()
        assert active is not None
        assert active.policy_name == "new"


class TestEventOutboxRepository:
    def test_enqueue_is_idempotent_on_key(self, db):
        repo = EventOutboxRepository(db)
        first = repo.enqueue("booking.created", "B1", {"a": 1}, idempotency_key="k1")
        second = repo.enqueue("booking.created", "B1", {"a": 2}, idempotency_key="k1")

        assert first.id == second.id
        assert second.payload == {"a": 1}
        assert len(repo.list_for_aggregate("B1")) == 1

    def test_fetch_pending_and_mark_sent(self, db):
        repo = EventOutboxRepository(db)
        row = repo.enqueue("booking.cancelled", "B2", idempotency_key="k2")

        assert row.id in [r.id for r in repo.fetch_pending()]
        repo.mark_sent(row.id, attempt_count=1)
        assert row.id not in [r.id for r in repo.fetch_pending()]


class TestCreditRepository:
    def test_source_reference_lookup(self, db):
        repo = CreditRepository(db)
        package = repo.create_package(
            student_id=STUDENT,
            name="Ten privates",
            total_credits=10,
            allowances=[{"service_type": "PRIVATE", "credits": 10}],
            source_reference="grant:abc",
        )
        assert repo.get_by_source_reference("grant:abc").id == package.id
        assert package.remaining_credits == 10
        assert len(package.allowances) == 1


class TestErrorPaths:
    """Database failures surface as RepositoryException."""

    def _broken_db(self, error: Exception) -> MagicMock:
        db = MagicMock()
        db.query.side_effect = error
        db.execute.side_effect = error
        db.flush.side_effect = error
        return db

    def test_get_by_id(self):
        repo = BaseRepository(self._broken_db(SQLAlchemyError("down")), ClassSession)
        with pytest.raises(RepositoryException):
            repo.get_by_id("X")

    def test_get_for_update(self):
        db = self._broken_db(SQLAlchemyError("down"))
        db.get_bind.return_value.dialect.name = "postgresql"
        repo = BaseRepository(db, ClassSession)
        with pytest.raises(RepositoryException):
            repo.get_for_update("X")

    def test_create_integrity_error(self):
        db = self._broken_db(IntegrityError("insert", {}, Exception("unique")))
        repo = BaseRepository(db, ClassSession)
        with pytest.raises(RepositoryException) as exc_info:
            repo.create(service_type="PRIVATE")
        assert "Integrity constraint violated" in str(exc_info.value)

    def test_count_and_find(self):
        repo = BaseRepository(self._broken_db(SQLAlchemyError("down")), ClassSession)
        with pytest.raises(RepositoryException):
            repo.count(status="SCHEDULED")
        with pytest.raises(RepositoryException):
            repo.find_by(status="SCHEDULED")

    def test_overlap_query(self, now):
        repo = ClassSessionRepository(self._broken_db(SQLAlchemyError("down")))
        with pytest.raises(RepositoryException):
            repo.find_instructor_overlaps("I1", now, now + timedelta(hours=1))

    def test_available_packages(self):
        repo = CreditRepository(self._broken_db(SQLAlchemyError("down")))
        with pytest.raises(RepositoryException):
            repo.get_available_packages(student_id=STUDENT)

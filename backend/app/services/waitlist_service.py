"""
Waitlist service: FIFO queues for full sessions.

A freed seat is offered to one entry at a time by stamping a claim
deadline; nothing books automatically. An operator converts the entry into
a booking with ``promote``, which goes through the regular booking checks.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.orm import Session

from app.core.booking_lock import booking_locks, session_lock
from app.core.config import settings
from app.core.exceptions import BookingConflictException, BusinessRuleException, NotFoundException
from app.events import EventPublisher, WaitlistNotified, WaitlistPromoted
from app.models.class_session import ClassSession
from app.models.types import utcnow
from app.models.waitlist import WaitlistEntry
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory

from .base import BaseService
from .capacity_service import CapacityService

if TYPE_CHECKING:
    from app.models.booking import Booking

logger = logging.getLogger(__name__)


class WaitlistService(BaseService):
    def __init__(
        self,
        db: Session,
        capacity_service: Optional[CapacityService] = None,
        event_publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.waitlist_repository = RepositoryFactory.create_waitlist_repository(db)
        self.session_repository = RepositoryFactory.create_class_session_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.capacity_service = capacity_service or CapacityService(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    def _get_session(self, session_id: str) -> ClassSession:
        session = self.session_repository.get_session_for_update(session_id)
        if session is None:
            raise NotFoundException(
                "Session not found", code="SESSION_NOT_FOUND", details={"session_id": session_id}
            )
        return session

    @BaseService.measure_operation("waitlist_join")
    def join(self, session_id: str, student_id: str) -> WaitlistEntry:
        """
        Queue a student for a full session.

        Joining twice returns the existing entry. Positions are assigned
        under the session lock and are never reused.
        """
        with session_lock(session_id):
            with self.transaction():
                session = self._get_session(session_id)
                if not session.is_scheduled:
                    raise BusinessRuleException(
                        f"Session is not open for booking - current status: {session.status}",
                        code="SESSION_NOT_BOOKABLE",
                        details={"session_id": session_id, "status": session.status},
                    )

                existing = self.waitlist_repository.find_for_student(session_id, student_id)
                if existing is not None:
                    return existing

                if self.booking_repository.find_confirmed_for_student(session_id, student_id):
                    raise BookingConflictException(
                        "You already have a booking for this session",
                        details={"session_id": session_id, "student_id": student_id},
                    )

                if self.capacity_service.has_open_seat(session_id, int(session.capacity_max)):
                    raise BusinessRuleException(
                        "Session is not full",
                        code="SESSION_NOT_FULL",
                        details={"session_id": session_id},
                    )

                position = self.waitlist_repository.get_max_position(session_id) + 1
                entry = self.waitlist_repository.create(
                    session_id=session_id, student_id=student_id, position=position
                )

        prometheus_metrics.record_waitlist("joined")
        self.log_operation(
            "waitlist_join", session_id=session_id, student_id=student_id, position=position
        )
        return entry

    @BaseService.measure_operation("waitlist_leave")
    def leave(self, entry_id: str, student_id: str) -> None:
        entry = self.waitlist_repository.get_by_id(entry_id)
        if entry is None or entry.student_id != student_id:
            raise NotFoundException(
                "Waitlist entry not found",
                code="WAITLIST_ENTRY_NOT_FOUND",
                details={"entry_id": entry_id},
            )
        with session_lock(str(entry.session_id)):
            with self.transaction():
                self.waitlist_repository.delete(entry_id)
        prometheus_metrics.record_waitlist("left")
        self.log_operation("waitlist_leave", entry_id=entry_id, student_id=student_id)

    def list_for_session(self, session_id: str) -> List[WaitlistEntry]:
        return self.waitlist_repository.list_for_session(session_id)

    def list_for_student(self, student_id: str) -> List[WaitlistEntry]:
        return self.waitlist_repository.list_for_student(student_id)

    @staticmethod
    def is_claim_active(entry: WaitlistEntry, now: Optional[datetime] = None) -> bool:
        return entry.claim_active(now or utcnow())

    def on_seat_freed(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Optional[WaitlistEntry]:
        """
        Offer a freed seat to the next waiting student.

        Joins the caller's transaction; the caller holds the session lock.
        Returns the notified entry, or None when nobody is eligible, the
        session is still full or a live claim already holds the seat.
        """
        now = now or utcnow()
        session = self.session_repository.get_by_id(session_id)
        if session is None or not session.is_scheduled:
            return None
        if not self.capacity_service.has_open_seat(session_id, int(session.capacity_max)):
            return None

        held = self.waitlist_repository.find_active_claim(session_id, now)
        if held is not None:
            logger.info(
                "Freed seat already held by a waitlist claim",
                extra={"session_id": session_id, "entry_id": held.id},
            )
            return None

        entry = self.waitlist_repository.next_unclaimed(session_id, now)
        if entry is None:
            return None

        expires_at = now + timedelta(hours=settings.waitlist_claim_window_hours)
        entry.offer(now, expires_at)
        self.db.flush()

        self.event_publisher.publish(
            WaitlistNotified(
                entry_id=str(entry.id),
                session_id=session_id,
                student_id=str(entry.student_id),
                position=int(entry.position),
                notified_at=now,
                expires_at=expires_at,
            ),
            # An entry can be offered again after its claim lapses.
            idempotency_key=f"{WaitlistNotified.event_type}:{entry.id}:{now.isoformat()}",
        )
        prometheus_metrics.record_waitlist("notified")
        self.log_operation(
            "waitlist_notified",
            session_id=session_id,
            entry_id=entry.id,
            expires_at=expires_at.isoformat(),
        )
        return entry

    @BaseService.measure_operation("waitlist_offer_freed_seat")
    def offer_freed_seat(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Optional[WaitlistEntry]:
        """Standalone ``on_seat_freed``, e.g. to re-offer after a claim lapsed."""
        with session_lock(session_id):
            with self.transaction():
                return self.on_seat_freed(session_id, now)

    @BaseService.measure_operation("waitlist_promote")
    def promote(
        self,
        entry_id: str,
        operator_id: str,
        *,
        package_id: Optional[str] = None,
        allowance_id: Optional[str] = None,
        confirmed_cross_tier: bool = False,
        now: Optional[datetime] = None,
    ) -> "Booking":
        """
        Convert a waitlist entry into a CONFIRMED booking.

        The booking goes through the same capacity, tier and ledger checks
        as ``BookingService.create_booking``; the entry is removed in the
        same transaction.

        Raises:
            NotFoundException: Entry or session not found
            BusinessRuleException: The entry's claim lapsed or another entry holds the seat
        """
        from .booking_service import BookingService

        now = now or utcnow()
        entry = self.waitlist_repository.get_by_id(entry_id)
        if entry is None:
            raise NotFoundException(
                "Waitlist entry not found",
                code="WAITLIST_ENTRY_NOT_FOUND",
                details={"entry_id": entry_id},
            )
        session_id = str(entry.session_id)
        booking_service = BookingService(
            self.db,
            capacity_service=self.capacity_service,
            waitlist_service=self,
            event_publisher=self.event_publisher,
        )

        with booking_locks(session_id, package_id):
            with self.transaction():
                entry = self.waitlist_repository.get_for_update(entry_id)
                if entry is None:
                    raise NotFoundException(
                        "Waitlist entry not found",
                        code="WAITLIST_ENTRY_NOT_FOUND",
                        details={"entry_id": entry_id},
                    )
                self._ensure_claim_usable(entry, now)

                session = self._get_session(session_id)
                if not session.is_scheduled:
                    raise BusinessRuleException(
                        f"Session is not open for booking - current status: {session.status}",
                        code="SESSION_NOT_BOOKABLE",
                        details={"session_id": session_id, "status": session.status},
                    )

                student_id = str(entry.student_id)
                booking = booking_service.book_session_locked(
                    student_id,
                    session,
                    package_id=package_id,
                    allowance_id=allowance_id,
                    confirmed_cross_tier=confirmed_cross_tier,
                    used_by=operator_id,
                    now=now,
                )
                self.waitlist_repository.delete(entry_id)
                self.event_publisher.publish(
                    WaitlistPromoted(
                        entry_id=entry_id,
                        session_id=session_id,
                        student_id=student_id,
                        booking_id=str(booking.id),
                        promoted_by=operator_id,
                    )
                )

        prometheus_metrics.record_waitlist("promoted")
        self.log_operation(
            "waitlist_promote",
            entry_id=entry_id,
            booking_id=booking.id,
            operator_id=operator_id,
        )
        return booking

    def _ensure_claim_usable(self, entry: WaitlistEntry, now: datetime) -> None:
        if entry.notified_at is not None and not entry.claim_active(now):
            raise BusinessRuleException(
                "Waitlist claim has expired",
                code="WAITLIST_CLAIM_EXPIRED",
                details={
                    "entry_id": entry.id,
                    "expired_at": (
                        entry.notification_expires_at.isoformat()
                        if entry.notification_expires_at
                        else None
                    ),
                },
            )
        held = self.waitlist_repository.find_active_claim(str(entry.session_id), now)
        if held is not None and held.id != entry.id:
            raise BusinessRuleException(
                "The freed seat is held for another waitlisted student",
                code="WAITLIST_SEAT_HELD",
                details={"entry_id": entry.id, "held_by_entry_id": held.id},
            )

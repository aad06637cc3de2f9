# backend/app/repositories/booking_repository.py
"""
Booking Repository for the booking engine.

Implements data access for bookings:
- Booking creation with integrity errors surfaced for conflict handling
- Seat counting (only CONFIRMED bookings occupy a seat)
- Student-facing booking lists
- Booking relationships eager loading
"""

from datetime import datetime
import logging
from typing import Any, List, Optional, cast

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.class_session import ClassSession
from ..models.types import utcnow
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def create(self, **kwargs: Any) -> Booking:
        """Create a booking, exposing integrity errors for conflict handling."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    # Seat queries

    def count_confirmed_for_session(self, session_id: str) -> int:
        """Number of occupied seats in a session."""
        try:
            query = self.db.query(func.count(Booking.id)).filter(
                Booking.session_id == session_id,
                Booking.status == BookingStatus.CONFIRMED.value,
            )
            return int(self._execute_scalar(query) or 0)
        except RepositoryException:
            raise
        except Exception as e:
            self.logger.error(f"Error counting confirmed bookings: {str(e)}")
            raise RepositoryException(f"Failed to count bookings: {str(e)}")

    def find_confirmed_for_student(self, session_id: str, student_id: str) -> Optional[Booking]:
        """The student's live booking for a session, if any."""
        try:
            return cast(
                Optional[Booking],
                self.db.query(Booking)
                .filter(
                    Booking.session_id == session_id,
                    Booking.student_id == student_id,
                    Booking.status == BookingStatus.CONFIRMED.value,
                )
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error finding student booking: {str(e)}")
            raise RepositoryException(f"Failed to find booking: {str(e)}")

    # Student queries

    def get_student_bookings(
        self,
        student_id: str,
        status: Optional[BookingStatus] = None,
        upcoming_only: bool = False,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Booking]:
        """
        Get bookings for a specific student, soonest session first.

        Args:
            student_id: The student's id
            status: Optional status filter
            upcoming_only: Only return bookings whose session has not started
            now: Reference time for ``upcoming_only``
            limit: Optional result limit

        Returns:
            List of student's bookings with their sessions loaded
        """
        try:
            query = (
                self.db.query(Booking)
                .join(ClassSession, Booking.session_id == ClassSession.id)
                .options(joinedload(Booking.session))
                .filter(Booking.student_id == student_id)
            )
            if status:
                query = query.filter(Booking.status == status.value)
            if upcoming_only:
                query = query.filter(ClassSession.start_at > (now or utcnow()))

            query = query.order_by(ClassSession.start_at.asc(), Booking.id.asc())
            if limit:
                query = query.limit(limit)
            return cast(List[Booking], query.all())
        except Exception as e:
            self.logger.error(f"Error getting student bookings: {str(e)}")
            raise RepositoryException(f"Failed to get student bookings: {str(e)}")

    def get_booking_with_details(self, booking_id: str) -> Optional[Booking]:
        """Booking with its session (and the session's instructor) loaded."""
        return self.get_by_id(booking_id, load_relationships=True)

    def get_for_update(self, id: str) -> Optional[Booking]:
        booking = super().get_for_update(id)
        if booking is not None:
            # Touch the session so callers can read it after the lock.
            _ = booking.session
        return booking

    def _apply_eager_loading(self, query: Query) -> Query:
        """Include the session by default for single entity queries."""
        return query.options(joinedload(Booking.session))

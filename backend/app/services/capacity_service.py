"""Seat accounting for sessions.

Occupancy is never stored: it is the number of CONFIRMED bookings. Callers
evaluate it inside the booking transaction while holding the session lock,
and the partial unique index on bookings backs it up.
"""

import logging

from sqlalchemy.orm import Session

from app.core.exceptions import SessionFullException
from app.models.class_session import ClassSession
from app.repositories.factory import RepositoryFactory

from .base import BaseService

logger = logging.getLogger(__name__)


class CapacityService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def confirmed_count(self, session_id: str) -> int:
        return self.booking_repository.count_confirmed_for_session(session_id)

    def has_open_seat(self, session_id: str, capacity_max: int) -> bool:
        return self.confirmed_count(session_id) < capacity_max

    def seats_remaining(self, session: ClassSession) -> int:
        return max(int(session.capacity_max) - self.confirmed_count(str(session.id)), 0)

    def ensure_open_seat(self, session: ClassSession) -> None:
        confirmed = self.confirmed_count(str(session.id))
        if confirmed >= int(session.capacity_max):
            logger.info(
                "Session full",
                extra={
                    "session_id": session.id,
                    "capacity_max": session.capacity_max,
                    "confirmed": confirmed,
                },
            )
            raise SessionFullException(
                session_id=str(session.id),
                capacity_max=int(session.capacity_max),
                confirmed=confirmed,
            )

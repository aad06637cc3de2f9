# backend/app/repositories/class_session_repository.py
"""
Class Session Repository for the booking engine.

Session lookups, locked reads for capacity checks and the instructor
overlap check used before creating an ad-hoc private session.
"""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..core.enums import SessionStatus
from ..core.exceptions import RepositoryException
from ..models.class_session import ClassSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ClassSessionRepository(BaseRepository[ClassSession]):
    """Repository for bookable sessions."""

    def __init__(self, db: Session):
        super().__init__(db, ClassSession)
        self.logger = logging.getLogger(__name__)

    def get_session_for_update(self, session_id: str) -> Optional[ClassSession]:
        """Load a session for a capacity-check-then-insert sequence."""
        return self.get_for_update(session_id)

    def find_instructor_overlaps(
        self,
        instructor_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> List[ClassSession]:
        """
        Scheduled sessions of the instructor that overlap ``[start_at, end_at)``.

        Adjacent sessions (one ends exactly when the other starts) do not overlap.
        """
        try:
            query = self.db.query(ClassSession).filter(
                ClassSession.instructor_id == instructor_id,
                ClassSession.status == SessionStatus.SCHEDULED.value,
                ClassSession.start_at < end_at,
                ClassSession.end_at > start_at,
            )
            if exclude_session_id:
                query = query.filter(ClassSession.id != exclude_session_id)
            return cast(List[ClassSession], query.order_by(ClassSession.start_at.asc()).all())
        except Exception as e:
            self.logger.error(f"Error checking instructor overlap: {str(e)}")
            raise RepositoryException(f"Failed to check instructor overlap: {str(e)}")

    def has_instructor_overlap(
        self, instructor_id: str, start_at: datetime, end_at: datetime
    ) -> bool:
        return bool(self.find_instructor_overlaps(instructor_id, start_at, end_at))

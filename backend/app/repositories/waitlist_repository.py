# backend/app/repositories/waitlist_repository.py
"""
Waitlist Repository for the booking engine.

Position assignment reads ``max(position)`` and must run under the
session lock so two concurrent joins never compute the same value.
"""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.waitlist import WaitlistEntry
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WaitlistRepository(BaseRepository[WaitlistEntry]):
    """Repository for waitlist entries."""

    def __init__(self, db: Session):
        super().__init__(db, WaitlistEntry)
        self.logger = logging.getLogger(__name__)

    def get_max_position(self, session_id: str) -> int:
        query = self.db.query(func.max(WaitlistEntry.position)).filter(
            WaitlistEntry.session_id == session_id
        )
        return int(self._execute_scalar(query) or 0)

    def find_for_student(self, session_id: str, student_id: str) -> Optional[WaitlistEntry]:
        return self.find_one_by(session_id=session_id, student_id=student_id)

    def list_for_session(self, session_id: str) -> List[WaitlistEntry]:
        query = (
            self.db.query(WaitlistEntry)
            .filter(WaitlistEntry.session_id == session_id)
            .order_by(WaitlistEntry.position.asc())
        )
        return self._execute_query(query)

    def list_for_student(self, student_id: str) -> List[WaitlistEntry]:
        query = (
            self.db.query(WaitlistEntry)
            .filter(WaitlistEntry.student_id == student_id)
            .order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
        )
        return self._execute_query(query)

    def find_active_claim(self, session_id: str, now: datetime) -> Optional[WaitlistEntry]:
        """An entry currently holding a freed seat, if any."""
        try:
            return cast(
                Optional[WaitlistEntry],
                self.db.query(WaitlistEntry)
                .filter(
                    WaitlistEntry.session_id == session_id,
                    WaitlistEntry.notified_at.isnot(None),
                    WaitlistEntry.notification_expires_at > now,
                )
                .order_by(WaitlistEntry.position.asc())
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error finding active claim: {str(e)}")
            raise RepositoryException(f"Failed to find active claim: {str(e)}")

    def next_unclaimed(self, session_id: str, now: datetime) -> Optional[WaitlistEntry]:
        """
        Lowest-position entry eligible for an offer.

        An expired claim no longer holds the seat, so its entry is eligible
        again, but entries that were never offered go first. Expired entries
        are re-offered only once everyone behind them has had a turn.
        """
        try:
            return cast(
                Optional[WaitlistEntry],
                self.db.query(WaitlistEntry)
                .filter(
                    WaitlistEntry.session_id == session_id,
                    WaitlistEntry.notified_at.is_(None)
                    | WaitlistEntry.notification_expires_at.is_(None)
                    | (WaitlistEntry.notification_expires_at <= now),
                )
                .order_by(WaitlistEntry.notified_at.isnot(None), WaitlistEntry.position.asc())
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error finding next waitlist entry: {str(e)}")
            raise RepositoryException(f"Failed to find next waitlist entry: {str(e)}")

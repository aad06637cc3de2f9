# backend/app/models/waitlist.py
"""
Waitlist entries for full sessions.

Positions are strictly increasing per session and never reused, so FIFO
order survives students leaving. A claim is offered by stamping
``notified_at`` and ``notification_expires_at``; the deadline is checked
when the entry is read or promoted, there is no timer.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, UniqueConstraint
import ulid

from ..database import Base
from .types import UTCDateTime, utcnow


class WaitlistEntry(Base):
    """A student queued for a seat in a full session."""

    __tablename__ = "waitlist_entries"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(
        String(26), ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id = Column(String(26), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    notified_at = Column(UTCDateTime(), nullable=True)
    notification_expires_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_waitlist_session_student"),
        UniqueConstraint("session_id", "position", name="uq_waitlist_session_position"),
        CheckConstraint("position >= 1", name="ck_waitlist_position_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<WaitlistEntry {self.id}: session={self.session_id}, "
            f"student={self.student_id}, position={self.position}>"
        )

    def claim_active(self, now: Optional[datetime] = None) -> bool:
        """True while an offered seat is being held for this entry."""
        if self.notified_at is None or self.notification_expires_at is None:
            return False
        return (now or utcnow()) < self.notification_expires_at

    def offer(self, now: datetime, expires_at: datetime) -> None:
        self.notified_at = now
        self.notification_expires_at = expires_at

# backend/app/models/booking.py
"""
Booking model for the booking engine.

A booking is one student's seat in one ClassSession. It records which
package and allowance paid for it and exactly how many credits were
debited, so a cancellation can refund precisely that amount.

Lifecycle: (none) -> CONFIRMED -> CANCELLED. CANCELLED is terminal.
"""

from datetime import datetime
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime, utcnow

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    CONFIRMED = "CONFIRMED"  # Seat held, credits debited
    CANCELLED = "CANCELLED"  # Terminal


class Booking(Base):
    """
    A student's confirmed (or cancelled) seat in a session.

    ``credits_debited`` is fixed when the booking is created and never
    changes afterwards; ``package_id`` is null for comped bookings.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    session_id = Column(String(26), ForeignKey("class_sessions.id"), nullable=False, index=True)
    student_id = Column(String(26), nullable=False, index=True)
    package_id = Column(String(26), ForeignKey("credit_packages.id"), nullable=True, index=True)
    allowance_id = Column(String(26), ForeignKey("package_allowances.id"), nullable=True)
    credits_debited = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=utcnow)
    confirmed_at = Column(UTCDateTime(), nullable=True, default=utcnow)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    # Cancellation tracking
    cancelled_by_id = Column(String(26), nullable=True)
    cancelled_by_student = Column(Boolean, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    rescheduled_count = Column(Integer, nullable=False, default=0)

    session = relationship("ClassSession", backref="bookings")
    package = relationship("CreditPackage", foreign_keys=[package_id])

    __table_args__ = (
        CheckConstraint("status IN ('CONFIRMED', 'CANCELLED')", name="ck_bookings_status"),
        CheckConstraint("credits_debited >= 0", name="ck_bookings_credits_non_negative"),
        CheckConstraint("rescheduled_count >= 0", name="ck_bookings_rescheduled_non_negative"),
        # One live seat per student per session; cancelled rows may repeat.
        Index(
            "uq_bookings_session_student_confirmed",
            "session_id",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'CONFIRMED'"),
            postgresql_where=text("status = 'CONFIRMED'"),
        ),
        Index("ix_bookings_session_status", "session_id", "status"),
    )

    def __init__(self, **kwargs: Any) -> None:
        """Initialize with instant confirmation by default."""
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.CONFIRMED.value
        if self.rescheduled_count is None:
            self.rescheduled_count = 0
        logger.info(f"Creating booking for student {self.student_id} in session {self.session_id}")

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: student={self.student_id}, session={self.session_id}, "
            f"package={self.package_id}, credits={self.credits_debited}, status={self.status}>"
        )

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED.value

    def cancel(
        self,
        cancelled_by_id: str,
        reason: Optional[str] = None,
        *,
        by_student: bool = True,
        when: Optional[datetime] = None,
    ) -> None:
        """Cancel this booking."""
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = when or utcnow()
        self.cancelled_by_id = cancelled_by_id
        self.cancelled_by_student = by_student
        self.cancellation_reason = reason
        logger.info(f"Booking {self.id} cancelled by {cancelled_by_id}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for event payloads and API responses."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "student_id": self.student_id,
            "package_id": self.package_id,
            "allowance_id": self.allowance_id,
            "credits_debited": self.credits_debited,
            "status": self.status,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancelled_by_id": self.cancelled_by_id,
            "cancelled_by_student": self.cancelled_by_student,
            "cancellation_reason": self.cancellation_reason,
            "rescheduled_count": self.rescheduled_count,
        }

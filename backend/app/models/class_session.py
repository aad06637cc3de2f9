# backend/app/models/class_session.py
"""
Bookable session model.

A session is a time slot taught by one instructor. Shared (group/course)
sessions are pre-created with a capacity; one-off private sessions are
created on demand with a single seat when a student books a free slot.
"""

from datetime import datetime
import logging
from typing import Any, Optional, cast

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import ServiceType, SessionStatus
from ..database import Base
from ..domain.credit_tiers import session_duration_minutes
from .types import UTCDateTime, utcnow

logger = logging.getLogger(__name__)


class ClassSession(Base):
    """
    A bookable time slot.

    Named ClassSession so it never shadows ``sqlalchemy.orm.Session``.
    Capacity is not stored as a counter: the number of occupied seats is
    always derived from CONFIRMED bookings.
    """

    __tablename__ = "class_sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    service_type = Column(String(20), nullable=False, default=ServiceType.PRIVATE.value)
    instructor_id = Column(
        String(26), ForeignKey("instructor_profiles.id"), nullable=False, index=True
    )
    start_at = Column(UTCDateTime(), nullable=False)
    end_at = Column(UTCDateTime(), nullable=False)
    capacity_max = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value, index=True)
    is_adhoc = Column(Boolean, nullable=False, default=False)
    title = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=utcnow)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    instructor = relationship("InstructorProfile", lazy="joined")

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_class_sessions_time_order"),
        CheckConstraint("capacity_max >= 1", name="ck_class_sessions_capacity"),
        CheckConstraint(
            "service_type IN ('PRIVATE', 'GROUP', 'COURSE')",
            name="ck_class_sessions_service_type",
        ),
        CheckConstraint(
            "status IN ('SCHEDULED', 'CANCELLED', 'COMPLETED')",
            name="ck_class_sessions_status",
        ),
        Index("ix_class_sessions_instructor_window", "instructor_id", "start_at", "end_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = SessionStatus.SCHEDULED.value
        if not self.capacity_max:
            self.capacity_max = 1

    def __repr__(self) -> str:
        return (
            f"<ClassSession {self.id}: type={self.service_type}, "
            f"{self.start_at}-{self.end_at}, capacity={self.capacity_max}, status={self.status}>"
        )

    @property
    def duration_minutes(self) -> int:
        return session_duration_minutes(cast(datetime, self.start_at), cast(datetime, self.end_at))

    @property
    def instructor_tier(self) -> int:
        instructor = self.instructor
        return int(instructor.tier or 0) if instructor is not None else 0

    @property
    def is_scheduled(self) -> bool:
        return self.status == SessionStatus.SCHEDULED.value

    def cancel(self, when: Optional[datetime] = None) -> None:
        self.status = SessionStatus.CANCELLED.value
        self.cancelled_at = when or utcnow()
        logger.info(f"Session {self.id} cancelled")

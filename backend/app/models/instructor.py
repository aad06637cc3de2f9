# backend/app/models/instructor.py
"""
Instructor Profile model.

The booking engine only needs the read side of the external
Instructor/availability provider: an instructor's identity and tier. The tier
is added to a session's service-type base to produce the session tier that
credits are checked against.
"""

import logging

from sqlalchemy import CheckConstraint, Column, Integer, String
import ulid

from ..database import Base
from .types import UTCDateTime, utcnow

logger = logging.getLogger(__name__)


class InstructorProfile(Base):
    """
    Instructor as seen by the booking engine.

    Attributes:
        id: Primary key
        display_name: Name shown in warnings and events
        tier: Instructor level (0 = standard, higher = premium)
    """

    __tablename__ = "instructor_profiles"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    display_name = Column(String(255), nullable=False)
    tier = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (CheckConstraint("tier >= 0", name="ck_instructor_profiles_tier"),)

    def __repr__(self) -> str:
        return f"<InstructorProfile {self.id}: {self.display_name} tier={self.tier}>"

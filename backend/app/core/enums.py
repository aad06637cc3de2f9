# backend/app/core/enums.py
"""
Core enums for the booking engine.

These enumeration types are shared by models, the tier resolver and the
service layer so that persisted values and business rules agree.
"""

from enum import Enum


class ServiceType(str, Enum):
    """
    Kind of session a credit can pay for.

    Ordered from most to least privileged: a PRIVATE credit may pay for a
    GROUP or COURSE session, a GROUP credit for a COURSE session.
    """

    PRIVATE = "PRIVATE"
    GROUP = "GROUP"
    COURSE = "COURSE"


class SessionStatus(str, Enum):
    """Lifecycle of a bookable session."""

    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class CancelledByRole(str, Enum):
    """Who initiated a cancellation."""

    STUDENT = "student"
    OPERATOR = "operator"

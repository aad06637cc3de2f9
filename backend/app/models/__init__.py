"""
Database models for the booking engine.

The models are organized by functionality:
- Instructors and bookable sessions
- Credit packages, allowances and debit provenance
- Bookings, waitlist entries and the cancellation policy
- Transactional event outbox
"""

from .booking import Booking, BookingStatus
from .cancellation_policy import CancellationPolicy
from .class_session import ClassSession
from .credit_package import CreditPackage, PackageAllowance, PackageUse
from .event_outbox import EventOutbox, EventOutboxStatus
from .instructor import InstructorProfile
from .waitlist import WaitlistEntry

__all__ = [
    "Booking",
    "BookingStatus",
    "CancellationPolicy",
    "ClassSession",
    "CreditPackage",
    "EventOutbox",
    "EventOutboxStatus",
    "InstructorProfile",
    "PackageAllowance",
    "PackageUse",
    "WaitlistEntry",
]

# backend/app/schemas/__init__.py
"""
Pydantic schemas for the booking engine.

Request models forbid unknown fields; response models read straight from
ORM rows (``from_attributes``).
"""

from .booking import (
    BookingCancel,
    BookingCreate,
    BookingModificationCheck,
    BookingResponse,
    CancellationResult,
    SlotRequest,
    StudentBookingList,
    StudentBookingResponse,
)
from .credit import CreditGrant, CreditPackageResponse, GrantAllowance
from .policy import CancellationPolicyResponse, CancellationPolicyUpdate
from .waitlist import WaitlistEntryResponse, WaitlistJoin, WaitlistPromote

__all__ = [
    "BookingCancel",
    "BookingCreate",
    "BookingModificationCheck",
    "BookingResponse",
    "CancellationPolicyResponse",
    "CancellationPolicyUpdate",
    "CancellationResult",
    "CreditGrant",
    "CreditPackageResponse",
    "GrantAllowance",
    "SlotRequest",
    "StudentBookingList",
    "StudentBookingResponse",
    "WaitlistEntryResponse",
    "WaitlistJoin",
    "WaitlistPromote",
]

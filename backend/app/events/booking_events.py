"""Booking and waitlist domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional


@dataclass
class BookingCreated:
    """Fired after a booking is confirmed and paid for."""

    event_type: ClassVar[str] = "booking.created"

    booking_id: str
    session_id: str
    student_id: str
    package_id: Optional[str]
    allowance_id: Optional[str]
    credits_debited: int
    created_at: datetime

    @property
    def aggregate_id(self) -> str:
        return self.booking_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    event_type: ClassVar[str] = "booking.cancelled"

    booking_id: str
    session_id: str
    cancelled_by: str  # 'student' or 'operator'
    cancelled_at: datetime
    credits_refunded: int = 0
    refunded_package_id: Optional[str] = None

    @property
    def aggregate_id(self) -> str:
        return self.booking_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WaitlistNotified:
    """Fired when a freed seat is offered to a waitlisted student."""

    event_type: ClassVar[str] = "waitlist.notified"

    entry_id: str
    session_id: str
    student_id: str
    position: int
    notified_at: datetime
    expires_at: datetime

    @property
    def aggregate_id(self) -> str:
        return self.entry_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WaitlistPromoted:
    """Fired when an operator converts a waitlist entry into a booking."""

    event_type: ClassVar[str] = "waitlist.promoted"

    entry_id: str
    session_id: str
    student_id: str
    booking_id: str
    promoted_by: str

    @property
    def aggregate_id(self) -> str:
        return self.entry_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

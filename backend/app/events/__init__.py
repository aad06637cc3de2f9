"""Domain events written to the transactional outbox."""

from app.events.booking_events import (
    BookingCancelled,
    BookingCreated,
    WaitlistNotified,
    WaitlistPromoted,
)
from app.events.publisher import EventPublisher

__all__ = [
    "BookingCreated",
    "BookingCancelled",
    "WaitlistNotified",
    "WaitlistPromoted",
    "EventPublisher",
]

# backend/app/schemas/booking.py
"""
Booking schemas for the booking engine.

A booking request names either an existing session or a raw slot
(instructor + start/end) from which a one-off private session is created.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from ..models.booking import BookingStatus
from ._strict_base import StrictModel, StrictRequestModel


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SlotRequest(StrictRequestModel):
    """Raw time slot for an ad-hoc private session."""

    instructor_id: str = Field(..., min_length=1, description="Instructor to book")
    start_at: datetime = Field(..., description="Session start")
    end_at: datetime = Field(..., description="Session end")

    @field_validator("start_at", "end_at")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "SlotRequest":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class BookingCreate(StrictRequestModel):
    """
    Request a booking.

    Exactly one of ``session_id`` and ``slot`` identifies what is booked.
    Without ``package_id`` the booking is comped.
    """

    session_id: Optional[str] = Field(None, description="Existing session to book")
    slot: Optional[SlotRequest] = Field(None, description="Ad-hoc private slot to create")
    package_id: Optional[str] = Field(None, description="Credit package paying for the booking")
    allowance_id: Optional[str] = Field(
        None, description="Specific allowance on the package; first qualifying one if omitted"
    )
    confirmed_cross_tier: bool = Field(
        False, description="Caller accepted spending a higher-tier credit"
    )

    @model_validator(mode="after")
    def _one_target(self) -> "BookingCreate":
        if self.session_id and self.slot:
            raise ValueError("Provide either session_id or slot, not both")
        return self


class BookingCancel(StrictRequestModel):
    """Cancel a booking."""

    reason: Optional[str] = Field(None, max_length=1000, description="Why the booking is cancelled")


class BookingResponse(StrictModel):
    """Booking as returned to callers."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    session_id: str
    student_id: str
    package_id: Optional[str] = None
    allowance_id: Optional[str] = None
    credits_debited: int
    status: BookingStatus
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by_student: Optional[bool] = None
    rescheduled_count: int = 0


class CancellationResult(StrictModel):
    """Outcome of a cancellation."""

    booking_id: str
    refunded: bool
    refunded_package_id: Optional[str] = None
    credits_refunded: int = 0
    session_cancelled: bool = False
    waitlist_entry_notified_id: Optional[str] = None


class BookingModificationCheck(StrictModel):
    """Whether a confirmed booking may still be cancelled or rescheduled."""

    can_cancel: bool
    can_reschedule: bool
    reason: Optional[str] = None
    hours_until_session: float
    cancellation_deadline: Optional[datetime] = None


class StudentBookingResponse(StrictModel):
    """A student's booking with modification metadata."""

    booking: BookingResponse
    session_start_at: datetime
    session_end_at: datetime
    instructor_id: str
    can_cancel: bool
    can_reschedule: bool
    cancellation_deadline: Optional[datetime] = None


class StudentBookingList(StrictModel):
    bookings: List[StudentBookingResponse]

# backend/app/schemas/waitlist.py
"""Waitlist request and response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel, StrictRequestModel


class WaitlistJoin(StrictRequestModel):
    session_id: str = Field(..., min_length=1)


class WaitlistPromote(StrictRequestModel):
    """Operator promotion of a waitlist entry into a booking."""

    package_id: Optional[str] = Field(None, description="Package to debit; comped if omitted")
    allowance_id: Optional[str] = None
    confirmed_cross_tier: bool = False


class WaitlistEntryResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    session_id: str
    student_id: str
    position: int
    notified_at: Optional[datetime] = None
    notification_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

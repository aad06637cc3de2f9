# backend/app/schemas/policy.py
"""Cancellation policy schemas."""

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel, StrictRequestModel


class CancellationPolicyUpdate(StrictRequestModel):
    policy_name: str = Field("default", max_length=100)
    allow_cancellation: bool = True
    cancellation_deadline_hours: int = Field(24, ge=0)
    allow_rescheduling: bool = True
    rescheduling_deadline_hours: int = Field(24, ge=0)
    max_reschedules_per_booking: int = Field(2, ge=0)
    refund_credits_on_cancel: bool = True


class CancellationPolicyResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    policy_name: str
    allow_cancellation: bool
    cancellation_deadline_hours: int
    allow_rescheduling: bool
    rescheduling_deadline_hours: int
    max_reschedules_per_booking: int
    refund_credits_on_cancel: bool
    from_settings: bool = False

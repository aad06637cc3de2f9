# backend/app/models/cancellation_policy.py
"""
Cancellation and rescheduling policy.

At most one row is expected to be active; when none is, the policy
defaults in settings apply.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String
import ulid

from ..database import Base
from .types import UTCDateTime, utcnow


class CancellationPolicy(Base):
    """Deadlines and refund behaviour for booking changes."""

    __tablename__ = "cancellation_policies"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    policy_name = Column(String(100), nullable=False, default="default")
    allow_cancellation = Column(Boolean, nullable=False, default=True)
    cancellation_deadline_hours = Column(Integer, nullable=False, default=24)
    allow_rescheduling = Column(Boolean, nullable=False, default=True)
    rescheduling_deadline_hours = Column(Integer, nullable=False, default=24)
    max_reschedules_per_booking = Column(Integer, nullable=False, default=2)
    refund_credits_on_cancel = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("cancellation_deadline_hours >= 0", name="ck_policy_cancel_hours"),
        CheckConstraint("rescheduling_deadline_hours >= 0", name="ck_policy_reschedule_hours"),
        CheckConstraint("max_reschedules_per_booking >= 0", name="ck_policy_max_reschedules"),
    )

    def __repr__(self) -> str:
        return (
            f"<CancellationPolicy {self.policy_name}: cancel={self.allow_cancellation} "
            f"deadline={self.cancellation_deadline_hours}h refund={self.refund_credits_on_cancel}>"
        )

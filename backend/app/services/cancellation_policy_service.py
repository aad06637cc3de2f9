"""
Cancellation policy evaluation.

The active CancellationPolicy row wins; without one the defaults from
settings apply. All deadline checks take an explicit ``now`` so callers and
tests control the clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import CancellationNotAllowedException
from app.models.booking import Booking, BookingStatus
from app.models.cancellation_policy import CancellationPolicy
from app.models.class_session import ClassSession
from app.models.types import utcnow
from app.repositories.factory import RepositoryFactory
from app.schemas.policy import CancellationPolicyUpdate

from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicySnapshot:
    policy_name: str
    allow_cancellation: bool
    cancellation_deadline_hours: int
    allow_rescheduling: bool
    rescheduling_deadline_hours: int
    max_reschedules_per_booking: int
    refund_credits_on_cancel: bool
    from_settings: bool = False

    @classmethod
    def from_row(cls, row: CancellationPolicy) -> "PolicySnapshot":
        return cls(
            policy_name=str(row.policy_name),
            allow_cancellation=bool(row.allow_cancellation),
            cancellation_deadline_hours=int(row.cancellation_deadline_hours),
            allow_rescheduling=bool(row.allow_rescheduling),
            rescheduling_deadline_hours=int(row.rescheduling_deadline_hours),
            max_reschedules_per_booking=int(row.max_reschedules_per_booking),
            refund_credits_on_cancel=bool(row.refund_credits_on_cancel),
        )

    @classmethod
    def defaults(cls) -> "PolicySnapshot":
        return cls(
            policy_name="settings-default",
            allow_cancellation=settings.allow_cancellation,
            cancellation_deadline_hours=settings.cancellation_deadline_hours,
            allow_rescheduling=settings.allow_rescheduling,
            rescheduling_deadline_hours=settings.rescheduling_deadline_hours,
            max_reschedules_per_booking=settings.max_reschedules_per_booking,
            refund_credits_on_cancel=settings.refund_credits_on_cancel,
            from_settings=True,
        )


@dataclass(frozen=True)
class ModificationDecision:
    can_cancel: bool
    can_reschedule: bool
    hours_until_session: float
    cancellation_deadline: Optional[datetime]
    reason: Optional[str] = None


def hours_until(start_at: datetime, now: datetime) -> float:
    return (start_at - now).total_seconds() / 3600


class CancellationPolicyService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.policy_repository = RepositoryFactory.create_cancellation_policy_repository(db)

    def get_active_policy(self) -> PolicySnapshot:
        row = self.policy_repository.get_active_policy()
        if row is None:
            return PolicySnapshot.defaults()
        return PolicySnapshot.from_row(row)

    @BaseService.measure_operation("set_cancellation_policy")
    def set_active_policy(self, update: CancellationPolicyUpdate) -> CancellationPolicy:
        """Replace the active policy; previous rows stay for history."""
        with self.transaction():
            self.policy_repository.deactivate_all()
            row = self.policy_repository.create(is_active=True, **update.model_dump())
        self.log_operation("set_cancellation_policy", policy_name=update.policy_name)
        return row

    def evaluate(
        self,
        booking: Booking,
        session: ClassSession,
        now: Optional[datetime] = None,
        policy: Optional[PolicySnapshot] = None,
    ) -> ModificationDecision:
        """What the student may still do with a booking, without raising."""
        now = now or utcnow()
        policy = policy or self.get_active_policy()
        start_at: datetime = session.start_at  # type: ignore[assignment]
        remaining = hours_until(start_at, now)
        deadline = start_at - timedelta(hours=policy.cancellation_deadline_hours)

        if booking.status != BookingStatus.CONFIRMED.value:
            return ModificationDecision(
                can_cancel=False,
                can_reschedule=False,
                hours_until_session=0.0,
                cancellation_deadline=None,
                reason="Booking is not confirmed",
            )

        can_cancel = (
            policy.allow_cancellation and remaining >= policy.cancellation_deadline_hours
        )
        can_reschedule = (
            policy.allow_rescheduling
            and remaining >= policy.rescheduling_deadline_hours
            and int(booking.rescheduled_count or 0) < policy.max_reschedules_per_booking
        )

        reason: Optional[str] = None
        if not can_cancel and not can_reschedule:
            earliest = min(policy.cancellation_deadline_hours, policy.rescheduling_deadline_hours)
            if not policy.allow_cancellation and not policy.allow_rescheduling:
                reason = "Cancellations and rescheduling are not allowed"
            elif remaining < earliest:
                reason = f"Too late to modify (must be at least {earliest} hours before session)"
            elif int(booking.rescheduled_count or 0) >= policy.max_reschedules_per_booking:
                reason = f"Maximum reschedules reached ({policy.max_reschedules_per_booking})"
            else:
                reason = self._cancel_block_reason(policy)
        elif not can_cancel:
            reason = self._cancel_block_reason(policy)
        elif not can_reschedule:
            reason = self._reschedule_block_reason(policy, remaining)

        return ModificationDecision(
            can_cancel=can_cancel,
            can_reschedule=can_reschedule,
            hours_until_session=remaining,
            cancellation_deadline=deadline,
            reason=reason,
        )

    @staticmethod
    def _cancel_block_reason(policy: PolicySnapshot) -> str:
        if not policy.allow_cancellation:
            return "Cancellations are not allowed"
        return (
            f"Too late to cancel (must be at least "
            f"{policy.cancellation_deadline_hours} hours before session)"
        )

    @staticmethod
    def _reschedule_block_reason(policy: PolicySnapshot, remaining: float) -> str:
        if not policy.allow_rescheduling:
            return "Rescheduling is not allowed"
        if remaining < policy.rescheduling_deadline_hours:
            return (
                f"Too late to reschedule (must be at least "
                f"{policy.rescheduling_deadline_hours} hours before session)"
            )
        return f"Maximum reschedules reached ({policy.max_reschedules_per_booking})"

    def ensure_can_cancel(
        self,
        session: ClassSession,
        now: Optional[datetime] = None,
        *,
        as_operator: bool = False,
        policy: Optional[PolicySnapshot] = None,
    ) -> PolicySnapshot:
        """
        Raise CancellationNotAllowedException when the policy forbids cancelling.

        Operators bypass the deadline but not a disabled policy.
        """
        now = now or utcnow()
        policy = policy or self.get_active_policy()

        if not policy.allow_cancellation:
            raise CancellationNotAllowedException(
                CancellationNotAllowedException.DISABLED,
                "Cancellations are not allowed",
                details={"policy_name": policy.policy_name},
            )

        remaining = hours_until(session.start_at, now)  # type: ignore[arg-type]
        if not as_operator and remaining < policy.cancellation_deadline_hours:
            raise CancellationNotAllowedException(
                CancellationNotAllowedException.TOO_LATE,
                (
                    f"Too late to cancel (must be at least "
                    f"{policy.cancellation_deadline_hours} hours before session)"
                ),
                details={
                    "hours_until_session": round(remaining, 2),
                    "deadline_hours": policy.cancellation_deadline_hours,
                },
            )
        return policy

    def ensure_can_reschedule(
        self,
        booking: Booking,
        session: ClassSession,
        now: Optional[datetime] = None,
        policy: Optional[PolicySnapshot] = None,
    ) -> PolicySnapshot:
        """Gate for a reschedule request; the reschedule itself is out of scope here."""
        now = now or utcnow()
        policy = policy or self.get_active_policy()

        if not policy.allow_rescheduling:
            raise CancellationNotAllowedException(
                CancellationNotAllowedException.DISABLED,
                "Rescheduling is not allowed",
                details={"policy_name": policy.policy_name},
            )
        remaining = hours_until(session.start_at, now)  # type: ignore[arg-type]
        if remaining < policy.rescheduling_deadline_hours:
            raise CancellationNotAllowedException(
                CancellationNotAllowedException.TOO_LATE,
                (
                    f"Too late to reschedule (must be at least "
                    f"{policy.rescheduling_deadline_hours} hours before session)"
                ),
                details={
                    "hours_until_session": round(remaining, 2),
                    "deadline_hours": policy.rescheduling_deadline_hours,
                },
            )
        if int(booking.rescheduled_count or 0) >= policy.max_reschedules_per_booking:
            raise CancellationNotAllowedException(
                CancellationNotAllowedException.RESCHEDULE_LIMIT,
                f"Maximum reschedules reached ({policy.max_reschedules_per_booking})",
                details={
                    "rescheduled_count": booking.rescheduled_count,
                    "max_reschedules": policy.max_reschedules_per_booking,
                },
            )
        return policy

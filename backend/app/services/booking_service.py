# backend/app/services/booking_service.py
"""
Booking Service for the booking engine.

Handles the booking lifecycle, (none) -> CONFIRMED -> CANCELLED:
- Session resolution, including one-off private sessions built from a slot
- Tier matching and credit cost against the paying package
- Capacity and duplicate checks under the session lock
- Ledger movements, provenance and outbox events in the same transaction

Locks are taken instructor -> session -> package and held until commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import ulid

from ..core.booking_lock import booking_locks, instructor_lock
from ..core.enums import CancelledByRole, ServiceType, SessionStatus
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    CrossTierConfirmationRequiredException,
    ForbiddenException,
    InsufficientCreditsException,
    InvalidRequestException,
    NotFoundException,
    PackageExpiredException,
    TierMismatchException,
)
from ..domain.allowance_adapter import AllowanceView, resolve_allowances
from ..domain.credit_tiers import (
    can_use_allowance_for_session,
    credits_required,
    cross_tier_warning,
    duration_mismatch_warning,
    resolve_allowance_tier,
    session_tier,
)
from ..events import BookingCancelled, BookingCreated, EventPublisher
from ..models.booking import Booking, BookingStatus
from ..models.class_session import ClassSession
from ..models.credit_package import CreditPackage
from ..models.instructor import InstructorProfile
from ..models.types import utcnow
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import (
    BookingCreate,
    BookingModificationCheck,
    BookingResponse,
    CancellationResult,
    SlotRequest,
    StudentBookingList,
    StudentBookingResponse,
)
from .base import BaseService
from .cancellation_policy_service import CancellationPolicyService
from .capacity_service import CapacityService
from .credit_service import CreditService
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

# A booking made without a package is comped at this cost; nothing is debited.
COMPED_BOOKING_COST = 1


@dataclass(frozen=True)
class BookingQuote:
    """What a booking would cost with a given package, without booking it."""

    session_id: str
    package_id: str
    allowance_id: Optional[str]
    credits_required: int
    is_cross_tier: bool
    warnings: List[str] = field(default_factory=list)


class BookingService(BaseService):
    """
    Service layer for booking operations.

    The only place bookings are created or cancelled. Every mutation runs
    in one transaction holding the session lock (and the package lock when
    credits move), so capacity checks, ledger changes and events commit or
    roll back together.
    """

    def __init__(
        self,
        db: Session,
        credit_service: Optional[CreditService] = None,
        capacity_service: Optional[CapacityService] = None,
        policy_service: Optional[CancellationPolicyService] = None,
        waitlist_service: Optional[WaitlistService] = None,
        event_publisher: Optional[EventPublisher] = None,
    ):
        """
        Initialize booking service.

        Args:
            db: Database session
            credit_service: Ledger service (shares the session)
            capacity_service: Seat accounting
            policy_service: Cancellation policy evaluation
            waitlist_service: Waitlist promoter notified when seats free up
            event_publisher: Outbox writer
        """
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.session_repository = RepositoryFactory.create_class_session_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)
        self.instructor_repository = RepositoryFactory.create_base_repository(
            db, InstructorProfile
        )
        self.credit_service = credit_service or CreditService(db)
        self.capacity_service = capacity_service or CapacityService(db)
        self.policy_service = policy_service or CancellationPolicyService(db)
        self.waitlist_service = waitlist_service or WaitlistService(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    # ------------------------------------------------------------ create

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        student_id: str,
        booking_data: BookingCreate,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Book a seat, paying with a credit package when one is given.

        Args:
            student_id: The student taking the seat
            booking_data: Session (or ad-hoc slot), package and confirmation flags
            now: Reference time for expiry checks

        Returns:
            The CONFIRMED booking

        Raises:
            InvalidRequestException: Neither a session nor a slot was given
            NotFoundException: Session, instructor or package not found
            BusinessRuleException: Session not bookable, package expired or short of credits
            TierMismatchException: No allowance on the package can pay for the session
            CrossTierConfirmationRequiredException: Higher-tier credit without confirmation
            SessionFullException: No open seat
            BookingConflictException: Duplicate booking or instructor overlap
        """
        if booking_data.slot is None and not booking_data.session_id:
            raise InvalidRequestException("Provide either a session_id or a slot to book")

        now = now or utcnow()
        self.log_operation(
            "create_booking",
            student_id=student_id,
            session_id=booking_data.session_id,
            package_id=booking_data.package_id,
            adhoc=booking_data.slot is not None,
        )

        if booking_data.slot is not None:
            booking = self._create_adhoc_booking(student_id, booking_data.slot, booking_data, now)
        else:
            session_id = str(booking_data.session_id)
            with booking_locks(session_id, booking_data.package_id):
                with self.transaction():
                    session = self._load_bookable_session(session_id)
                    booking = self.book_session_locked(
                        student_id,
                        session,
                        package_id=booking_data.package_id,
                        allowance_id=booking_data.allowance_id,
                        confirmed_cross_tier=booking_data.confirmed_cross_tier,
                        now=now,
                    )

        self.log_operation(
            "create_booking_completed",
            booking_id=booking.id,
            session_id=booking.session_id,
            credits_debited=booking.credits_debited,
        )
        return booking

    def _create_adhoc_booking(
        self,
        student_id: str,
        slot: SlotRequest,
        booking_data: BookingCreate,
        now: datetime,
    ) -> Booking:
        """Create a single-seat private session for the slot and book it."""
        session_id = str(ulid.ULID())
        with instructor_lock(slot.instructor_id), booking_locks(
            session_id, booking_data.package_id
        ):
            with self.transaction():
                instructor = self.instructor_repository.get_by_id(slot.instructor_id)
                if instructor is None:
                    raise NotFoundException(
                        "Instructor not found",
                        code="INSTRUCTOR_NOT_FOUND",
                        details={"instructor_id": slot.instructor_id},
                    )

                overlaps = self.session_repository.find_instructor_overlaps(
                    slot.instructor_id, slot.start_at, slot.end_at
                )
                if overlaps:
                    raise BookingConflictException(
                        "The instructor already has a session at this time",
                        details={
                            "instructor_id": slot.instructor_id,
                            "start_at": slot.start_at.isoformat(),
                            "end_at": slot.end_at.isoformat(),
                            "conflicting_session_ids": [str(s.id) for s in overlaps],
                        },
                    )

                session = self.session_repository.create(
                    id=session_id,
                    service_type=ServiceType.PRIVATE.value,
                    instructor=instructor,
                    start_at=slot.start_at,
                    end_at=slot.end_at,
                    capacity_max=1,
                    status=SessionStatus.SCHEDULED.value,
                    is_adhoc=True,
                    created_at=now,
                )
                return self.book_session_locked(
                    student_id,
                    session,
                    package_id=booking_data.package_id,
                    allowance_id=booking_data.allowance_id,
                    confirmed_cross_tier=booking_data.confirmed_cross_tier,
                    now=now,
                )

    def _load_bookable_session(self, session_id: str) -> ClassSession:
        session = self.session_repository.get_session_for_update(session_id)
        if session is None:
            raise NotFoundException(
                "Session not found", code="SESSION_NOT_FOUND", details={"session_id": session_id}
            )
        if not session.is_scheduled:
            raise BusinessRuleException(
                f"Session is not open for booking - current status: {session.status}",
                code="SESSION_NOT_BOOKABLE",
                details={"session_id": session_id, "status": session.status},
            )
        return session

    def book_session_locked(
        self,
        student_id: str,
        session: ClassSession,
        *,
        package_id: Optional[str] = None,
        allowance_id: Optional[str] = None,
        confirmed_cross_tier: bool = False,
        used_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Run the booking checks and writes inside the caller's transaction.

        The caller holds ``booking_locks(session.id, package_id)`` until it
        commits. Nothing is committed here.
        """
        now = now or utcnow()
        allowance: Optional[AllowanceView] = None
        cost = COMPED_BOOKING_COST

        if package_id is not None:
            package = self._load_owned_package(package_id, student_id)
            allowance, cost, _ = self._price(package, session, allowance_id, confirmed_cross_tier)
            self._ensure_package_can_pay(package, cost, now)

        self.capacity_service.ensure_open_seat(session)

        existing = self.booking_repository.find_confirmed_for_student(str(session.id), student_id)
        if existing is not None:
            raise BookingConflictException(
                "You already have a booking for this session",
                details={"session_id": session.id, "booking_id": existing.id},
            )

        try:
            booking = self.booking_repository.create(
                session_id=session.id,
                student_id=student_id,
                package_id=package_id,
                allowance_id=allowance.id if allowance is not None else None,
                credits_debited=cost if package_id is not None else 0,
                status=BookingStatus.CONFIRMED.value,
                created_at=now,
                confirmed_at=now,
            )
        except IntegrityError as exc:
            raise BookingConflictException(
                "You already have a booking for this session",
                details={"session_id": session.id, "student_id": student_id},
            ) from exc

        if package_id is not None:
            self.credit_service.debit(
                package_id,
                cost,
                booking_id=str(booking.id),
                session_id=str(session.id),
                allowance_id=allowance.id if allowance is not None else None,
                used_by=used_by or student_id,
                now=now,
            )

        self.event_publisher.publish(
            BookingCreated(
                booking_id=str(booking.id),
                session_id=str(session.id),
                student_id=student_id,
                package_id=package_id,
                allowance_id=booking.allowance_id,
                credits_debited=int(booking.credits_debited),
                created_at=now,
            )
        )
        return booking

    def _load_owned_package(self, package_id: str, student_id: str) -> CreditPackage:
        package = self.credit_repository.get_package_for_update(package_id)
        # Another student's package is reported as missing.
        if package is None or package.student_id != student_id:
            raise NotFoundException(
                "Credit package not found",
                code="PACKAGE_NOT_FOUND",
                details={"package_id": package_id},
            )
        return package

    def _price(
        self,
        package: CreditPackage,
        session: ClassSession,
        allowance_id: Optional[str],
        confirmed_cross_tier: bool,
    ) -> Tuple[AllowanceView, int, List[str]]:
        """Pick the paying allowance and the credit cost; returns warnings too."""
        tier = session_tier(session)
        match = can_use_allowance_for_session(resolve_allowances(package), session, allowance_id)
        if not match.allowed or match.allowance is None:
            raise TierMismatchException(
                package_id=str(package.id),
                session_type=str(session.service_type),
                session_tier=tier,
                allowance_id=allowance_id,
            )
        allowance = match.allowance

        warnings: List[str] = []
        cross_tier = cross_tier_warning(allowance, session)
        if cross_tier is not None:
            if not confirmed_cross_tier:
                raise CrossTierConfirmationRequiredException(
                    cross_tier,
                    package_tier=resolve_allowance_tier(allowance),
                    session_tier=tier,
                    allowance_id=allowance.id,
                )
            warnings.append(cross_tier)

        duration = session.duration_minutes
        cost = credits_required(duration, allowance.credit_unit_minutes)
        mismatch = duration_mismatch_warning(duration, allowance.credit_unit_minutes)
        if mismatch is not None:
            warnings.append(mismatch)
            self.logger.info(
                mismatch,
                extra={
                    "session_id": session.id,
                    "package_id": package.id,
                    "duration_minutes": duration,
                    "credit_unit_minutes": allowance.credit_unit_minutes,
                },
            )
        return allowance, cost, warnings

    @staticmethod
    def _ensure_package_can_pay(package: CreditPackage, cost: int, now: datetime) -> None:
        if package.is_expired(now):
            raise PackageExpiredException(
                package_id=str(package.id), expires_at=package.expires_at  # type: ignore[arg-type]
            )
        available = int(package.remaining_credits)
        if available < cost:
            raise InsufficientCreditsException(
                package_id=str(package.id), required=cost, available=available
            )

    @BaseService.measure_operation("quote_booking")
    def quote_booking(
        self,
        student_id: str,
        session_id: str,
        package_id: str,
        allowance_id: Optional[str] = None,
    ) -> BookingQuote:
        """
        Preview the allowance, cost and warnings for a booking.

        Cross-tier use is reported rather than rejected; tier mismatch and
        ownership still raise.
        """
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException(
                "Session not found", code="SESSION_NOT_FOUND", details={"session_id": session_id}
            )
        package = self.credit_repository.get_by_id(package_id)
        if package is None or package.student_id != student_id:
            raise NotFoundException(
                "Credit package not found",
                code="PACKAGE_NOT_FOUND",
                details={"package_id": package_id},
            )
        allowance, cost, warnings = self._price(
            package, session, allowance_id, confirmed_cross_tier=True
        )
        return BookingQuote(
            session_id=session_id,
            package_id=package_id,
            allowance_id=allowance.id,
            credits_required=cost,
            is_cross_tier=cross_tier_warning(allowance, session) is not None,
            warnings=warnings,
        )

    # ------------------------------------------------------------ cancel

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        *,
        as_operator: bool = False,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel a booking and refund exactly what it cost.

        Args:
            booking_id: Booking to cancel
            actor_id: Student (or operator) cancelling
            reason: Optional cancellation reason
            as_operator: Operators may cancel any booking and bypass the deadline
            now: Reference time for the deadline check

        Returns:
            CancellationResult describing the refund and follow-up

        Raises:
            NotFoundException: Booking not found
            ForbiddenException: Actor does not own the booking
            BusinessRuleException: Booking is not CONFIRMED
            CancellationNotAllowedException: Policy forbids the cancellation
        """
        now = now or utcnow()
        self.log_operation(
            "cancel_booking", booking_id=booking_id, actor_id=actor_id, as_operator=as_operator
        )

        snapshot = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        if snapshot is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        if not as_operator and snapshot.student_id != actor_id:
            raise ForbiddenException(
                "You don't have permission to cancel this booking",
                code="BOOKING_FORBIDDEN",
                details={"booking_id": booking_id},
            )

        with booking_locks(str(snapshot.session_id), snapshot.package_id):
            with self.transaction():
                booking = self.booking_repository.get_for_update(booking_id)
                if booking is None:
                    raise NotFoundException(
                        "Booking not found",
                        code="BOOKING_NOT_FOUND",
                        details={"booking_id": booking_id},
                    )
                if not booking.is_confirmed:
                    raise BusinessRuleException(
                        f"Booking cannot be cancelled - current status: {booking.status}",
                        code="BOOKING_NOT_CONFIRMED",
                        details={"booking_id": booking_id, "status": booking.status},
                    )

                session: ClassSession = booking.session
                policy = self.policy_service.ensure_can_cancel(
                    session, now, as_operator=as_operator
                )

                booking.cancel(actor_id, reason, by_student=not as_operator, when=now)
                self.db.flush()

                credits_refunded = 0
                refunded_package_id: Optional[str] = None
                debited = int(booking.credits_debited or 0)
                if policy.refund_credits_on_cancel and booking.package_id and debited > 0:
                    self.credit_service.credit(
                        str(booking.package_id), debited, booking_id=str(booking.id), now=now
                    )
                    credits_refunded = debited
                    refunded_package_id = str(booking.package_id)

                session_cancelled = False
                notified_entry_id: Optional[str] = None
                if session.is_adhoc:
                    session.cancel(now)
                    session_cancelled = True
                    self.db.flush()
                else:
                    entry = self.waitlist_service.on_seat_freed(str(session.id), now=now)
                    notified_entry_id = str(entry.id) if entry is not None else None

                self.event_publisher.publish(
                    BookingCancelled(
                        booking_id=str(booking.id),
                        session_id=str(session.id),
                        cancelled_by=(
                            CancelledByRole.OPERATOR.value
                            if as_operator
                            else CancelledByRole.STUDENT.value
                        ),
                        cancelled_at=now,
                        credits_refunded=credits_refunded,
                        refunded_package_id=refunded_package_id,
                    )
                )

        self.log_operation(
            "cancel_booking_completed",
            booking_id=booking_id,
            credits_refunded=credits_refunded,
            session_cancelled=session_cancelled,
        )
        return CancellationResult(
            booking_id=booking_id,
            refunded=credits_refunded > 0,
            refunded_package_id=refunded_package_id,
            credits_refunded=credits_refunded,
            session_cancelled=session_cancelled,
            waitlist_entry_notified_id=notified_entry_id,
        )

    # ------------------------------------------------------------ queries

    def _get_owned_booking(self, booking_id: str, student_id: str) -> Booking:
        booking = self.booking_repository.get_booking_with_details(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        if booking.student_id != student_id:
            raise ForbiddenException(
                "You don't have permission to view this booking",
                code="BOOKING_FORBIDDEN",
                details={"booking_id": booking_id},
            )
        return booking

    @BaseService.measure_operation("check_modification")
    def check_modification(
        self, booking_id: str, student_id: str, now: Optional[datetime] = None
    ) -> BookingModificationCheck:
        """Whether the student may still cancel or reschedule a booking."""
        booking = self._get_owned_booking(booking_id, student_id)
        decision = self.policy_service.evaluate(booking, booking.session, now)
        return BookingModificationCheck(
            can_cancel=decision.can_cancel,
            can_reschedule=decision.can_reschedule,
            reason=decision.reason,
            hours_until_session=decision.hours_until_session,
            cancellation_deadline=decision.cancellation_deadline,
        )

    @BaseService.measure_operation("get_student_bookings")
    def get_student_bookings(
        self,
        student_id: str,
        upcoming_only: bool = False,
        now: Optional[datetime] = None,
    ) -> StudentBookingList:
        """Confirmed bookings for a student, soonest first, with modification metadata."""
        now = now or utcnow()
        policy = self.policy_service.get_active_policy()
        bookings = self.booking_repository.get_student_bookings(
            student_id,
            status=BookingStatus.CONFIRMED,
            upcoming_only=upcoming_only,
            now=now,
        )

        items: List[StudentBookingResponse] = []
        for booking in bookings:
            session: ClassSession = booking.session
            decision = self.policy_service.evaluate(booking, session, now, policy=policy)
            items.append(
                StudentBookingResponse(
                    booking=BookingResponse.model_validate(booking),
                    session_start_at=session.start_at,
                    session_end_at=session.end_at,
                    instructor_id=str(session.instructor_id),
                    can_cancel=decision.can_cancel,
                    can_reschedule=decision.can_reschedule,
                    cancellation_deadline=decision.cancellation_deadline,
                )
            )
        return StudentBookingList(bookings=items)

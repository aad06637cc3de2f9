"""Credit ledger service: atomic debits and refunds against credit packages."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.booking_lock import package_lock
from app.core.exceptions import (
    InsufficientCreditsException,
    NotFoundException,
    PackageExpiredException,
    ValidationException,
)
from app.models.credit_package import CreditPackage
from app.models.types import utcnow
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory

from .base import BaseService

logger = logging.getLogger(__name__)


class CreditService(BaseService):
    """
    The only writer of ``CreditPackage.remaining_credits``.

    ``debit`` and ``credit`` join the caller's transaction and never commit.
    They take the package lock themselves, but that lock is released when
    they return; a caller that commits later must hold ``package_lock`` for
    the whole transaction (the lock is re-entrant per thread). ``debit_package``
    and ``refund_package`` do exactly that for standalone use.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    @staticmethod
    def _validate_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationException(
                "Credit amount must be a positive integer",
                code="INVALID_AMOUNT",
                details={"amount": amount},
            )

    def _load_locked(self, package_id: str, direction: str) -> CreditPackage:
        package = self.credit_repository.get_package_for_update(package_id)
        if package is None:
            prometheus_metrics.record_ledger(direction, "not_found")
            raise NotFoundException(
                "Credit package not found",
                code="PACKAGE_NOT_FOUND",
                details={"package_id": package_id},
            )
        return package

    @BaseService.measure_operation("credit_debit")
    def debit(
        self,
        package_id: str,
        amount: int,
        *,
        booking_id: Optional[str] = None,
        session_id: Optional[str] = None,
        allowance_id: Optional[str] = None,
        used_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Remove ``amount`` credits from a package and record why.

        Returns:
            The new balance

        Raises:
            NotFoundException: package does not exist
            PackageExpiredException: package expired before ``now``
            InsufficientCreditsException: balance below ``amount``
        """
        self._validate_amount(amount)
        now = now or utcnow()

        with package_lock(package_id):
            package = self._load_locked(package_id, "debit")

            if package.is_expired(now):
                prometheus_metrics.record_ledger("debit", "expired")
                raise PackageExpiredException(
                    package_id=package_id, expires_at=package.expires_at  # type: ignore[arg-type]
                )

            available = int(package.remaining_credits)
            if available < amount:
                prometheus_metrics.record_ledger("debit", "insufficient")
                raise InsufficientCreditsException(
                    package_id=package_id, required=amount, available=available
                )

            new_balance = available - amount
            package.remaining_credits = new_balance
            if new_balance == 0:
                package.retired_at = now

            self.credit_repository.record_use(
                package_id=package_id,
                credits_used=amount,
                allowance_id=allowance_id,
                session_id=session_id,
                booking_id=booking_id,
                used_by=used_by,
                used_at=now,
            )
            self.db.flush()

        prometheus_metrics.record_ledger("debit", "success", amount)
        self.log_operation(
            "credit_debit",
            package_id=package_id,
            amount=amount,
            balance=new_balance,
            booking_id=booking_id,
        )
        return new_balance

    @BaseService.measure_operation("credit_refund")
    def credit(
        self,
        package_id: str,
        amount: int,
        *,
        booking_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Return ``amount`` credits to a package.

        Not gated by expiry: the credits were already paid for. The balance
        is capped at ``total_credits``.
        """
        self._validate_amount(amount)
        now = now or utcnow()

        with package_lock(package_id):
            package = self._load_locked(package_id, "refund")

            current = int(package.remaining_credits)
            total = int(package.total_credits)
            new_balance = current + amount
            if new_balance > total:
                logger.warning(
                    "Refund would exceed package total; capping",
                    extra={
                        "package_id": package_id,
                        "requested": amount,
                        "balance": current,
                        "total": total,
                    },
                )
                new_balance = total

            package.remaining_credits = new_balance
            if new_balance > 0:
                package.retired_at = None

            if booking_id is not None:
                self.credit_repository.mark_uses_refunded(
                    package_id=package_id, booking_id=booking_id, refunded_at=now
                )
            self.db.flush()

        prometheus_metrics.record_ledger("refund", "success", new_balance - current)
        self.log_operation(
            "credit_refund",
            package_id=package_id,
            amount=amount,
            balance=new_balance,
            booking_id=booking_id,
        )
        return new_balance

    def debit_package(self, package_id: str, amount: int, **kwargs: object) -> int:
        """Debit in its own transaction, holding the lock until commit."""
        with package_lock(package_id):
            with self.transaction():
                return self.debit(package_id, amount, **kwargs)  # type: ignore[arg-type]

    def refund_package(self, package_id: str, amount: int, **kwargs: object) -> int:
        """Refund in its own transaction, holding the lock until commit."""
        with package_lock(package_id):
            with self.transaction():
                return self.credit(package_id, amount, **kwargs)  # type: ignore[arg-type]

    @BaseService.measure_operation("credit_get_balance")
    def get_balance(self, package_id: str) -> int:
        package = self.db.get(CreditPackage, package_id, populate_existing=True)
        if package is None:
            raise NotFoundException(
                "Credit package not found",
                code="PACKAGE_NOT_FOUND",
                details={"package_id": package_id},
            )
        return int(package.remaining_credits)

    @BaseService.measure_operation("credit_get_available_packages")
    def get_available_packages(
        self, student_id: str, now: Optional[datetime] = None
    ) -> List[CreditPackage]:
        return self.credit_repository.get_available_packages(student_id=student_id, now=now)

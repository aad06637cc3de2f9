"""
Tests for CreditService (the credit ledger).

Covers debit/refund arithmetic, expiry gating, provenance rows and the
retired flag.
"""

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from app.core.exceptions import (
    InsufficientCreditsException,
    NotFoundException,
    PackageExpiredException,
    ValidationException,
)
from app.repositories.credit_repository import CreditRepository
from app.services.credit_service import CreditService

STUDENT = "01STUDENTAAAAAAAAAAAAAAAAA"


class TestDebit:
    def test_debit_reduces_balance_and_records_use(self, db: Session, make_package, now):
        package = make_package(STUDENT, total_credits=5)
        service = CreditService(db)

        balance = service.debit_package(package.id, 2, used_by=STUDENT, now=now)

        assert balance == 3
        assert service.get_balance(package.id) == 3
        uses = CreditRepository(db).get_uses(package_id=package.id)
        assert [u.credits_used for u in uses] == [2]
        assert uses[0].used_by == STUDENT

    def test_debit_to_zero_retires_package(self, db: Session, make_package, now):
        package = make_package(STUDENT, total_credits=1)
        CreditService(db).debit_package(package.id, 1, now=now)

        db.refresh(package)
        assert package.remaining_credits == 0
        assert package.is_retired

    def test_insufficient_credits(self, db: Session, make_package, now):
        package = make_package(STUDENT, total_credits=3, remaining_credits=1)
        with pytest.raises(InsufficientCreditsException) as exc_info:
            CreditService(db).debit_package(package.id, 2, now=now)

        assert exc_info.value.details["required"] == 2
        assert exc_info.value.details["available"] == 1
        assert CreditService(db).get_balance(package.id) == 1

    def test_expired_package_rejects_debit(self, db: Session, make_package, now):
        package = make_package(STUDENT, total_credits=3, expires_at=now - timedelta(minutes=1))
        with pytest.raises(PackageExpiredException):
            CreditService(db).debit_package(package.id, 1, now=now)

    def test_unknown_package(self, db: Session):
        with pytest.raises(NotFoundException) as exc_info:
            CreditService(db).debit_package("01MISSINGAAAAAAAAAAAAAAAAA", 1)
        assert exc_info.value.code == "PACKAGE_NOT_FOUND"

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    def test_amount_must_be_positive_int(self, db: Session, make_package, amount):
        package = make_package(STUDENT)
        with pytest.raises(ValidationException):
            CreditService(db).debit_package(package.id, amount)


class TestRefund:
    def test_refund_round_trip(self, db: Session, make_package, now):
        package = make_package(STUDENT, total_credits=4)
        service = CreditService(db)

        service.debit_package(package.id, 3, now=now)
        balance = service.refund_package(package.id, 3, now=now)

        assert balance == 4
        db.refresh(package)
        assert package.retired_at is None

    def test_refund_is_capped_at_total(self, db: Session, make_package, now):
        package = make_package(STUDENT, total_credits=4, remaining_credits=3)
        assert CreditService(db).refund_package(package.id, 5, now=now) == 4

    def test_expired_package_accepts_refund(self, db: Session, make_package, now):
        package = make_package(
            STUDENT, total_credits=2, remaining_credits=0, expires_at=now - timedelta(days=1)
        )
        assert CreditService(db).refund_package(package.id, 1, now=now) == 1

    def test_refund_clears_retired_flag(self, db: Session, make_package, now):
        package = make_package(STUDENT, total_credits=1)
        service = CreditService(db)
        service.debit_package(package.id, 1, now=now)
        service.refund_package(package.id, 1, now=now)

        db.refresh(package)
        assert not package.is_retired


class TestAvailablePackages:
    def test_only_unexpired_with_balance_soonest_first(self, db: Session, make_package, now):
        later = make_package(STUDENT, expires_at=now + timedelta(days=30))
        sooner = make_package(STUDENT, expires_at=now + timedelta(days=3))
        never = make_package(STUDENT)
        make_package(STUDENT, expires_at=now - timedelta(days=1))
        make_package(STUDENT, total_credits=2, remaining_credits=0)
        make_package("01OTHERSTUDENTAAAAAAAAAAAA")
        db.commit()

        packages = CreditService(db).get_available_packages(STUDENT, now=now)

        assert [p.id for p in packages] == [sooner.id, later.id, never.id]

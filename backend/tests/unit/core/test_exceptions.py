from datetime import datetime, timezone
from types import SimpleNamespace

from fastapi import HTTPException
import pytest

from app.core.exceptions import (
    BookingConflictException,
    CancellationNotAllowedException,
    CrossTierConfirmationRequiredException,
    DomainException,
    InsufficientCreditsException,
    InvalidRequestException,
    LockTimeoutException,
    PackageExpiredException,
    SessionFullException,
    TierMismatchException,
    is_lock_wait_timeout,
)


class TestDomainExceptions:
    def test_base_defaults(self):
        exc = DomainException("boom")
        assert exc.code == "DomainException"
        assert exc.details == {}
        assert exc.to_dict() == {"message": "boom", "code": "DomainException", "details": {}}

    @pytest.mark.parametrize(
        "exc, status_code, code",
        [
            (InvalidRequestException("bad"), 400, "INVALID_REQUEST"),
            (
                TierMismatchException(package_id="P", session_type="PRIVATE", session_tier=100),
                422,
                "TIER_MISMATCH",
            ),
            (
                CrossTierConfirmationRequiredException(
                    "warn", package_tier=100, session_tier=50, allowance_id="A"
                ),
                409,
                "CROSS_TIER_CONFIRMATION_REQUIRED",
            ),
            (
                InsufficientCreditsException(package_id="P", required=2, available=1),
                422,
                "INSUFFICIENT_CREDITS",
            ),
            (SessionFullException(session_id="S", capacity_max=1, confirmed=1), 409, "SESSION_FULL"),
            (BookingConflictException(), 409, "BOOKING_CONFLICT"),
        ],
    )
    def test_http_mapping(self, exc, status_code, code):
        http_exc = exc.to_http_exception()
        assert isinstance(http_exc, HTTPException)
        assert http_exc.status_code == status_code
        assert http_exc.detail["code"] == code

    def test_insufficient_credits_details(self):
        exc = InsufficientCreditsException(package_id="P", required=3, available=1)
        assert exc.message == "Insufficient credits. Required: 3, Available: 1"
        assert exc.details == {"package_id": "P", "required": 3, "available": 1}

    def test_cross_tier_carries_warning(self):
        exc = CrossTierConfirmationRequiredException(
            "This will use a Private Credit for a group class",
            package_tier=100,
            session_tier=50,
            allowance_id="A",
        )
        assert exc.warning == "This will use a Private Credit for a group class"
        assert exc.message.startswith("Cross-tier booking requires confirmation. ")

    def test_package_expired_serializes_timestamp(self):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        exc = PackageExpiredException(package_id="P", expires_at=expires)
        assert exc.details["expires_at"] == expires.isoformat()

    def test_cancellation_reason(self):
        exc = CancellationNotAllowedException(
            CancellationNotAllowedException.TOO_LATE, "late", details={"deadline_hours": 24}
        )
        assert exc.reason == "too_late"
        assert exc.details["deadline_hours"] == 24

    def test_lock_timeout_is_retryable_with_header(self):
        exc = LockTimeoutException("package:P:mutex", 10.0)
        assert exc.retryable is True
        http_exc = exc.to_http_exception()
        assert http_exc.status_code == 503
        assert http_exc.headers == {"Retry-After": "1"}


class TestLockWaitDetection:
    def test_postgres_lock_not_available(self):
        exc = Exception("timeout")
        exc.orig = SimpleNamespace(pgcode="55P03")
        assert is_lock_wait_timeout(exc)

    def test_sqlite_busy(self):
        assert is_lock_wait_timeout(Exception("(sqlite3.OperationalError) database is locked"))

    def test_other_errors(self):
        assert not is_lock_wait_timeout(Exception("syntax error"))

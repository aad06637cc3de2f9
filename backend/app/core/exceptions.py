# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
Every rejection carries a stable ``code`` and structured ``details``
so callers can render precise feedback without parsing messages.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidRequestException(ValidationException):
    """Raised when a request is malformed (e.g. neither session nor slot supplied)."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_REQUEST", details=details)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails for infrastructure reasons."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message or "An error occurred processing your request",
            "code": self.code,
            "details": self.details if self.details else {},
        }


class LockTimeoutException(ServiceException):
    """Raised when a package/session lock could not be acquired in time.

    This is an infrastructure condition, not a business rejection: the same
    request may succeed when retried.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, resource: str, waited_seconds: float):
        super().__init__(
            message=f"Timed out waiting for lock on {resource}",
            code="LOCK_TIMEOUT",
            details={"resource": resource, "waited_seconds": round(waited_seconds, 3)},
        )

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail=self.to_dict(),
            headers={"Retry-After": "1"},
        )


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class TierMismatchException(BusinessRuleException):
    """Raised when no allowance on a package can pay for the session."""

    def __init__(
        self,
        *,
        package_id: str,
        session_type: str,
        session_tier: int,
        allowance_id: Optional[str] = None,
    ):
        super().__init__(
            message="This package cannot be used for this session type",
            code="TIER_MISMATCH",
            details={
                "package_id": package_id,
                "allowance_id": allowance_id,
                "session_type": session_type,
                "session_tier": session_tier,
            },
        )


class CrossTierConfirmationRequiredException(ConflictException):
    """Raised when a higher-tier credit is about to pay for a lower-tier session."""

    def __init__(
        self,
        warning: str,
        *,
        package_tier: int,
        session_tier: int,
        allowance_id: Optional[str] = None,
    ):
        super().__init__(
            message=f"Cross-tier booking requires confirmation. {warning}",
            code="CROSS_TIER_CONFIRMATION_REQUIRED",
            details={
                "warning": warning,
                "package_tier": package_tier,
                "session_tier": session_tier,
                "allowance_id": allowance_id,
            },
        )

    @property
    def warning(self) -> str:
        return str(self.details["warning"])


class InsufficientCreditsException(BusinessRuleException):
    """Raised when a package balance cannot cover the booking cost."""

    def __init__(self, *, package_id: str, required: int, available: int):
        super().__init__(
            message=f"Insufficient credits. Required: {required}, Available: {available}",
            code="INSUFFICIENT_CREDITS",
            details={"package_id": package_id, "required": required, "available": available},
        )


class PackageExpiredException(BusinessRuleException):
    """Raised when debiting a package whose expiry has passed."""

    def __init__(self, *, package_id: str, expires_at: datetime):
        super().__init__(
            message="Package has expired",
            code="PACKAGE_EXPIRED",
            details={"package_id": package_id, "expires_at": expires_at.isoformat()},
        )


class SessionFullException(ConflictException):
    """Raised when a session has no open seat."""

    def __init__(self, *, session_id: str, capacity_max: int, confirmed: int):
        super().__init__(
            message="Session is full",
            code="SESSION_FULL",
            details={
                "session_id": session_id,
                "capacity_max": capacity_max,
                "confirmed": confirmed,
            },
        )


class CancellationNotAllowedException(BusinessRuleException):
    """Raised when the cancellation policy blocks a cancellation.

    ``reason`` is one of ``too_late``, ``disabled`` or ``reschedule_limit``.
    """

    TOO_LATE = "too_late"
    DISABLED = "disabled"
    RESCHEDULE_LIMIT = "reschedule_limit"

    def __init__(self, reason: str, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="CANCELLATION_NOT_ALLOWED",
            details={"reason": reason, **(details or {})},
        )

    @property
    def reason(self) -> str:
        return str(self.details["reason"])


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


def is_lock_wait_timeout(exc: Exception) -> bool:
    """
    Check if a database error indicates a row-lock wait timeout.

    PostgreSQL reports ``lock_timeout`` expiry as SQLSTATE 55P03 and SQLite
    reports a busy database as "database is locked".
    """
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode == "55P03":
        return True
    error_str = str(exc).lower()
    return "database is locked" in error_str or "lock timeout" in error_str

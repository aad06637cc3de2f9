# backend/app/repositories/factory.py
"""
Repository Factory for the booking engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .cancellation_policy_repository import CancellationPolicyRepository
    from .class_session_repository import ClassSessionRepository
    from .credit_repository import CreditRepository
    from .event_outbox_repository import EventOutboxRepository
    from .waitlist_repository import WaitlistRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model: Any) -> BaseRepository:
        """
        Create a generic base repository for any model.

        Args:
            db: Database session
            model: SQLAlchemy model class

        Returns:
            BaseRepository instance
        """
        return BaseRepository(db, model)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_class_session_repository(db: Session) -> "ClassSessionRepository":
        """Create repository for session lookups and overlap checks."""
        from .class_session_repository import ClassSessionRepository

        return ClassSessionRepository(db)

    @staticmethod
    def create_credit_repository(db: Session) -> "CreditRepository":
        """Create repository for credit packages and provenance."""
        from .credit_repository import CreditRepository

        return CreditRepository(db)

    @staticmethod
    def create_waitlist_repository(db: Session) -> "WaitlistRepository":
        """Create repository for waitlist entries."""
        from .waitlist_repository import WaitlistRepository

        return WaitlistRepository(db)

    @staticmethod
    def create_cancellation_policy_repository(db: Session) -> "CancellationPolicyRepository":
        """Create repository for cancellation policy rows."""
        from .cancellation_policy_repository import CancellationPolicyRepository

        return CancellationPolicyRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        """Create repository for the transactional event outbox."""
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)

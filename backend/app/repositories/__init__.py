# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for the booking engine.

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- IRepository: Interface defining required methods for all repositories
- RepositoryFactory: Factory for creating repository instances
- BookingRepository: Bookings and seat counting
- ClassSessionRepository: Sessions and instructor overlap checks
- CreditRepository: Credit packages, allowances and debit provenance
- WaitlistRepository: Waitlist entries and claim lookups
- CancellationPolicyRepository: Active cancellation policy
- EventOutboxRepository: Transactional outbox rows

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_credit_repository(db)
    packages = repository.get_available_packages(student_id=student_id)

Repositories flush but never commit; services own the transaction.
"""

from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .cancellation_policy_repository import CancellationPolicyRepository
from .class_session_repository import ClassSessionRepository
from .credit_repository import CreditRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .waitlist_repository import WaitlistRepository

__all__ = [
    "IRepository",
    "BaseRepository",
    "RepositoryFactory",
    "BookingRepository",
    "CancellationPolicyRepository",
    "ClassSessionRepository",
    "CreditRepository",
    "EventOutboxRepository",
    "WaitlistRepository",
]

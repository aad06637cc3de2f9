# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Every test gets its own SQLite file database so thread-based concurrency
tests can open extra sessions against the same data. Builders create the
rows most tests need and commit them, so a service rollback after a
rejected operation leaves the fixture data in place.
"""

import os
import sys

# Set testing mode BEFORE any app imports
os.environ["is_testing"] = "true"

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.booking_lock import reset_lock_state
from app.core.config import settings
from app.core.enums import ServiceType, SessionStatus
from app.database import build_engine, init_db
from app.models.class_session import ClassSession
from app.models.credit_package import CreditPackage, PackageAllowance
from app.models.instructor import InstructorProfile

settings.is_testing = True

# Fixed reference clock; sessions default to two days after it.
NOW = datetime(2030, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def engine(tmp_path) -> Iterator[Engine]:
    test_engine = build_engine(f"sqlite:///{tmp_path / 'booking_engine_test.db'}")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def _reset_locks() -> Iterator[None]:
    reset_lock_state()
    yield
    reset_lock_state()


# ============================================================================
# Builders
# ============================================================================


@pytest.fixture
def make_instructor(db: Session) -> Callable[..., InstructorProfile]:
    def _make(tier: int = 0, display_name: str = "Test Instructor") -> InstructorProfile:
        instructor = InstructorProfile(display_name=display_name, tier=tier)
        db.add(instructor)
        db.commit()
        return instructor

    return _make


@pytest.fixture
def make_session(db: Session, make_instructor) -> Callable[..., ClassSession]:
    def _make(
        service_type: ServiceType = ServiceType.PRIVATE,
        *,
        instructor: Optional[InstructorProfile] = None,
        instructor_tier: int = 0,
        start_at: Optional[datetime] = None,
        duration_minutes: int = 60,
        capacity_max: int = 1,
        status: SessionStatus = SessionStatus.SCHEDULED,
        is_adhoc: bool = False,
    ) -> ClassSession:
        instructor = instructor or make_instructor(tier=instructor_tier)
        start_at = start_at or NOW + timedelta(days=2)
        session = ClassSession(
            service_type=service_type.value,
            instructor=instructor,
            start_at=start_at,
            end_at=start_at + timedelta(minutes=duration_minutes),
            capacity_max=capacity_max,
            status=status.value,
            is_adhoc=is_adhoc,
        )
        db.add(session)
        db.commit()
        return session

    return _make


@pytest.fixture
def make_package(db: Session) -> Callable[..., CreditPackage]:
    def _make(
        student_id: str,
        *,
        allowances: Optional[List[Dict[str, Any]]] = None,
        total_credits: int = 10,
        remaining_credits: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        metadata_json: Optional[Dict[str, Any]] = None,
    ) -> CreditPackage:
        package = CreditPackage(
            student_id=student_id,
            name="Test package",
            total_credits=total_credits,
            remaining_credits=total_credits if remaining_credits is None else remaining_credits,
            expires_at=expires_at,
            metadata_json=metadata_json,
        )
        if allowances is None and metadata_json is None:
            allowances = [{"service_type": ServiceType.PRIVATE.value, "credits": total_credits}]
        package.allowances = [
            PackageAllowance(
                service_type=data.get("service_type", ServiceType.PRIVATE.value),
                teacher_tier=data.get("teacher_tier", 0),
                credit_unit_minutes=data.get("credit_unit_minutes", 60),
                credits=data.get("credits", total_credits),
            )
            for data in (allowances or [])
        ]
        db.add(package)
        db.commit()
        return package

    return _make

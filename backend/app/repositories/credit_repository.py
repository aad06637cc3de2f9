# backend/app/repositories/credit_repository.py
"""
Credit Repository for the booking engine.

Encapsulates credit package queries, row locking for ledger movements and
the PackageUse provenance trail. Balance arithmetic lives in CreditService;
this layer only reads and writes rows.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.core.exceptions import RepositoryException
from app.models.credit_package import CreditPackage, PackageAllowance, PackageUse
from app.models.types import utcnow

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[CreditPackage]):
    """Repository for credit packages, their allowances and debit provenance."""

    def __init__(self, db: Session):
        super().__init__(db, CreditPackage)
        self.logger = logging.getLogger(__name__)

    def get_package_for_update(self, package_id: str) -> Optional[CreditPackage]:
        """Load a package for a balance change (row lock where supported)."""
        return self.get_for_update(package_id)

    def get_available_packages(
        self, *, student_id: str, now: Optional[datetime] = None
    ) -> List[CreditPackage]:
        """Return unexpired packages with a positive balance, soonest-expiring first."""
        try:
            now = now or utcnow()
            query = (
                self.db.query(CreditPackage)
                .filter(
                    and_(
                        CreditPackage.student_id == student_id,
                        CreditPackage.remaining_credits > 0,
                        (CreditPackage.expires_at.is_(None) | (CreditPackage.expires_at > now)),
                    )
                )
                .order_by(
                    CreditPackage.expires_at.asc().nullslast(),
                    CreditPackage.purchased_at.asc(),
                    CreditPackage.id.asc(),
                )
            )
            return cast(List[CreditPackage], query.all())
        except Exception as exc:
            self.logger.error("Failed to get available packages: %s", str(exc))
            raise RepositoryException("Failed to get available packages") from exc

    def get_by_source_reference(self, source_reference: str) -> Optional[CreditPackage]:
        return self.find_one_by(source_reference=source_reference)

    def create_package(
        self,
        *,
        student_id: str,
        name: str,
        total_credits: int,
        allowances: List[Dict[str, Any]],
        expires_at: Optional[datetime] = None,
        source_reference: Optional[str] = None,
        metadata_json: Optional[Dict[str, Any]] = None,
    ) -> CreditPackage:
        """Insert a package and its allowance rows with a full balance."""
        try:
            package = CreditPackage(
                student_id=student_id,
                name=name,
                total_credits=total_credits,
                remaining_credits=total_credits,
                expires_at=expires_at,
                source_reference=source_reference,
                metadata_json=metadata_json,
            )
            package.allowances = [PackageAllowance(**data) for data in allowances]
            self.db.add(package)
            self.db.flush()
            return package
        except Exception as exc:
            self.logger.error("Failed to create package for student %s: %s", student_id, str(exc))
            raise RepositoryException("Failed to create credit package") from exc

    # ------------------------------------------------------------ provenance

    def record_use(
        self,
        *,
        package_id: str,
        credits_used: int,
        allowance_id: Optional[str] = None,
        session_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        used_by: Optional[str] = None,
        used_at: Optional[datetime] = None,
    ) -> PackageUse:
        try:
            use = PackageUse(
                package_id=package_id,
                credits_used=credits_used,
                allowance_id=allowance_id,
                session_id=session_id,
                booking_id=booking_id,
                used_by=used_by,
                used_at=used_at or utcnow(),
            )
            self.db.add(use)
            self.db.flush()
            return use
        except Exception as exc:
            self.logger.error("Failed to record package use for %s: %s", package_id, str(exc))
            raise RepositoryException("Failed to record package use") from exc

    def get_uses(
        self, *, package_id: str, booking_id: Optional[str] = None, include_refunded: bool = False
    ) -> List[PackageUse]:
        try:
            query = self.db.query(PackageUse).filter(PackageUse.package_id == package_id)
            if booking_id is not None:
                query = query.filter(PackageUse.booking_id == booking_id)
            if not include_refunded:
                query = query.filter(PackageUse.refunded_at.is_(None))
            return cast(List[PackageUse], query.order_by(PackageUse.used_at.asc()).all())
        except Exception as exc:
            self.logger.error("Failed to get package uses for %s: %s", package_id, str(exc))
            raise RepositoryException("Failed to get package uses") from exc

    def mark_uses_refunded(
        self, *, package_id: str, booking_id: str, refunded_at: Optional[datetime] = None
    ) -> int:
        uses = self.get_uses(package_id=package_id, booking_id=booking_id)
        stamp = refunded_at or utcnow()
        for use in uses:
            use.refunded_at = stamp
        if uses:
            self.db.flush()
        return len(uses)

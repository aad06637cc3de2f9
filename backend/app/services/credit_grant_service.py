"""
Credit grants: turning purchase-side grant events into credit packages.

This core never talks to a payment API. Whatever sells credits hands over
an already-granted ``CreditGrant`` through a ``CreditGrantProvider``, and
``CreditGrantService.apply_grant`` materializes it exactly once.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Protocol

from sqlalchemy.orm import Session

from app.core.exceptions import RepositoryException, ValidationException
from app.models.credit_package import CreditPackage
from app.repositories.factory import RepositoryFactory
from app.schemas.credit import CreditGrant

from .base import BaseService

logger = logging.getLogger(__name__)


class CreditGrantProvider(Protocol):
    """Source of already-paid credit grants."""

    def pending_grants(self) -> Iterable[CreditGrant]:
        ...


class CreditGrantService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    @staticmethod
    def _source_reference(grant: CreditGrant) -> str:
        return f"grant:{grant.grant_id}"

    @BaseService.measure_operation("apply_credit_grant")
    def apply_grant(self, grant: CreditGrant) -> CreditPackage:
        """
        Create the package for a grant, or return the one already created.

        Raises:
            ValidationException: the grant's total is not positive
        """
        if grant.total_credits <= 0:
            raise ValidationException(
                "Grant must contain at least one credit",
                code="INVALID_GRANT",
                details={"grant_id": grant.grant_id},
            )

        reference = self._source_reference(grant)
        existing = self.credit_repository.get_by_source_reference(reference)
        if existing is not None:
            logger.info(
                "Credit grant already applied",
                extra={"grant_id": grant.grant_id, "package_id": existing.id},
            )
            return existing

        allowances = [
            {
                "service_type": allowance.service_type.value,
                "teacher_tier": allowance.teacher_tier,
                "credit_unit_minutes": allowance.credit_unit_minutes,
                "credits": allowance.credits,
            }
            for allowance in grant.allowances
        ]
        try:
            with self.transaction():
                package = self.credit_repository.create_package(
                    student_id=grant.student_id,
                    name=grant.name,
                    total_credits=grant.total_credits,
                    allowances=allowances,
                    expires_at=grant.expires_at,
                    source_reference=reference,
                )
        except RepositoryException:
            # A concurrent apply of the same grant won the unique source_reference.
            existing = self.credit_repository.get_by_source_reference(reference)
            if existing is None:
                raise
            return existing

        self.log_operation(
            "apply_credit_grant",
            grant_id=grant.grant_id,
            package_id=package.id,
            student_id=grant.student_id,
            total_credits=grant.total_credits,
        )
        return package

    def apply_pending(self, provider: CreditGrantProvider) -> List[CreditPackage]:
        """Apply every grant the provider has; already-applied grants are returned as-is."""
        return [self.apply_grant(grant) for grant in provider.pending_grants()]

# backend/app/repositories/cancellation_policy_repository.py
"""Cancellation Policy Repository for the booking engine."""

import logging
from typing import Optional, cast

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.cancellation_policy import CancellationPolicy
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CancellationPolicyRepository(BaseRepository[CancellationPolicy]):
    """Repository for the cancellation policy rows."""

    def __init__(self, db: Session):
        super().__init__(db, CancellationPolicy)
        self.logger = logging.getLogger(__name__)

    def get_active_policy(self) -> Optional[CancellationPolicy]:
        """Most recently created active policy, if any."""
        try:
            return cast(
                Optional[CancellationPolicy],
                self.db.query(CancellationPolicy)
                .filter(CancellationPolicy.is_active.is_(True))
                .order_by(CancellationPolicy.created_at.desc(), CancellationPolicy.id.desc())
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error loading active cancellation policy: {str(e)}")
            raise RepositoryException(f"Failed to load cancellation policy: {str(e)}")

    def deactivate_all(self) -> int:
        """Mark every active policy inactive; used before activating a new one."""
        policies = self.find_by(is_active=True)
        for policy in policies:
            policy.is_active = False
        if policies:
            self.db.flush()
        return len(policies)

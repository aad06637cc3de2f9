# backend/app/schemas/credit.py
"""
Credit grant schemas.

A grant is the opaque "N credits of tier X for kind K, expiring at T"
event delivered by the purchase side. It may bundle several allowances.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field, model_validator

from ..core.enums import ServiceType
from ._strict_base import StrictModel, StrictRequestModel

ALLOWED_CREDIT_UNIT_MINUTES = (15, 30, 45, 60)


class GrantAllowance(StrictRequestModel):
    service_type: ServiceType = ServiceType.PRIVATE
    teacher_tier: int = Field(0, ge=0, description="Highest instructor tier the credit covers")
    credit_unit_minutes: int = Field(60, description="Minutes one credit buys")
    credits: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _check_unit(self) -> "GrantAllowance":
        if self.credit_unit_minutes not in ALLOWED_CREDIT_UNIT_MINUTES:
            raise ValueError(
                f"credit_unit_minutes must be one of {', '.join(map(str, ALLOWED_CREDIT_UNIT_MINUTES))}"
            )
        return self


class CreditGrant(StrictRequestModel):
    """Opaque grant event turned into a CreditPackage."""

    grant_id: str = Field(..., min_length=1, description="Idempotency key for the grant")
    student_id: str = Field(..., min_length=1)
    name: str = Field("Credit package", max_length=255)
    allowances: List[GrantAllowance] = Field(..., min_length=1)
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _one_allowance_per_kind(self) -> "CreditGrant":
        kinds = [allowance.service_type for allowance in self.allowances]
        if len(kinds) != len(set(kinds)):
            raise ValueError("At most one allowance per service type")
        return self

    @property
    def total_credits(self) -> int:
        return sum(allowance.credits for allowance in self.allowances)


class CreditPackageResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    student_id: str
    name: str
    total_credits: int
    remaining_credits: int
    expires_at: Optional[datetime] = None
    retired_at: Optional[datetime] = None
    source_reference: Optional[str] = None

"""Typed view over a package's allowances, new rows and legacy metadata alike.

Older packages carry their single allowance inside ``metadata_json``
(``service_type``, ``teacher_tier`` possibly as a string, ``credit_unit_minutes``).
Everything downstream works with ``AllowanceView`` and never reads the blob.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional

from app.core.enums import ServiceType

if TYPE_CHECKING:
    from app.models.credit_package import CreditPackage, PackageAllowance

logger = logging.getLogger(__name__)

DEFAULT_CREDIT_UNIT_MINUTES = 60


@dataclass(frozen=True)
class AllowanceView:
    """What one allowance on a package can pay for."""

    package_id: str
    service_type: ServiceType
    teacher_tier: int
    credit_unit_minutes: int
    credits: int
    # None for allowances synthesized from legacy metadata
    id: Optional[str] = None

    @property
    def is_legacy(self) -> bool:
        return self.id is None

    @property
    def is_premium(self) -> bool:
        return self.teacher_tier > 0


def _parse_tier(raw: Any) -> int:
    if raw is None or raw == "":
        return 0
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return max(raw, 0)
    try:
        return max(int(str(raw).strip()), 0)
    except ValueError:
        logger.warning(f"Ignoring unparseable teacher_tier {raw!r} in package metadata")
        return 0


def _parse_unit(raw: Any) -> int:
    try:
        unit = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_CREDIT_UNIT_MINUTES
    return unit if unit > 0 else DEFAULT_CREDIT_UNIT_MINUTES


def _parse_service_type(raw: Any) -> ServiceType:
    try:
        return ServiceType(str(raw).upper())
    except ValueError:
        return ServiceType.PRIVATE


def from_allowance_row(row: "PackageAllowance") -> AllowanceView:
    return AllowanceView(
        id=str(row.id),
        package_id=str(row.package_id),
        service_type=_parse_service_type(row.service_type),
        teacher_tier=int(row.teacher_tier or 0),
        credit_unit_minutes=int(row.credit_unit_minutes),
        credits=int(row.credits),
    )


def from_legacy_metadata(
    package_id: str, metadata: Optional[Mapping[str, Any]], total_credits: int
) -> AllowanceView:
    """Build the single allowance a legacy package implies; missing keys fall back to a standard private credit."""
    metadata = metadata or {}
    service_type = (
        _parse_service_type(metadata["service_type"])
        if metadata.get("service_type")
        else ServiceType.PRIVATE
    )
    return AllowanceView(
        package_id=package_id,
        service_type=service_type,
        teacher_tier=_parse_tier(metadata.get("teacher_tier")),
        credit_unit_minutes=_parse_unit(
            metadata.get("credit_unit_minutes", DEFAULT_CREDIT_UNIT_MINUTES)
        ),
        credits=int(total_credits),
    )


def resolve_allowances(package: "CreditPackage") -> list[AllowanceView]:
    """Allowances for a package in id order; legacy metadata only when no rows exist."""
    rows = list(package.allowances or [])
    if rows:
        return sorted((from_allowance_row(row) for row in rows), key=lambda a: a.id or "")
    return [from_legacy_metadata(str(package.id), package.metadata_json, int(package.total_credits))]

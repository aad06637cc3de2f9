"""Credit tier resolution and credit cost calculation.

A credit may pay for any session whose resolved tier is at or below the
credit's own tier, provided the credit's service kind may cover the
session's kind. Tier = service-kind base + instructor (or allowance) tier.

Pure functions only; nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol, Union

from app.core.enums import ServiceType

from .allowance_adapter import AllowanceView

SERVICE_TYPE_BASE_TIERS: dict[ServiceType, int] = {
    ServiceType.PRIVATE: 100,
    ServiceType.GROUP: 50,
    ServiceType.COURSE: 0,
}

# Which session kinds each credit kind may pay for.
PAYABLE_SESSION_TYPES: dict[ServiceType, frozenset[ServiceType]] = {
    ServiceType.PRIVATE: frozenset({ServiceType.PRIVATE, ServiceType.GROUP, ServiceType.COURSE}),
    ServiceType.GROUP: frozenset({ServiceType.GROUP, ServiceType.COURSE}),
    ServiceType.COURSE: frozenset({ServiceType.COURSE}),
}


class TieredSession(Protocol):
    service_type: str

    @property
    def instructor_tier(self) -> int:
        ...


@dataclass(frozen=True)
class AllowanceMatch:
    allowed: bool
    allowance: Optional[AllowanceView] = None


def _service_type(value: Union[str, ServiceType]) -> ServiceType:
    return value if isinstance(value, ServiceType) else ServiceType(str(value).upper())


# ---------------------------------------------------------------- tiers


def resolve_session_tier(service_type: Union[str, ServiceType], instructor_tier: int = 0) -> int:
    return SERVICE_TYPE_BASE_TIERS[_service_type(service_type)] + max(int(instructor_tier or 0), 0)


def session_tier(session: TieredSession) -> int:
    return resolve_session_tier(session.service_type, session.instructor_tier)


def resolve_allowance_tier(allowance: AllowanceView) -> int:
    return SERVICE_TYPE_BASE_TIERS[allowance.service_type] + allowance.teacher_tier


def allowance_qualifies(allowance: AllowanceView, session: TieredSession) -> bool:
    session_type = _service_type(session.service_type)
    if session_type not in PAYABLE_SESSION_TYPES[allowance.service_type]:
        return False
    return resolve_allowance_tier(allowance) >= session_tier(session)


def can_use_allowance_for_session(
    allowances: Iterable[AllowanceView],
    session: TieredSession,
    allowance_id: Optional[str] = None,
) -> AllowanceMatch:
    """
    Pick the allowance that pays for ``session``.

    With ``allowance_id`` only that allowance is considered. Otherwise the
    first qualifying allowance in id order wins, so the choice is stable
    across calls. Never raises; callers decide what a miss means.
    """
    candidates = sorted(allowances, key=lambda a: a.id or "")
    if allowance_id is not None:
        candidates = [a for a in candidates if a.id == allowance_id]

    for allowance in candidates:
        if allowance_qualifies(allowance, session):
            return AllowanceMatch(allowed=True, allowance=allowance)
    return AllowanceMatch(allowed=False)


def is_cross_tier(allowance: AllowanceView, session: TieredSession) -> bool:
    """A qualifying credit of strictly higher tier than the session needs."""
    if not allowance_qualifies(allowance, session):
        return False
    return resolve_allowance_tier(allowance) > session_tier(session)


def allowance_display_label(allowance: AllowanceView) -> str:
    if allowance.service_type == ServiceType.PRIVATE:
        return "Premium Private Credit" if allowance.is_premium else "Private Credit"
    if allowance.service_type == ServiceType.GROUP:
        return "Premium Group Credit" if allowance.is_premium else "Group Credit"
    return "Course Credit"


def cross_tier_warning(allowance: AllowanceView, session: TieredSession) -> Optional[str]:
    if not is_cross_tier(allowance, session):
        return None
    session_label = (
        "private class"
        if _service_type(session.service_type) == ServiceType.PRIVATE
        else "group class"
    )
    return f"This will use a {allowance_display_label(allowance)} for a {session_label}"


# ---------------------------------------------------------------- cost


def credits_required(duration_minutes: int, credit_unit_minutes: int) -> int:
    """ceil(duration / unit) in integer arithmetic, never less than 1."""
    if credit_unit_minutes <= 0:
        raise ValueError(f"credit_unit_minutes must be positive, got {credit_unit_minutes}")
    if duration_minutes < 0:
        raise ValueError(f"duration_minutes must be non-negative, got {duration_minutes}")
    return max(1, -(-duration_minutes // credit_unit_minutes))


def has_duration_mismatch(duration_minutes: int, credit_unit_minutes: int) -> bool:
    if credit_unit_minutes <= 0:
        raise ValueError(f"credit_unit_minutes must be positive, got {credit_unit_minutes}")
    return duration_minutes % credit_unit_minutes != 0


def duration_mismatch_warning(duration_minutes: int, credit_unit_minutes: int) -> Optional[str]:
    if duration_minutes == credit_unit_minutes:
        return None

    required = credits_required(duration_minutes, credit_unit_minutes)
    if duration_minutes < credit_unit_minutes:
        unused = credit_unit_minutes - duration_minutes
        plural = "s" if required > 1 else ""
        return (
            f"This session is {duration_minutes} minutes, but your credit is for "
            f"{credit_unit_minutes} minutes. You'll use {required} credit{plural} and "
            f"{unused} minutes will not be saved."
        )
    return (
        f"This session requires {required} of your {credit_unit_minutes}-minute credits "
        f"(total: {duration_minutes} minutes)"
    )


def session_duration_minutes(start_at: datetime, end_at: datetime) -> int:
    return int(round((end_at - start_at).total_seconds() / 60))

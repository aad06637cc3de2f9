"""
Credit package models.

A CreditPackage is a purchased bundle of usage rights owned by one student.
Each package carries one or more PackageAllowance rows describing what the
credits may pay for, and a single running ``remaining_credits`` balance
that only the credit ledger mutates. PackageUse rows record the provenance
of every debit so refunds and audits can be traced back to a booking.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from app.core.enums import ServiceType
from app.database import Base

from .types import JSONType, UTCDateTime, utcnow

if TYPE_CHECKING:
    from app.models.booking import Booking


class CreditPackage(Base):
    """A student's purchased credit bundle with a single mutable balance."""

    __tablename__ = "credit_packages"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    student_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Credit package")
    total_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    retired_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    source_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    # Legacy packages describe their single allowance in a metadata blob
    # (service_type / teacher_tier / credit_unit_minutes) instead of rows.
    metadata_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True, onupdate=utcnow)

    allowances: Mapped[List["PackageAllowance"]] = relationship(
        "PackageAllowance",
        back_populates="package",
        order_by="PackageAllowance.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    uses: Mapped[List["PackageUse"]] = relationship(
        "PackageUse", back_populates="package", order_by="PackageUse.used_at"
    )

    __table_args__ = (
        CheckConstraint("total_credits >= 0", name="ck_credit_packages_total_non_negative"),
        CheckConstraint(
            "remaining_credits >= 0 AND remaining_credits <= total_credits",
            name="ck_credit_packages_remaining_in_range",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditPackage(id={self.id}, student_id={self.student_id}, "
            f"remaining={self.remaining_credits}/{self.total_credits})>"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None


class PackageAllowance(Base):
    """
    What a package's credits may pay for.

    ``teacher_tier`` is the highest instructor tier the credit covers
    (0 = standard instructors only); ``credits`` is what was originally
    granted for this allowance.
    """

    __tablename__ = "package_allowances"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    package_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("credit_packages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ServiceType.PRIVATE.value)
    teacher_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credit_unit_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)

    package: Mapped["CreditPackage"] = relationship("CreditPackage", back_populates="allowances")

    __table_args__ = (
        CheckConstraint("teacher_tier >= 0", name="ck_package_allowances_tier"),
        CheckConstraint("credit_unit_minutes > 0", name="ck_package_allowances_unit"),
        CheckConstraint("credits > 0", name="ck_package_allowances_credits"),
        UniqueConstraint("package_id", "service_type", name="uq_package_allowances_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<PackageAllowance(package_id={self.package_id}, type={self.service_type}, "
            f"tier={self.teacher_tier}, unit={self.credit_unit_minutes}, credits={self.credits})>"
        )


class PackageUse(Base):
    """Provenance of a ledger debit, written in the same transaction."""

    __tablename__ = "package_uses"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    package_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("credit_packages.id"), nullable=False, index=True
    )
    allowance_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("package_allowances.id"), nullable=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("class_sessions.id"), nullable=True
    )
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=True, index=True
    )
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False)
    used_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    used_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    package: Mapped["CreditPackage"] = relationship("CreditPackage", back_populates="uses")
    booking: Mapped[Optional["Booking"]] = relationship("Booking", foreign_keys=[booking_id])

    __table_args__ = (
        CheckConstraint("credits_used > 0", name="ck_package_uses_positive"),
        Index("ix_package_uses_package_booking", "package_id", "booking_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PackageUse(package_id={self.package_id}, booking_id={self.booking_id}, "
            f"credits={self.credits_used}, refunded={self.refunded_at is not None})>"
        )

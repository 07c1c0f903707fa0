"""
Module: property_kernel.models.transactions
Responsibility: ORM persistence for the governed business entities -- property
    releases, turnovers, and returns.  Each row is the business transaction
    an approval request gates.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``status`` is a TransactionStatus value (check constraint).
    - ``previous_property_status`` / ``previous_custody_location`` snapshot the
      property at the moment the transaction opened, so rejection,
      cancellation, and expiry restore exactly that state.
    - A property has at most one open (PENDING / IN_PROGRESS / APPROVED)
      transaction across all three tables; enforced under a property row lock
      by the entity synchronizer.

Audit relevance:
    ``requested_by_id``, ``approved_by_id``, ``received_by_id`` and the
    matching timestamps record who moved a title and when.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from property_kernel.db.base import TrackedBase, UUIDString

_TXN_STATUS_VALUES = (
    "'PENDING', 'IN_PROGRESS', 'APPROVED', 'COMPLETED', "
    "'REJECTED', 'CANCELLED', 'EXPIRED'"
)


def _status_check(table: str) -> CheckConstraint:
    return CheckConstraint(
        f"status IN ({_TXN_STATUS_VALUES})", name=f"ck_{table}_status"
    )


class GovernedTransaction(TrackedBase):
    """Columns shared by every approval-governed property transaction."""

    __abstract__ = True

    property_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("properties.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    previous_property_status: Mapped[str] = mapped_column(String(30), nullable=False)
    previous_custody_location: Mapped[str] = mapped_column(String(30), nullable=False)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id} status={self.status}>"


class PropertyRelease(GovernedTransaction):
    """Release of a title to a subsidiary, a bank, or an external holder."""

    __tablename__ = "property_releases"

    __table_args__ = (
        _status_check("property_releases"),
        CheckConstraint(
            "release_type IN ('TO_SUBSIDIARY', 'TO_BANK', 'TO_EXTERNAL')",
            name="ck_property_releases_type",
        ),
        Index("ix_property_releases_property_status", "property_id", "status"),
    )

    release_type: Mapped[str] = mapped_column(String(20), nullable=False)
    business_unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("business_units.id"), nullable=True
    )
    bank_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("banks.id"), nullable=True
    )
    expected_return_date: Mapped[datetime | None] = mapped_column(nullable=True)
    purpose_of_release: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    transmittal_number: Mapped[str | None] = mapped_column(String(100), nullable=True)


class PropertyTurnover(GovernedTransaction):
    """Transfer of custody between business units."""

    __tablename__ = "property_turnovers"

    __table_args__ = (
        _status_check("property_turnovers"),
        CheckConstraint(
            "turnover_type IN ('INTERNAL_DEPARTMENT', 'BETWEEN_SUBSIDIARIES', "
            "'CUSTODY_TRANSFER')",
            name="ck_property_turnovers_type",
        ),
        Index("ix_property_turnovers_property_status", "property_id", "status"),
    )

    turnover_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_business_unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("business_units.id"), nullable=True
    )
    to_business_unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("business_units.id"), nullable=True
    )
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)


class PropertyReturn(GovernedTransaction):
    """Return of a released title back to the main office."""

    __tablename__ = "property_returns"

    __table_args__ = (
        _status_check("property_returns"),
        CheckConstraint(
            "return_type IN ('FROM_BANK', 'FROM_SUBSIDIARY', 'FROM_EXTERNAL')",
            name="ck_property_returns_type",
        ),
        Index("ix_property_returns_property_status", "property_id", "status"),
    )

    return_type: Mapped[str] = mapped_column(String(20), nullable=False)
    business_unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("business_units.id"), nullable=True
    )
    returned_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reason_for_return: Mapped[str | None] = mapped_column(Text, nullable=True)
    condition: Mapped[str | None] = mapped_column(String(100), nullable=True)

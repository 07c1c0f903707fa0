"""
Module: property_kernel.models.property
Responsibility: ORM persistence for properties and their movement ledger.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Property status and custody location are drawn from fixed vocabularies
      (check constraints).
    - Movement rows record where a property is going and why; they are
      closed (``closed_at`` + ``outcome``) when the governing transaction is
      completed, rejected, cancelled, or expired, and never deleted.

Audit relevance:
    The movement ledger is the physical-custody history of a title, kept
    alongside the approval trail.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from property_kernel.db.base import Base, TrackedBase, UUIDString

_STATUS_VALUES = (
    "'ACTIVE', 'INACTIVE', 'PENDING', 'RELEASED', 'RETURNED', "
    "'UNDER_REVIEW', 'BANK_CUSTODY', 'DISPUTED'"
)
_LOCATION_VALUES = (
    "'MAIN_OFFICE', 'BANK_CUSTODY', 'SUBSIDIARY_COMPANY', "
    "'EXTERNAL_HOLDER', 'IN_TRANSIT'"
)


class Property(TrackedBase):
    """A land title (or similar asset) whose custody is tracked."""

    __tablename__ = "properties"

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_properties_status"),
        CheckConstraint(
            f"custody_location IN ({_LOCATION_VALUES})",
            name="ck_properties_custody_location",
        ),
        Index("ix_properties_business_unit_status", "business_unit_id", "status"),
    )

    title_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    registered_owner: Mapped[str | None] = mapped_column(String(200), nullable=True)
    location: Mapped[str | None] = mapped_column(String(300), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="ACTIVE")
    custody_location: Mapped[str] = mapped_column(
        String(30), nullable=False, default="MAIN_OFFICE"
    )
    business_unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("business_units.id"), nullable=True
    )
    bank_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("banks.id"), nullable=True
    )

    movements: Mapped[list["PropertyMovement"]] = relationship(
        back_populates="property",
        order_by="PropertyMovement.movement_date",
    )

    def __repr__(self) -> str:
        return f"<Property {self.title_number} {self.status}/{self.custody_location}>"


class PropertyMovement(Base):
    """One custody movement of a property, tied to the transaction that caused it."""

    __tablename__ = "property_movements"

    __table_args__ = (
        CheckConstraint(
            f"from_location IN ({_LOCATION_VALUES})",
            name="ck_property_movements_from_location",
        ),
        CheckConstraint(
            f"to_location IN ({_LOCATION_VALUES})",
            name="ck_property_movements_to_location",
        ),
        CheckConstraint(
            "outcome IS NULL OR outcome IN "
            "('COMPLETED', 'REJECTED', 'CANCELLED', 'EXPIRED')",
            name="ck_property_movements_outcome",
        ),
        Index("ix_property_movements_reference", "reference_type", "reference_id"),
    )

    property_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("properties.id"), nullable=False
    )
    movement_type: Mapped[str] = mapped_column(String(40), nullable=False)
    from_location: Mapped[str] = mapped_column(String(30), nullable=False)
    to_location: Mapped[str] = mapped_column(String(30), nullable=False)
    business_unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("business_units.id"), nullable=True
    )
    bank_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("banks.id"), nullable=True
    )
    reference_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    moved_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    movement_date: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)

    property: Mapped[Property] = relationship(back_populates="movements")

    def __repr__(self) -> str:
        return (
            f"<PropertyMovement {self.movement_type} "
            f"{self.from_location}->{self.to_location}>"
        )

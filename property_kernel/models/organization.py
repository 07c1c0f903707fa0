"""
Module: property_kernel.models.organization
Responsibility: ORM persistence for roles, business units, and banks -- the
    reference data that approval steps and property transactions point at.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Role names are unique; ``level`` is a non-negative integer used by
      step override checks.
    - Business unit and bank names are unique.  Inactive units and banks
      cannot be the target of a new transaction (enforced by services).
"""

from __future__ import annotations

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from property_kernel.db.base import TrackedBase


class Role(TrackedBase):
    """A named role with a seniority level."""

    __tablename__ = "roles"

    __table_args__ = (
        CheckConstraint("level >= 0", name="ck_roles_level_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Role {self.name} level={self.level}>"

    def to_ref(self):
        from property_kernel.domain.approval import RoleRef

        return RoleRef(role_id=self.id, name=self.name, level=self.level)


class BusinessUnit(TrackedBase):
    """A subsidiary company or department that can hold properties."""

    __tablename__ = "business_units"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<BusinessUnit {self.name}>"


class Bank(TrackedBase):
    """A bank that can take custody of released property titles."""

    __tablename__ = "banks"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    branch: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Bank {self.name}>"

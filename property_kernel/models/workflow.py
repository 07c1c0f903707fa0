"""
Module: property_kernel.models.workflow
Responsibility: ORM persistence for approval workflow templates and their
    ordered steps.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Template names are unique.
    - At most one active template per entity type: partial unique index on
      ``entity_type`` where ``is_active`` (PostgreSQL and SQLite).
    - UNIQUE(workflow_id, step_order) and step_order >= 1.  Contiguity of
      1..N is enforced by the workflow store on every write.
    - A step that allows override must name a minimum role level.

Failure modes:
    - IntegrityError on a second active template for one entity type.
    - IntegrityError on a duplicate step position.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from property_kernel.db.base import Base, TrackedBase, UUIDString
from property_kernel.models.organization import Role


class ApprovalWorkflowModel(TrackedBase):
    """Persistent workflow template."""

    __tablename__ = "approval_workflows"

    __table_args__ = (
        Index(
            "uq_approval_workflows_active_entity_type",
            "entity_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        back_populates="workflow",
        order_by="ApprovalStepModel.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.name} {self.entity_type} active={self.is_active}>"

    def to_dto(self):
        """Convert ORM model to frozen domain DTO."""
        from property_kernel.domain.approval import WorkflowTemplate

        return WorkflowTemplate(
            workflow_id=self.id,
            name=self.name,
            description=self.description,
            entity_type=self.entity_type,
            is_active=self.is_active,
            steps=tuple(s.to_dto() for s in sorted(self.steps, key=lambda s: s.step_order)),
        )


class ApprovalStepModel(Base):
    """One ordered step of a workflow template."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_approval_steps_position"),
        CheckConstraint("step_order >= 1", name="ck_approval_steps_order_positive"),
        CheckConstraint(
            "can_override = false OR override_min_level IS NOT NULL",
            name="ck_approval_steps_override_level",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("roles.id"), nullable=False
    )
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_min_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    workflow: Mapped[ApprovalWorkflowModel] = relationship(back_populates="steps")
    role: Mapped[Role] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<ApprovalStep {self.step_order}:{self.step_name}>"

    def to_dto(self):
        from property_kernel.domain.approval import ApprovalStepDef

        return ApprovalStepDef(
            step_id=self.id,
            step_order=self.step_order,
            step_name=self.step_name,
            role=self.role.to_ref(),
            is_required=self.is_required,
            can_override=self.can_override,
            override_min_level=self.override_min_level,
        )

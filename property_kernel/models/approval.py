"""
Module: property_kernel.models.approval
Responsibility: ORM persistence for approval requests and their step responses.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Request status is one of the lifecycle values (check constraint); the
      service layer enforces the transition table and advances
      ``current_step_order`` with a compare-and-swap UPDATE.
    - At most one open (PENDING / IN_PROGRESS) request per governed entity
      and per property: partial unique indexes.
    - At most one response per (request, step): UNIQUE(request_id, step_id).
    - A REJECTED response carries non-blank comments (check constraint).
    - Responses are append-only (ORM listeners in db/immutability.py).

Failure modes:
    - IntegrityError on a second open request for the same entity/property.
    - IntegrityError on a second response to the same step.
    - ImmutabilityViolationError on response UPDATE/DELETE.

Audit relevance:
    Responses are the decision trail of every request: who answered which
    step, in which role, whether by override, and with what comments.
"""

from __future__ import annotations

from datetime import datetime
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

from property_kernel.db.base import Base, UUIDString
from property_kernel.models.workflow import ApprovalStepModel, ApprovalWorkflowModel

_OPEN_STATUS_PREDICATE = "status IN ('PENDING', 'IN_PROGRESS')"


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Guarantees:
        - Terminal statuses are never changed once set (service-enforced).
        - No two open requests for the same entity or property.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'APPROVED', 'REJECTED', "
            "'CANCELLED', 'OVERRIDDEN', 'EXPIRED')",
            name="ck_approval_requests_status",
        ),
        CheckConstraint(
            "current_step_order >= 1", name="ck_approval_requests_step_positive"
        ),
        Index(
            "uq_approval_requests_open_entity",
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_PREDICATE),
            sqlite_where=text(_OPEN_STATUS_PREDICATE),
        ),
        Index(
            "uq_approval_requests_open_property",
            "property_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_PREDICATE),
            sqlite_where=text(_OPEN_STATUS_PREDICATE),
        ),
        Index("ix_approval_requests_status_created", "status", "created_at"),
        Index("ix_approval_requests_entity", "entity_type", "entity_id"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    property_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("properties.id"), nullable=True
    )
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    current_step_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    overridden_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    overridden_at: Mapped[datetime | None] = mapped_column(nullable=True)

    workflow: Mapped[ApprovalWorkflowModel] = relationship()
    responses: Mapped[list["ApprovalResponseModel"]] = relationship(
        back_populates="request",
        order_by="ApprovalResponseModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} {self.entity_type}/{self.entity_id} "
            f"step={self.current_step_order} status={self.status}>"
        )

    def to_dto(self):
        """Convert ORM model to frozen domain DTO."""
        from property_kernel.domain.approval import ApprovalRequest, ApprovalStatus

        return ApprovalRequest(
            request_id=self.id,
            workflow_id=self.workflow_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            property_id=self.property_id,
            requested_by_id=self.requested_by_id,
            current_step_order=self.current_step_order,
            status=ApprovalStatus(self.status),
            created_at=self.created_at,
            updated_at=self.updated_at,
            completed_at=self.completed_at,
            is_overridden=self.is_overridden,
            overridden_by_id=self.overridden_by_id,
            overridden_at=self.overridden_at,
            responses=tuple(r.to_dto() for r in self.responses),
        )


class ApprovalResponseModel(Base):
    """Immutable decision against one step of one request."""

    __tablename__ = "approval_responses"

    __table_args__ = (
        UniqueConstraint("request_id", "step_id", name="uq_approval_responses_step"),
        CheckConstraint(
            "status IN ('APPROVED', 'REJECTED', 'UNDER_REVIEW', 'SKIPPED', 'EXPIRED')",
            name="ck_approval_responses_status",
        ),
        CheckConstraint(
            "status <> 'REJECTED' OR "
            "(comments IS NOT NULL AND length(trim(comments)) > 0)",
            name="ck_approval_responses_rejection_comments",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_steps.id"), nullable=False
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    responded_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    acting_role_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("roles.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    responded_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped[ApprovalRequestModel] = relationship(back_populates="responses")
    step: Mapped[ApprovalStepModel] = relationship()

    def __repr__(self) -> str:
        return f"<ApprovalResponse step={self.step_order} {self.status}>"

    def to_dto(self):
        from property_kernel.domain.approval import (
            ApprovalResponseRecord,
            ResponseStatus,
        )

        return ApprovalResponseRecord(
            response_id=self.id,
            request_id=self.request_id,
            step_id=self.step_id,
            step_order=self.step_order,
            responded_by_id=self.responded_by_id,
            status=ResponseStatus(self.status),
            comments=self.comments,
            is_override=self.is_override,
            responded_at=self.responded_at,
        )

"""
Module: property_kernel.models.audit_event
Responsibility: ORM persistence for the audit trail of approval and property
    transaction lifecycle events.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - ``payload_hash`` is the SHA-256 of the canonical JSON payload.
    - ``seq`` numbers the events of one entity 1, 2, 3, ...; UNIQUE per
      (entity_type, entity_id) so two writers cannot interleave a trail.

Audit relevance:
    AuditEvent IS the audit trail.  It is written by AuditorService inside
    the same transaction as the change it describes.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from property_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Governed transaction lifecycle
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_COMPLETED = "transaction_completed"
    TRANSACTION_CANCELLED = "transaction_cancelled"
    TRANSACTION_STATUS_MIRRORED = "transaction_status_mirrored"

    # Approval lifecycle
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_RESPONSE_RECORDED = "approval_response_recorded"
    APPROVAL_ADVANCED = "approval_advanced"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_OVERRIDDEN = "approval_overridden"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_CANCELLED = "approval_cancelled"
    APPROVAL_EXPIRED = "approval_expired"

    # Workflow administration
    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_UPDATED = "workflow_updated"
    WORKFLOW_STEPS_CHANGED = "workflow_steps_changed"
    WORKFLOW_ACTIVATED = "workflow_activated"
    WORKFLOW_DEACTIVATED = "workflow_deactivated"
    WORKFLOW_DUPLICATED = "workflow_duplicated"
    WORKFLOW_DELETED = "workflow_deleted"


class AuditEvent(Base):
    """
    Audit event.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "seq", name="uq_audit_entity_seq"
        ),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} {self.entity_type}:{self.entity_id}>"

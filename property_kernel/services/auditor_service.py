"""
AuditorService -- append-only audit trail for approval lifecycle events.

Responsibility:
    Creates immutable audit events for every significant state change in
    the approval workflow and the property transactions it governs, and
    provides trace queries for review.

Architecture position:
    Kernel > Services -- imperative shell, called by the workflow store,
    the request lifecycle manager, the step response processor, and the
    entity synchronizer.

Invariants enforced:
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).
    - Per-entity ordering: ``seq`` is 1 + the highest seq already recorded
      for the same entity, guarded by a unique constraint.
    - ``payload_hash`` is the SHA-256 of the canonical payload.

Failure modes:
    - IntegrityError on a concurrent write to the same entity's trail; the
      surrounding transaction rolls back.

Audit relevance:
    This IS the audit service.  Events are flushed in the caller's
    transaction, so they commit or roll back with the change they describe.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from property_kernel.domain.clock import Clock, SystemClock
from property_kernel.logging_config import get_logger
from property_kernel.models.audit_event import AuditAction, AuditEvent
from property_kernel.utils.hashing import json_safe, payload_digest

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    payload_hash: str


@dataclass(frozen=True)
class AuditTrace:
    """
    Complete audit trace for an entity.

    Contains all audit events in recording order.
    """

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def first_action(self) -> AuditAction | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()

    def _next_seq(self, entity_type: str, entity_id: UUID) -> int:
        current = self._session.execute(
            select(func.max(AuditEvent.seq)).where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
        ).scalar_one_or_none()
        return (current or 0) + 1

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event.

        Public methods should use the domain-specific recording methods.

        Args:
            entity_type: Type of entity being audited.
            entity_id: ID of the entity.
            action: The action being recorded.
            actor_id: Who performed the action.
            payload: Additional context data.

        Returns:
            The created AuditEvent.
        """
        payload_data = json_safe(payload or {})

        audit_event = AuditEvent(
            seq=self._next_seq(entity_type, entity_id),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=payload_digest(payload_data),
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "audit_entity_type": entity_type,
                "audit_entity_id": str(entity_id),
                "action": action.value,
                "seq": audit_event.seq,
            },
        )

        return audit_event

    # Domain-specific recording methods

    def record_transaction_created(
        self,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        property_id: UUID,
        details: dict[str, Any],
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=entity_type,
            entity_id=entity_id,
            action=AuditAction.TRANSACTION_CREATED,
            actor_id=actor_id,
            payload={"property_id": property_id, **details},
        )

    def record_transaction_transition(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        from_status: str,
        to_status: str,
        property_status: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            payload={
                "from_status": from_status,
                "to_status": to_status,
                "property_status": property_status,
            },
        )

    def record_request_created(
        self,
        request_id: UUID,
        actor_id: UUID,
        workflow_id: UUID,
        workflow_name: str,
        entity_type: str,
        entity_id: UUID,
        step_count: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.APPROVAL_REQUESTED,
            actor_id=actor_id,
            payload={
                "workflow_id": workflow_id,
                "workflow_name": workflow_name,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "step_count": step_count,
            },
        )

    def record_response(
        self,
        request_id: UUID,
        actor_id: UUID,
        step_order: int,
        decision: str,
        acting_role: str,
        is_override: bool,
        comments: str | None,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.APPROVAL_RESPONSE_RECORDED,
            actor_id=actor_id,
            payload={
                "step_order": step_order,
                "decision": decision,
                "acting_role": acting_role,
                "is_override": is_override,
                "comments": comments,
            },
        )

    def record_request_transition(
        self,
        request_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        from_status: str,
        to_status: str,
        current_step_order: int,
        reason: str | None = None,
    ) -> AuditEvent:
        payload: dict[str, Any] = {
            "from_status": from_status,
            "to_status": to_status,
            "current_step_order": current_step_order,
        }
        if reason is not None:
            payload["reason"] = reason
        return self._create_audit_event(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    def record_workflow_change(
        self,
        workflow_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any],
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ApprovalWorkflow",
            entity_id=workflow_id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    def get_trace(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> AuditTrace:
        """
        Get the complete audit trace for an entity, in recording order.
        """
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                payload_hash=event.payload_hash,
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=entries,
        )

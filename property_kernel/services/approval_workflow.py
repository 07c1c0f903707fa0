"""
property_kernel.services.approval_workflow -- Approval workflow boundary.

Responsibility:
    The operations callers invoke: create a governed entity together with
    its approval request, respond to a request, cancel a request, complete
    or abandon an approved transaction, expire stale requests, and read a
    request with its history.  Each mutating operation runs in exactly one
    database transaction and returns an ``OperationResult``; typed kernel
    errors never escape as exceptions.

Architecture position:
    Kernel > Services -- the outermost kernel service.  Wires the workflow
    store, the lifecycle manager, the step response processor, and the
    entity synchronizer onto one session per call.

Invariants enforced:
    - All-or-nothing: an entity is never left without its request, and a
      response is never recorded without its request transition.
    - Every error is reported as ``success=False`` with a stable ``code``.

Failure modes:
    - Kernel errors become failed results carrying the error's ``code``.
    - SQLAlchemy errors become ``PERSISTENCE_FAILURE`` results; nothing
      is committed.

Audit relevance:
    Each call binds a correlation ID into the log context so every log
    line and audit event of the call can be tied together.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from property_kernel.db.engine import session_scope
from property_kernel.domain.approval import (
    Actor,
    ApprovalDecision,
    EntityType,
    RequestHistory,
    build_step_progress,
)
from property_kernel.domain.clock import Clock, SystemClock
from property_kernel.domain.settings import ApprovalSettings
from property_kernel.domain.transactions import TransactionPayload
from property_kernel.exceptions import PropertyKernelError
from property_kernel.logging_config import LogContext, get_logger
from property_kernel.services.approval_service import ApprovalService
from property_kernel.services.auditor_service import AuditorService
from property_kernel.services.entity_sync import EntityStateSynchronizer
from property_kernel.services.step_response import StepResponseProcessor
from property_kernel.services.workflow_store import WorkflowDefinitionStore

logger = get_logger("services.approval_workflow")

PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one boundary operation."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> OperationResult:
        return cls(success=True, data=data or {})

    @classmethod
    def failure(cls, error: str, code: str) -> OperationResult:
        return cls(success=False, error=error, code=code)


@dataclass
class WorkflowServices:
    """The kernel services bound to one session."""

    session: Session
    auditor: AuditorService
    store: WorkflowDefinitionStore
    synchronizer: EntityStateSynchronizer
    approvals: ApprovalService
    responses: StepResponseProcessor


def build_services(
    session: Session,
    clock: Clock,
    settings: ApprovalSettings,
) -> WorkflowServices:
    auditor = AuditorService(session, clock)
    synchronizer = EntityStateSynchronizer(session, auditor, clock)
    approvals = ApprovalService(session, auditor, clock, listener=synchronizer)
    return WorkflowServices(
        session=session,
        auditor=auditor,
        store=WorkflowDefinitionStore(session, auditor, clock),
        synchronizer=synchronizer,
        approvals=approvals,
        responses=StepResponseProcessor(session, auditor, approvals, settings, clock),
    )


class ApprovalWorkflow:
    """Transactional entry points of the approval workflow."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        settings: ApprovalSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or ApprovalSettings()

    # =====================================================================
    # Boundary operations
    # =====================================================================

    def create_entity_with_approval(
        self,
        entity_type: EntityType | str,
        payload: TransactionPayload | Mapping[str, Any],
        requested_by_id: UUID,
        acting_business_unit_id: UUID | None = None,
    ) -> OperationResult:
        """
        Create the governed entity and its approval request atomically.

        Data on success: ``entity_id``, ``request_id``, ``status``,
        ``next_approver`` (role name of step 1).
        """

        def run(svc: WorkflowServices) -> dict[str, Any]:
            adapter = svc.synchronizer.adapter_for(entity_type)
            template = svc.store.find_active_template(adapter.entity_type)
            entity = svc.synchronizer.open_entity(
                adapter.entity_type,
                payload,
                requested_by_id,
                acting_business_unit_id=acting_business_unit_id,
            )
            request = svc.approvals.create_request(
                template,
                entity.id,
                requested_by_id,
                property_id=entity.property_id,
            )
            return {
                "entity_id": entity.id,
                "request_id": request.request_id,
                "status": request.status.value,
                "next_approver": template.first_approver,
            }

        return self._run(
            "create_entity_with_approval",
            run,
            actor_id=requested_by_id,
        )

    def respond_to_request(
        self,
        request_id: UUID,
        acting_user_id: UUID,
        acting_role_id: UUID,
        decision: ApprovalDecision | str,
        comments: str | None = None,
        is_override: bool = False,
        expected_step_order: int | None = None,
    ) -> OperationResult:
        """
        Record a decision on the current step of a request.

        Data on success: ``new_status``, ``current_step_order``,
        ``is_override`` (as recorded).
        """

        def run(svc: WorkflowServices) -> dict[str, Any]:
            role = svc.responses.resolve_role(acting_role_id)
            request = svc.responses.respond(
                request_id,
                Actor(user_id=acting_user_id, role=role),
                decision,
                comments=comments,
                is_override=is_override,
                expected_step_order=expected_step_order,
            )
            recorded = request.responses[-1] if request.responses else None
            return {
                "request_id": request.request_id,
                "new_status": request.status.value,
                "current_step_order": request.current_step_order,
                "is_override": recorded.is_override if recorded else False,
            }

        return self._run(
            "respond_to_request",
            run,
            actor_id=acting_user_id,
            request_id=request_id,
        )

    def cancel_request(
        self,
        request_id: UUID,
        acting_user_id: UUID,
        acting_role_id: UUID | None = None,
        reason: str | None = None,
    ) -> OperationResult:
        """
        Cancel an open request; the governed entity is cancelled with it.

        The requester may always cancel; the administrator role may cancel
        on anyone's behalf.
        """

        def run(svc: WorkflowServices) -> dict[str, Any]:
            is_admin = False
            if acting_role_id is not None:
                role = svc.responses.resolve_role(acting_role_id)
                is_admin = role.name == self._settings.administrator_role
            request = svc.approvals.cancel_request(
                request_id, acting_user_id, is_administrator=is_admin, reason=reason
            )
            return {"request_id": request.request_id, "new_status": request.status.value}

        return self._run(
            "cancel_request",
            run,
            actor_id=acting_user_id,
            request_id=request_id,
        )

    def complete_transaction(
        self,
        entity_type: EntityType | str,
        entity_id: UUID,
        acting_user_id: UUID,
        received_by_id: UUID | None = None,
    ) -> OperationResult:
        """Carry out an approved release, turnover, or return."""

        def run(svc: WorkflowServices) -> dict[str, Any]:
            snapshot = svc.synchronizer.complete_entity(
                entity_type, entity_id, acting_user_id, received_by_id=received_by_id
            )
            return {
                "entity_id": snapshot.entity_id,
                "status": snapshot.status.value,
                "property_status": snapshot.property_status.value,
                "custody_location": snapshot.custody_location.value,
            }

        return self._run(
            "complete_transaction",
            run,
            actor_id=acting_user_id,
            entity_id=entity_id,
        )

    def cancel_transaction(
        self,
        entity_type: EntityType | str,
        entity_id: UUID,
        acting_user_id: UUID,
        acting_role_id: UUID | None = None,
    ) -> OperationResult:
        """
        Cancel a governed transaction.

        While its request is open the request is cancelled (and the
        transaction with it); an approved transaction is cancelled directly.
        """

        def run(svc: WorkflowServices) -> dict[str, Any]:
            adapter = svc.synchronizer.adapter_for(entity_type)
            open_request = svc.approvals.find_open_request(
                adapter.entity_type.value, entity_id
            )
            if open_request is not None:
                is_admin = False
                if acting_role_id is not None:
                    role = svc.responses.resolve_role(acting_role_id)
                    is_admin = role.name == self._settings.administrator_role
                svc.approvals.cancel_request(
                    open_request.request_id, acting_user_id, is_administrator=is_admin
                )
                snapshot = svc.synchronizer.get_snapshot(adapter.entity_type, entity_id)
            else:
                snapshot = svc.synchronizer.cancel_approved_entity(
                    adapter.entity_type, entity_id, acting_user_id
                )
            return {
                "entity_id": snapshot.entity_id,
                "status": snapshot.status.value,
                "property_status": snapshot.property_status.value,
            }

        return self._run(
            "cancel_transaction",
            run,
            actor_id=acting_user_id,
            entity_id=entity_id,
        )

    def expire_stale_requests(
        self,
        acting_user_id: UUID,
        timeout_hours: int | None = None,
        as_of: datetime | None = None,
    ) -> OperationResult:
        """Expire open requests idle longer than the configured timeout."""
        hours = timeout_hours if timeout_hours is not None else self._settings.request_timeout_hours
        if hours is None:
            return OperationResult.ok({"expired": [], "timeout_hours": None})

        def run(svc: WorkflowServices) -> dict[str, Any]:
            expired = svc.approvals.expire_stale_requests(
                as_of or self._clock.now(), hours, acting_user_id
            )
            return {
                "expired": [r.request_id for r in expired],
                "timeout_hours": hours,
            }

        return self._run("expire_stale_requests", run, actor_id=acting_user_id)

    def can_respond(
        self,
        request_id: UUID,
        acting_role_id: UUID,
    ) -> bool:
        """Read-only capability check; unknown requests or roles answer False."""
        try:
            with session_scope(self._session_factory) as session:
                svc = build_services(session, self._clock, self._settings)
                role = svc.responses.resolve_role(acting_role_id)
                return svc.responses.can_respond(request_id, role)
        except PropertyKernelError:
            return False

    def get_request_with_history(self, request_id: UUID) -> RequestHistory:
        """
        Read a request, its template, and per-step progress.

        Raises:
            ApprovalRequestNotFoundError: unknown request.
        """
        with session_scope(self._session_factory) as session:
            svc = build_services(session, self._clock, self._settings)
            request = svc.approvals.get_request(request_id)
            workflow = svc.store.get_template(request.workflow_id)
            return RequestHistory(
                request=request,
                workflow=workflow,
                steps=build_step_progress(request, workflow),
            )

    # =====================================================================
    # Internals
    # =====================================================================

    def _run(
        self,
        operation: str,
        fn: Callable[[WorkflowServices], dict[str, Any]],
        **context: Any,
    ) -> OperationResult:
        with LogContext.bind(correlation_id=uuid4(), **context):
            try:
                with session_scope(self._session_factory) as session:
                    data = fn(build_services(session, self._clock, self._settings))
            except PropertyKernelError as exc:
                logger.warning(
                    "workflow_operation_failed",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "error_message": str(exc),
                    },
                )
                return OperationResult.failure(str(exc), exc.code)
            except SQLAlchemyError:
                logger.exception(
                    "workflow_operation_failed",
                    extra={"operation": operation, "error_code": PERSISTENCE_FAILURE},
                )
                return OperationResult.failure(
                    "The operation could not be saved; no changes were made",
                    PERSISTENCE_FAILURE,
                )

            logger.info(
                "workflow_operation_succeeded",
                extra={"operation": operation},
            )
            return OperationResult.ok(data)

"""
property_kernel.services.approval_service -- Approval Request Lifecycle Manager.

Responsibility:
    Owns the lifecycle of approval requests: creation against the active
    template, the compare-and-set transition applied after each recorded
    decision, requester cancellation, and the expiry sweep.  Every
    transition is mirrored onto the governed entity through the registered
    transition listener (the entity state synchronizer).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.  Decision
    recording lives in ``step_response``; this service applies its outcome.

Invariants enforced:
    - A request starts PENDING at step 1, only when its template has steps.
    - At most one open request per (entity_type, entity_id) and per
      property (service check plus partial unique indexes).
    - Status changes follow ``APPROVAL_TRANSITIONS``; terminal states are
      absorbing.
    - Transitions are a single conditional UPDATE keyed on the expected
      (status, current_step_order); a lost race changes nothing.
    - ``completed_at`` is set exactly when the request becomes terminal.

Failure modes:
    - WorkflowHasNoStepsError when the template has no steps.
    - EntityAlreadyInApprovalProcessError on a second open request.
    - ApprovalRequestNotFoundError for unknown request IDs.
    - RequestNotCancellableError / CancellationNotAllowedError on cancel.
    - InvalidApprovalTransitionError on a transition outside the table.
    - StepAlreadyAnsweredError when the conditional UPDATE for a step answer
      matches no row; OptimisticLockError for a cancel or expiry that loses
      the same race.

Audit relevance:
    Creation and every status change write ApprovalRequest audit events.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from property_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalRequest,
    ApprovalStatus,
    WorkflowTemplate,
    is_valid_transition,
)
from property_kernel.domain.authority import StepOutcome
from property_kernel.domain.clock import Clock, SystemClock
from property_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    CancellationNotAllowedError,
    EntityAlreadyInApprovalProcessError,
    InvalidApprovalTransitionError,
    OptimisticLockError,
    RequestNotCancellableError,
    StepAlreadyAnsweredError,
    WorkflowHasNoStepsError,
)
from property_kernel.logging_config import get_logger
from property_kernel.models.approval import ApprovalRequestModel
from property_kernel.models.audit_event import AuditAction
from property_kernel.services.auditor_service import AuditorService

logger = get_logger("services.approval")

_OPEN_VALUES = [s.value for s in OPEN_APPROVAL_STATUSES]

_TRANSITION_ACTIONS: dict[ApprovalStatus, AuditAction] = {
    ApprovalStatus.IN_PROGRESS: AuditAction.APPROVAL_ADVANCED,
    ApprovalStatus.APPROVED: AuditAction.APPROVAL_GRANTED,
    ApprovalStatus.OVERRIDDEN: AuditAction.APPROVAL_OVERRIDDEN,
    ApprovalStatus.REJECTED: AuditAction.APPROVAL_REJECTED,
    ApprovalStatus.CANCELLED: AuditAction.APPROVAL_CANCELLED,
    ApprovalStatus.EXPIRED: AuditAction.APPROVAL_EXPIRED,
}

_TRANSITION_EVENTS: dict[ApprovalStatus, str] = {
    ApprovalStatus.IN_PROGRESS: "approval_request_advanced",
    ApprovalStatus.CANCELLED: "approval_request_cancelled",
    ApprovalStatus.EXPIRED: "approval_request_expired",
}


class RequestTransitionListener(Protocol):
    """Receives every committed-to-be request status change."""

    def on_request_transition(
        self,
        request: ApprovalRequest,
        previous_status: ApprovalStatus,
        actor_id: UUID,
    ) -> None: ...


class ApprovalService:
    """Manages approval request lifecycle transitions."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        listener: RequestTransitionListener | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._listener = listener

    # =====================================================================
    # Creation
    # =====================================================================

    def create_request(
        self,
        template: WorkflowTemplate,
        entity_id: UUID,
        requested_by_id: UUID,
        property_id: UUID | None = None,
    ) -> ApprovalRequest:
        """
        Open a request for ``entity_id`` against ``template``.

        The request starts PENDING at step 1.  The caller is responsible for
        having created the governed entity in the same transaction.
        """
        if not template.steps:
            raise WorkflowHasNoStepsError(str(template.workflow_id), template.name)

        existing = self.find_open_request(template.entity_type, entity_id)
        if existing is not None:
            raise EntityAlreadyInApprovalProcessError(
                template.entity_type, str(entity_id), existing.status.value
            )

        now = self._clock.now()
        model = ApprovalRequestModel(
            workflow_id=template.workflow_id,
            entity_type=template.entity_type,
            entity_id=entity_id,
            property_id=property_id,
            requested_by_id=requested_by_id,
            current_step_order=1,
            status=ApprovalStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        try:
            self._session.flush()
        except IntegrityError as exc:
            logger.warning(
                "approval_request_collision",
                extra={
                    "workflow_entity_type": template.entity_type,
                    "entity_ref": str(entity_id),
                },
            )
            raise EntityAlreadyInApprovalProcessError(
                template.entity_type, str(property_id or entity_id)
            ) from exc

        self._auditor.record_request_created(
            request_id=model.id,
            actor_id=requested_by_id,
            workflow_id=template.workflow_id,
            workflow_name=template.name,
            entity_type=template.entity_type,
            entity_id=entity_id,
            step_count=len(template.steps),
        )
        logger.info(
            "approval_request_created",
            extra={
                "request_id": str(model.id),
                "workflow_id": str(template.workflow_id),
                "workflow_entity_type": template.entity_type,
                "step_count": len(template.steps),
            },
        )
        return model.to_dto()

    # =====================================================================
    # Reads used by the write path
    # =====================================================================

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self.load_request_model(request_id).to_dto()

    def find_open_request(self, entity_type: str, entity_id: UUID) -> ApprovalRequest | None:
        model = self._session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
                ApprovalRequestModel.status.in_(_OPEN_VALUES),
            )
        ).scalars().first()
        return model.to_dto() if model is not None else None

    def lock_request(self, request_id: UUID) -> ApprovalRequestModel:
        """
        Load the request row for update, refreshing any cached state.

        On PostgreSQL this is ``SELECT ... FOR UPDATE``; concurrent writers
        on the same request serialize here.  SQLite ignores the lock and
        relies on the conditional UPDATE in :meth:`apply_outcome`.
        """
        model = self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return model

    # =====================================================================
    # Transitions
    # =====================================================================

    def apply_outcome(
        self,
        model: ApprovalRequestModel,
        outcome: StepOutcome,
        actor_id: UUID,
        expected_step_order: int,
        override_by_id: UUID | None = None,
    ) -> ApprovalRequest:
        """Apply the result of a recorded decision to the request."""
        return self._transition(
            model,
            outcome.status,
            outcome.current_step_order,
            actor_id,
            expected_step_order=expected_step_order,
            override_by_id=override_by_id,
            answering_step=True,
        )

    def cancel_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        is_administrator: bool = False,
        reason: str | None = None,
    ) -> ApprovalRequest:
        """
        Cancel an open request.

        Only the requester may cancel, unless ``is_administrator`` is set.
        """
        model = self.lock_request(request_id)
        status = ApprovalStatus(model.status)
        if status in TERMINAL_APPROVAL_STATUSES:
            raise RequestNotCancellableError(str(request_id), status.value)
        if model.requested_by_id != actor_id and not is_administrator:
            raise CancellationNotAllowedError(str(request_id), str(actor_id))

        return self._transition(
            model,
            ApprovalStatus.CANCELLED,
            model.current_step_order,
            actor_id,
            expected_step_order=model.current_step_order,
            reason=reason,
        )

    def expire_stale_requests(
        self,
        as_of: datetime,
        timeout_hours: int,
        actor_id: UUID,
    ) -> list[ApprovalRequest]:
        """
        Move open requests untouched for ``timeout_hours`` to EXPIRED.

        A request whose row changed between selection and update is skipped;
        it is no longer stale.
        """
        cutoff = as_of - timedelta(hours=timeout_hours)
        candidates = self._session.execute(
            select(ApprovalRequestModel.id)
            .where(
                ApprovalRequestModel.status.in_(_OPEN_VALUES),
                ApprovalRequestModel.updated_at < cutoff,
            )
            .order_by(ApprovalRequestModel.created_at)
        ).scalars().all()

        expired: list[ApprovalRequest] = []
        for request_id in candidates:
            model = self.lock_request(request_id)
            if ApprovalStatus(model.status) not in OPEN_APPROVAL_STATUSES:
                continue
            if model.updated_at >= cutoff:
                continue
            try:
                expired.append(
                    self._transition(
                        model,
                        ApprovalStatus.EXPIRED,
                        model.current_step_order,
                        actor_id,
                        expected_step_order=model.current_step_order,
                        reason=f"no response within {timeout_hours} hours",
                    )
                )
            except OptimisticLockError:
                logger.info("approval_expiry_skipped", extra={"request_id": str(request_id)})

        logger.info(
            "approval_requests_expired",
            extra={
                "expired_count": len(expired),
                "timeout_hours": timeout_hours,
                "cutoff": cutoff.isoformat(),
            },
        )
        return expired

    def _transition(
        self,
        model: ApprovalRequestModel,
        new_status: ApprovalStatus,
        new_step_order: int,
        actor_id: UUID,
        *,
        expected_step_order: int,
        override_by_id: UUID | None = None,
        reason: str | None = None,
        answering_step: bool = False,
    ) -> ApprovalRequest:
        current = ApprovalStatus(model.status)
        if not is_valid_transition(current, new_status):
            raise InvalidApprovalTransitionError(current.value, new_status.value)

        now = self._clock.now()
        values: dict = {
            "status": new_status.value,
            "current_step_order": new_step_order,
            "updated_at": now,
        }
        if new_status in TERMINAL_APPROVAL_STATUSES:
            values["completed_at"] = now
        if override_by_id is not None and not model.is_overridden:
            values["is_overridden"] = True
            values["overridden_by_id"] = override_by_id
            values["overridden_at"] = now

        result = self._session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.id == model.id,
                ApprovalRequestModel.status == current.value,
                ApprovalRequestModel.current_step_order == expected_step_order,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "approval_transition_conflict",
                extra={
                    "request_id": str(model.id),
                    "expected_step_order": expected_step_order,
                    "to_status": new_status.value,
                },
            )
            if answering_step:
                raise StepAlreadyAnsweredError(str(model.id), expected_step_order)
            raise OptimisticLockError("ApprovalRequest", str(model.id))

        self._session.refresh(model)
        request = model.to_dto()

        self._auditor.record_request_transition(
            request_id=model.id,
            action=_TRANSITION_ACTIONS[new_status],
            actor_id=actor_id,
            from_status=current.value,
            to_status=new_status.value,
            current_step_order=new_step_order,
            reason=reason,
        )
        logger.info(
            _TRANSITION_EVENTS.get(new_status, "approval_request_resolved"),
            extra={
                "request_id": str(model.id),
                "from_status": current.value,
                "to_status": new_status.value,
                "current_step_order": new_step_order,
            },
        )

        if self._listener is not None:
            self._listener.on_request_transition(request, current, actor_id)
        return request

    def load_request_model(self, request_id: UUID) -> ApprovalRequestModel:
        model = self._session.get(ApprovalRequestModel, request_id)
        if model is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return model

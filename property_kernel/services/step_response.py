"""
property_kernel.services.step_response -- Step Response Processor.

Responsibility:
    Validates and records one actor's decision against the current step of
    a request, then hands the resulting outcome to the lifecycle manager.
    Also answers the read-only capability question "may this role respond
    now?" through the same authority check used on the write path.

Architecture position:
    Kernel > Services.  Uses ``ApprovalService`` for locking and for the
    compare-and-set transition; authority and outcome rules come from
    ``domain.authority``.

Invariants enforced:
    - Terminal requests accept no responses.
    - At most one response per (request, step): service check plus the
      UNIQUE(request_id, step_id) constraint.
    - A rejection always carries non-empty comments.
    - ``is_override`` on the recorded response is decided by the authority
      check, never by the caller.
    - The response insert and the request transition share one database
      transaction; a lost race leaves no partial write.

Failure modes:
    - ApprovalRequestNotFoundError / RequestNotPendingError.
    - StepAlreadyAnsweredError when the caller's view of the step is stale
      or a concurrent response won.
    - ApprovalStepNotFoundError when the current step is missing from the
      template (never retried).
    - UnauthorizedApproverError / RoleNotFoundError.
    - CommentsRequiredForRejectionError / InvalidDecisionError.

Audit relevance:
    Each accepted decision writes APPROVAL_RESPONSE_RECORDED before the
    lifecycle transition event.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from property_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    Actor,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalStepDef,
    ResponseStatus,
    RoleRef,
)
from property_kernel.domain.authority import (
    AuthorityCheck,
    can_respond,
    resolve_step_outcome,
)
from property_kernel.domain.clock import Clock, SystemClock
from property_kernel.domain.settings import ApprovalSettings
from property_kernel.exceptions import (
    ApprovalStepNotFoundError,
    CommentsRequiredForRejectionError,
    InvalidDecisionError,
    RequestNotPendingError,
    RoleNotFoundError,
    StepAlreadyAnsweredError,
    UnauthorizedApproverError,
)
from property_kernel.logging_config import get_logger
from property_kernel.models.approval import ApprovalRequestModel, ApprovalResponseModel
from property_kernel.models.organization import Role
from property_kernel.services.approval_service import ApprovalService
from property_kernel.services.auditor_service import AuditorService

logger = get_logger("services.step_response")


def _parse_decision(decision: ApprovalDecision | str) -> ApprovalDecision:
    try:
        return ApprovalDecision(decision)
    except ValueError:
        raise InvalidDecisionError(str(decision)) from None


class StepResponseProcessor:
    """Records decisions against the current step of approval requests."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        approvals: ApprovalService,
        settings: ApprovalSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._approvals = approvals
        self._settings = settings or ApprovalSettings()
        self._clock = clock or SystemClock()

    # =====================================================================
    # Capability
    # =====================================================================

    def resolve_role(self, role_id: UUID) -> RoleRef:
        role = self._session.get(Role, role_id)
        if role is None:
            raise RoleNotFoundError(str(role_id))
        return role.to_ref()

    def check_authority(self, request_id: UUID, role: RoleRef) -> AuthorityCheck:
        """Authority of ``role`` over the request's current step, without locking."""
        model = self._approvals.load_request_model(request_id)
        status = ApprovalStatus(model.status)
        step = self._current_step(model) if status in OPEN_APPROVAL_STATUSES else None
        return can_respond(status, role, step, self._settings.administrator_role)

    def can_respond(self, request_id: UUID, role: RoleRef) -> bool:
        return bool(self.check_authority(request_id, role))

    # =====================================================================
    # Recording
    # =====================================================================

    def respond(
        self,
        request_id: UUID,
        actor: Actor,
        decision: ApprovalDecision | str,
        comments: str | None = None,
        is_override: bool = False,
        expected_step_order: int | None = None,
    ) -> ApprovalRequest:
        """
        Record ``actor``'s decision on the request's current step.

        ``expected_step_order`` is the step the caller saw when it rendered
        the request.  When given and no longer current, the call fails with
        StepAlreadyAnsweredError instead of answering a later step.
        ``is_override`` is the caller's intent; the recorded flag comes
        from the authority check.
        """
        parsed = _parse_decision(decision)
        model = self._approvals.lock_request(request_id)
        status = ApprovalStatus(model.status)
        if status not in OPEN_APPROVAL_STATUSES:
            raise RequestNotPendingError(str(request_id), status.value)

        step_order = model.current_step_order
        if expected_step_order is not None and expected_step_order != step_order:
            raise StepAlreadyAnsweredError(str(request_id), expected_step_order)

        step = self._current_step(model)
        authority = can_respond(status, actor.role, step, self._settings.administrator_role)
        if not authority:
            logger.warning(
                "approval_response_unauthorized",
                extra={
                    "request_id": str(request_id),
                    "role_name": actor.role.name,
                    "step_order": step_order,
                    "reason": authority.reason,
                },
            )
            raise UnauthorizedApproverError(
                str(request_id), actor.role.name, step_order, authority.reason
            )

        cleaned = (comments or "").strip() or None
        if parsed == ApprovalDecision.REJECTED and cleaned is None:
            raise CommentsRequiredForRejectionError(str(request_id))

        if is_override and not authority.is_override:
            logger.info(
                "override_not_needed",
                extra={"request_id": str(request_id), "role_name": actor.role.name},
            )

        now = self._clock.now()
        response = ApprovalResponseModel(
            request_id=model.id,
            step_id=step.step_id,
            step_order=step_order,
            responded_by_id=actor.user_id,
            acting_role_id=actor.role.role_id,
            status=ResponseStatus(parsed.value).value,
            comments=cleaned,
            is_override=authority.is_override,
            responded_at=now,
        )
        self._insert_response(model, response, step_order)

        override_in_chain = model.is_overridden or any(
            r.is_override and r.status == ResponseStatus.APPROVED.value
            for r in model.responses
        )
        outcome = resolve_step_outcome(
            parsed,
            step_order,
            max(s.step_order for s in model.workflow.steps),
            override_in_chain,
        )

        self._auditor.record_response(
            request_id=model.id,
            actor_id=actor.user_id,
            step_order=step_order,
            decision=parsed.value,
            acting_role=actor.role.name,
            is_override=authority.is_override,
            comments=cleaned,
        )
        logger.info(
            "approval_response_recorded",
            extra={
                "request_id": str(model.id),
                "step_order": step_order,
                "decision": parsed.value,
                "is_override": authority.is_override,
                "role_name": actor.role.name,
            },
        )

        return self._approvals.apply_outcome(
            model,
            outcome,
            actor.user_id,
            expected_step_order=step_order,
            override_by_id=(
                actor.user_id
                if authority.is_override and parsed == ApprovalDecision.APPROVED
                else None
            ),
        )

    # =====================================================================
    # Internals
    # =====================================================================

    def _current_step(self, model: ApprovalRequestModel) -> ApprovalStepDef:
        for row in model.workflow.steps:
            if row.step_order == model.current_step_order:
                return row.to_dto()
        logger.error(
            "approval_step_missing",
            extra={
                "request_id": str(model.id),
                "workflow_id": str(model.workflow_id),
                "step_order": model.current_step_order,
            },
        )
        raise ApprovalStepNotFoundError(
            str(model.id), str(model.workflow_id), model.current_step_order
        )

    def _insert_response(
        self,
        model: ApprovalRequestModel,
        response: ApprovalResponseModel,
        step_order: int,
    ) -> None:
        if any(r.step_id == response.step_id for r in model.responses):
            raise StepAlreadyAnsweredError(str(model.id), step_order)
        model.responses.append(response)
        try:
            self._session.flush()
        except IntegrityError as exc:
            logger.warning(
                "approval_response_collision",
                extra={"request_id": str(model.id), "step_order": step_order},
            )
            raise StepAlreadyAnsweredError(str(model.id), step_order) from exc

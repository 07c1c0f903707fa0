"""
Approval authority rules (``property_kernel.domain.authority``).

Responsibility:
    The single capability check for approval steps, and the pure rule
    that decides what a recorded decision does to the request.  Every
    entry point (respond, can-respond queries, pending-for-role listings)
    goes through these functions instead of re-deriving role predicates.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O, no clock access.

Invariants enforced:
    - Exact role match authorizes without override.
    - Otherwise a step with ``can_override`` admits any role whose level is
      at least ``override_min_level``; the response is then recorded as an
      override regardless of what the caller asked for.
    - The administrator role passes every step, recorded as an override
      unless it is also the step's own role.
    - Nothing is authorized once the request is terminal.
    - A rejection terminates the request at any step.  Completion of the
      final step yields OVERRIDDEN when any accepted response in the chain
      was an override, APPROVED otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass

from property_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    ApprovalDecision,
    ApprovalStatus,
    ApprovalStepDef,
    RoleRef,
)


@dataclass(frozen=True)
class AuthorityCheck:
    """Outcome of the step capability check."""

    authorized: bool
    is_override: bool = False
    reason: str = ""

    def __bool__(self) -> bool:
        return self.authorized


def is_authorized_for_step(
    role: RoleRef,
    step: ApprovalStepDef,
    administrator_role: str | None = None,
) -> AuthorityCheck:
    """Decide whether ``role`` may answer ``step``."""
    if role.role_id == step.role.role_id:
        return AuthorityCheck(True, False, f"role {role.name} matches step")

    if administrator_role is not None and role.name == administrator_role:
        return AuthorityCheck(True, True, "administrator override")

    if step.can_override:
        threshold = step.override_min_level or 0
        if role.level >= threshold:
            return AuthorityCheck(
                True,
                True,
                f"override by level {role.level} (minimum {threshold})",
            )
        return AuthorityCheck(
            False,
            False,
            f"role level {role.level} is below the override minimum {threshold}",
        )

    return AuthorityCheck(False, False, f"step requires role {step.role.name}")


def can_respond(
    status: ApprovalStatus,
    role: RoleRef,
    step: ApprovalStepDef | None,
    administrator_role: str | None = None,
) -> AuthorityCheck:
    """Capability check against the live request status and current step."""
    if status not in OPEN_APPROVAL_STATUSES:
        return AuthorityCheck(False, False, f"request is {status.value}")
    if step is None:
        return AuthorityCheck(False, False, "request has no current step")
    return is_authorized_for_step(role, step, administrator_role)


@dataclass(frozen=True)
class StepOutcome:
    """Request-level effect of one recorded decision."""

    status: ApprovalStatus
    current_step_order: int

    @property
    def is_terminal(self) -> bool:
        return self.status not in OPEN_APPROVAL_STATUSES


def resolve_step_outcome(
    decision: ApprovalDecision,
    answered_step_order: int,
    last_step_order: int,
    override_in_chain: bool,
) -> StepOutcome:
    """
    Advance, complete, or terminate a request after a decision.

    ``override_in_chain`` covers the decision just recorded as well as every
    earlier accepted response.
    """
    if decision == ApprovalDecision.REJECTED:
        return StepOutcome(ApprovalStatus.REJECTED, answered_step_order)

    if answered_step_order >= last_step_order:
        final = ApprovalStatus.OVERRIDDEN if override_in_chain else ApprovalStatus.APPROVED
        return StepOutcome(final, answered_step_order)

    return StepOutcome(ApprovalStatus.IN_PROGRESS, answered_step_order + 1)

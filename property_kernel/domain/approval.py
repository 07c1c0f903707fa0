"""
Approval domain types (``property_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the sequential approval workflow.  Defines the
request lifecycle state machine, workflow template and step snapshots,
response records, and the read model used to render request progress.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only valid request status
  transitions.  Terminal states have no outgoing edges.
* ``WorkflowTemplate.steps`` is ordered by ``step_order`` and is
  contiguous from 1 when built through the workflow store.
* ``ApprovalResponseRecord`` is immutable once created.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


# =========================================================================
# Request lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    OVERRIDDEN = "OVERRIDDEN"
    EXPIRED = "EXPIRED"


OPEN_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.IN_PROGRESS,
})

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.OVERRIDDEN,
    ApprovalStatus.EXPIRED,
})

_FROM_OPEN: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.IN_PROGRESS,
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.OVERRIDDEN,
    ApprovalStatus.EXPIRED,
})

APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: _FROM_OPEN,
    ApprovalStatus.IN_PROGRESS: _FROM_OPEN,
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
    ApprovalStatus.OVERRIDDEN: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
}


def is_valid_transition(current: ApprovalStatus, new: ApprovalStatus) -> bool:
    return new in APPROVAL_TRANSITIONS.get(current, frozenset())


class ResponseStatus(str, Enum):
    """Status recorded on an individual step response."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    SKIPPED = "SKIPPED"
    EXPIRED = "EXPIRED"


class ApprovalDecision(str, Enum):
    """Decisions an actor may submit against the current step."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class EntityType(str, Enum):
    """Kinds of business transaction a workflow template can govern."""

    PROPERTY_RELEASE = "PROPERTY_RELEASE"
    PROPERTY_TURNOVER = "PROPERTY_TURNOVER"
    PROPERTY_RETURN = "PROPERTY_RETURN"
    RPT_PAYMENT = "RPT_PAYMENT"
    DOCUMENT_APPROVAL = "DOCUMENT_APPROVAL"
    USER_ASSIGNMENT = "USER_ASSIGNMENT"


# =========================================================================
# Workflow template snapshots
# =========================================================================


@dataclass(frozen=True)
class RoleRef:
    """Role identity plus the numeric level used for override checks."""

    role_id: UUID
    name: str
    level: int = 0


@dataclass(frozen=True)
class Actor:
    """The user acting on a request, with the role they are acting in."""

    user_id: UUID
    role: RoleRef


@dataclass(frozen=True)
class ApprovalStepDef:
    """One position in a workflow template."""

    step_id: UUID
    step_order: int
    step_name: str
    role: RoleRef
    is_required: bool = True
    can_override: bool = False
    override_min_level: int | None = None


@dataclass(frozen=True)
class WorkflowTemplate:
    """A named, ordered chain of approval steps for one entity type."""

    workflow_id: UUID
    name: str
    entity_type: str
    is_active: bool
    steps: tuple[ApprovalStepDef, ...] = ()
    description: str | None = None

    @property
    def last_step_order(self) -> int:
        return max((s.step_order for s in self.steps), default=0)

    def step_at(self, step_order: int) -> ApprovalStepDef | None:
        for step in self.steps:
            if step.step_order == step_order:
                return step
        return None

    @property
    def first_approver(self) -> str | None:
        """Role name of step 1, surfaced to callers as the next approver."""
        first = self.step_at(1)
        return first.role.name if first else None


@dataclass(frozen=True)
class StepSpec:
    """
    Input shape for authoring a step; ``step_order`` is renumbered on save.

    ``step_id`` ties the spec to an existing step row so edits keep the
    row's identity (and the responses that reference it).
    """

    step_name: str
    role_id: UUID
    step_order: int | None = None
    is_required: bool = True
    can_override: bool = False
    override_min_level: int | None = None
    step_id: UUID | None = None


# =========================================================================
# Requests and responses
# =========================================================================


@dataclass(frozen=True)
class ApprovalResponseRecord:
    """Immutable record of one decision against one step."""

    response_id: UUID
    request_id: UUID
    step_id: UUID
    step_order: int
    responded_by_id: UUID
    status: ResponseStatus
    is_override: bool
    responded_at: datetime
    comments: str | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Live instance of a workflow template applied to one governed entity."""

    request_id: UUID
    workflow_id: UUID
    entity_type: str
    entity_id: UUID
    requested_by_id: UUID
    current_step_order: int
    status: ApprovalStatus
    created_at: datetime
    property_id: UUID | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    is_overridden: bool = False
    overridden_by_id: UUID | None = None
    overridden_at: datetime | None = None
    responses: tuple[ApprovalResponseRecord, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_APPROVAL_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES


class StepState(str, Enum):
    """Rendering state of a step within one request."""

    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CURRENT = "CURRENT"
    WAITING = "WAITING"
    NOT_REACHED = "NOT_REACHED"


@dataclass(frozen=True)
class StepProgress:
    step: ApprovalStepDef
    state: StepState
    response: ApprovalResponseRecord | None = None


@dataclass(frozen=True)
class RequestHistory:
    """A request together with its per-step progress and response history."""

    request: ApprovalRequest
    workflow: WorkflowTemplate
    steps: tuple[StepProgress, ...] = field(default_factory=tuple)

    @property
    def next_approver(self) -> str | None:
        for progress in self.steps:
            if progress.state == StepState.CURRENT:
                return progress.step.role.name
        return None


def build_step_progress(
    request: ApprovalRequest,
    workflow: WorkflowTemplate,
) -> tuple[StepProgress, ...]:
    """Derive the per-step rendering state from a request and its template."""
    by_step = {r.step_id: r for r in request.responses}
    progress: list[StepProgress] = []
    for step in workflow.steps:
        response = by_step.get(step.step_id)
        if response is not None:
            state = (
                StepState.REJECTED
                if response.status == ResponseStatus.REJECTED
                else StepState.COMPLETED
            )
        elif request.is_open and step.step_order == request.current_step_order:
            state = StepState.CURRENT
        elif request.is_open and step.step_order > request.current_step_order:
            state = StepState.WAITING
        else:
            state = StepState.NOT_REACHED
        progress.append(StepProgress(step=step, state=state, response=response))
    return tuple(progress)

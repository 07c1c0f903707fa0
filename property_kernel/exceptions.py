"""
Typed Exception Hierarchy for the Property Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval flows surface their failures to a UI that must show a message and
decide whether to refresh, correct input, or escalate to an administrator.
Parsing message strings for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        processor.respond(request_id, actor, ApprovalDecision.REJECTED, "")
    except CommentsRequiredForRejectionError as e:
        return {"success": False, "error": str(e), "code": e.code}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PropertyKernelError:

    PropertyKernelError (base)
    |
    +-- WorkflowConfigurationError
    |   +-- NoActiveWorkflowError
    |   +-- WorkflowHasNoStepsError
    |   +-- InvalidStepOrderError
    |   +-- MultipleActiveWorkflowsError
    |   +-- WorkflowNotFoundError
    |   +-- WorkflowInUseError
    |   +-- DuplicateWorkflowNameError
    |   +-- ApprovalStepNotFoundError
    |
    +-- ApprovalAuthorizationError
    |   +-- UnauthorizedApproverError
    |   +-- RoleNotFoundError
    |   +-- CancellationNotAllowedError
    |
    +-- ApprovalValidationError
    |   +-- CommentsRequiredForRejectionError
    |   +-- InvalidDecisionError
    |   +-- InvalidEntityReferenceError
    |   +-- PropertyNotAvailableError
    |   +-- UnsupportedEntityTypeError
    |
    +-- ApprovalStateError
    |   +-- ApprovalRequestNotFoundError
    |   +-- RequestNotPendingError
    |   |   +-- RequestNotCancellableError
    |   +-- InvalidApprovalTransitionError
    |   +-- TransactionNotFoundError
    |   +-- TransactionNotCompletableError
    |
    +-- ConcurrencyError
    |   +-- StepAlreadyAnsweredError
    |   +-- EntityAlreadyInApprovalProcessError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                               | When Raised
----------------|------------------------------------|------------------------------------
Configuration   | NO_ACTIVE_WORKFLOW                 | No active template for entity type
                | WORKFLOW_HAS_NO_STEPS              | Active template has zero steps
                | INVALID_STEP_ORDER                 | Step orders not contiguous 1..N
                | MULTIPLE_ACTIVE_WORKFLOWS          | Second active template for a type
                | WORKFLOW_NOT_FOUND                 | Template ID doesn't exist
                | WORKFLOW_IN_USE                    | Edit/delete blocked by requests
                | DUPLICATE_WORKFLOW_NAME            | Template name already taken
                | APPROVAL_STEP_NOT_FOUND            | Current step missing (integrity)
----------------|------------------------------------|------------------------------------
Authorization   | UNAUTHORIZED                       | Actor fails the step authority check
                | ROLE_NOT_FOUND                     | Acting role ID doesn't exist
                | CANCELLATION_NOT_ALLOWED           | Actor is not the requester
----------------|------------------------------------|------------------------------------
Validation      | COMMENTS_REQUIRED_FOR_REJECTION    | REJECTED without comments
                | INVALID_DECISION                   | Decision is not APPROVED/REJECTED
                | INVALID_ENTITY_REFERENCE           | Dangling property/unit/bank id
                | PROPERTY_NOT_AVAILABLE             | Property status forbids movement
                | UNSUPPORTED_ENTITY_TYPE            | No adapter for the entity type
----------------|------------------------------------|------------------------------------
State           | APPROVAL_REQUEST_NOT_FOUND         | Request ID doesn't exist
                | REQUEST_NOT_PENDING                | Request already terminal
                | REQUEST_NOT_CANCELLABLE            | Cancel on a terminal request
                | INVALID_APPROVAL_TRANSITION        | Status change not in table
                | TRANSACTION_NOT_FOUND              | Governed entity doesn't exist
                | TRANSACTION_NOT_COMPLETABLE        | Completion before approval
----------------|------------------------------------|------------------------------------
Concurrency     | STEP_ALREADY_ANSWERED              | Racing response lost the CAS
                | ENTITY_ALREADY_IN_APPROVAL_PROCESS | Open request already exists
                | OPTIMISTIC_LOCK_CONFLICT           | Concurrent modification detected
----------------|------------------------------------|------------------------------------
Immutability    | IMMUTABILITY_VIOLATION             | Modifying an append-only record

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY code CLASS ATTRIBUTE (not instance)?
   Codes are static per exception type, so RequestNotPendingError.code is
   usable without instantiation.

3. WHY SEPARATE ERROR CATEGORIES?
   - WorkflowConfigurationError -> "contact your administrator"
   - ApprovalAuthorizationError -> shown to the actor, not retried
   - ConcurrencyError -> client refreshes instead of retrying blindly

===============================================================================
"""

_CONTACT_ADMIN = "Please contact your administrator."


class PropertyKernelError(Exception):
    """
    Base exception for all property kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROPERTY_KERNEL_ERROR"


# Workflow configuration exceptions


class WorkflowConfigurationError(PropertyKernelError):
    """Base exception for workflow template configuration errors."""

    code: str = "WORKFLOW_CONFIGURATION_ERROR"


class NoActiveWorkflowError(WorkflowConfigurationError):
    """No active workflow template exists for the entity type."""

    code: str = "NO_ACTIVE_WORKFLOW"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(
            f"No approval workflow found for {entity_type}. {_CONTACT_ADMIN}"
        )


class WorkflowHasNoStepsError(WorkflowConfigurationError):
    """The active workflow template has no steps configured."""

    code: str = "WORKFLOW_HAS_NO_STEPS"

    def __init__(self, workflow_id: str, workflow_name: str):
        self.workflow_id = workflow_id
        self.workflow_name = workflow_name
        super().__init__(
            f"Approval workflow '{workflow_name}' has no steps configured. "
            f"{_CONTACT_ADMIN}"
        )


class InvalidStepOrderError(WorkflowConfigurationError):
    """Step orders do not form the contiguous sequence 1..N."""

    code: str = "INVALID_STEP_ORDER"

    def __init__(self, step_orders: list[int], reason: str):
        self.step_orders = step_orders
        self.reason = reason
        super().__init__(f"Invalid step order {step_orders}: {reason}")


class MultipleActiveWorkflowsError(WorkflowConfigurationError):
    """Activating a template would leave two active templates for one type."""

    code: str = "MULTIPLE_ACTIVE_WORKFLOWS"

    def __init__(self, entity_type: str, active_workflow_id: str):
        self.entity_type = entity_type
        self.active_workflow_id = active_workflow_id
        super().__init__(
            f"Workflow {active_workflow_id} is already active for {entity_type}; "
            "deactivate it first"
        )


class WorkflowNotFoundError(WorkflowConfigurationError):
    """Workflow template with given ID was not found."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Approval workflow not found: {workflow_id}")


class WorkflowInUseError(WorkflowConfigurationError):
    """Template edit or deletion blocked by referencing requests."""

    code: str = "WORKFLOW_IN_USE"

    def __init__(self, workflow_id: str, request_count: int, reason: str):
        self.workflow_id = workflow_id
        self.request_count = request_count
        self.reason = reason
        super().__init__(
            f"Approval workflow {workflow_id} is referenced by "
            f"{request_count} request(s): {reason}"
        )


class DuplicateWorkflowNameError(WorkflowConfigurationError):
    """A workflow template with this name already exists."""

    code: str = "DUPLICATE_WORKFLOW_NAME"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"An approval workflow named '{name}' already exists")


class ApprovalStepNotFoundError(WorkflowConfigurationError):
    """
    The request's current step does not exist in its template.

    This is a data-integrity failure and is never retried.
    """

    code: str = "APPROVAL_STEP_NOT_FOUND"

    def __init__(self, request_id: str, workflow_id: str, step_order: int):
        self.request_id = request_id
        self.workflow_id = workflow_id
        self.step_order = step_order
        super().__init__(
            f"Approval request {request_id} points at step {step_order} "
            f"which does not exist in workflow {workflow_id}. {_CONTACT_ADMIN}"
        )


# Authorization exceptions


class ApprovalAuthorizationError(PropertyKernelError):
    """Base exception for actor authority failures."""

    code: str = "APPROVAL_AUTHORIZATION_ERROR"


class UnauthorizedApproverError(ApprovalAuthorizationError):
    """Actor's role may not respond to the current step."""

    code: str = "UNAUTHORIZED"

    def __init__(self, request_id: str, role_name: str, step_order: int, reason: str):
        self.request_id = request_id
        self.role_name = role_name
        self.step_order = step_order
        self.reason = reason
        super().__init__(
            f"You are not authorized to respond to step {step_order} "
            f"of this request: {reason}"
        )


class RoleNotFoundError(ApprovalAuthorizationError):
    """Role with given ID was not found."""

    code: str = "ROLE_NOT_FOUND"

    def __init__(self, role_id: str):
        self.role_id = role_id
        super().__init__(f"Role not found: {role_id}")


class CancellationNotAllowedError(ApprovalAuthorizationError):
    """Only the requester may cancel an approval request."""

    code: str = "CANCELLATION_NOT_ALLOWED"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__("Only the requester can cancel this approval request")


# Validation exceptions


class ApprovalValidationError(PropertyKernelError):
    """Base exception for caller-correctable input errors."""

    code: str = "APPROVAL_VALIDATION_ERROR"


class CommentsRequiredForRejectionError(ApprovalValidationError):
    """A REJECTED response was submitted without comments."""

    code: str = "COMMENTS_REQUIRED_FOR_REJECTION"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__("Comments are required when rejecting a request")


class InvalidDecisionError(ApprovalValidationError):
    """Decision is not one an actor may submit."""

    code: str = "INVALID_DECISION"

    def __init__(self, decision: str):
        self.decision = decision
        super().__init__(f"Invalid approval decision: {decision}")


class InvalidEntityReferenceError(ApprovalValidationError):
    """A referenced property, business unit, or bank is missing or inactive."""

    code: str = "INVALID_ENTITY_REFERENCE"

    def __init__(self, reference_type: str, reference_id: str | None, reason: str):
        self.reference_type = reference_type
        self.reference_id = reference_id
        self.reason = reason
        super().__init__(f"Invalid {reference_type} {reference_id}: {reason}")


class PropertyNotAvailableError(ApprovalValidationError):
    """Property status does not allow the requested movement."""

    code: str = "PROPERTY_NOT_AVAILABLE"

    def __init__(self, property_id: str, status: str, allowed: list[str]):
        self.property_id = property_id
        self.status = status
        self.allowed = allowed
        super().__init__(
            f"Property {property_id} has status {status}; "
            f"expected one of {', '.join(allowed)}"
        )


class UnsupportedEntityTypeError(ApprovalValidationError):
    """No governed-entity adapter is registered for the entity type."""

    code: str = "UNSUPPORTED_ENTITY_TYPE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Entity type {entity_type} has no approval adapter")


# Request / transaction state exceptions


class ApprovalStateError(PropertyKernelError):
    """Base exception for lifecycle state errors."""

    code: str = "APPROVAL_STATE_ERROR"


class ApprovalRequestNotFoundError(ApprovalStateError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class RequestNotPendingError(ApprovalStateError):
    """Request is terminal and accepts no further responses."""

    code: str = "REQUEST_NOT_PENDING"

    def __init__(self, request_id: str, status: str, message: str | None = None):
        self.request_id = request_id
        self.status = status
        super().__init__(
            message
            or f"Approval request {request_id} is no longer pending (status: {status})"
        )


class RequestNotCancellableError(RequestNotPendingError):
    """Only PENDING or IN_PROGRESS requests can be cancelled."""

    code: str = "REQUEST_NOT_CANCELLABLE"

    def __init__(self, request_id: str, status: str):
        super().__init__(
            request_id,
            status,
            f"Approval request {request_id} cannot be cancelled (status: {status})",
        )


class InvalidApprovalTransitionError(ApprovalStateError):
    """Status change is not permitted by the transition table."""

    code: str = "INVALID_APPROVAL_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid approval transition: {from_status} -> {to_status}")


class TransactionNotFoundError(ApprovalStateError):
    """Governed property transaction was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class TransactionNotCompletableError(ApprovalStateError):
    """Governed transaction is not in a status that allows completion."""

    code: str = "TRANSACTION_NOT_COMPLETABLE"

    def __init__(self, entity_type: str, entity_id: str, status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        super().__init__(
            f"{entity_type} {entity_id} cannot be completed from status {status}"
        )


# Concurrency exceptions


class ConcurrencyError(PropertyKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StepAlreadyAnsweredError(ConcurrencyError):
    """The step was answered by another actor; the client should refresh."""

    code: str = "STEP_ALREADY_ANSWERED"

    def __init__(self, request_id: str, step_order: int):
        self.request_id = request_id
        self.step_order = step_order
        super().__init__(
            f"Step {step_order} of approval request {request_id} has already "
            "been answered; refresh and try again"
        )


class EntityAlreadyInApprovalProcessError(ConcurrencyError):
    """An open transaction or request already exists for the entity."""

    code: str = "ENTITY_ALREADY_IN_APPROVAL_PROCESS"

    def __init__(self, entity_type: str, entity_id: str, existing_status: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.existing_status = existing_status
        suffix = f" (status: {existing_status})" if existing_status else ""
        super().__init__(
            f"{entity_type} {entity_id} already has a transaction in the "
            f"approval process{suffix}"
        )


class OptimisticLockError(ConcurrencyError):
    """A conditional update found the row already changed by another writer."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "it was modified by another transaction; refresh and try again"
        )


# Immutability exceptions


class ImmutabilityError(PropertyKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Approval responses and audit events are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )

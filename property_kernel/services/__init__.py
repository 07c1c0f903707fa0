"""Services for the property kernel (write side)."""

from property_kernel.services.approval_service import ApprovalService, RequestTransitionListener
from property_kernel.services.approval_workflow import (
    PERSISTENCE_FAILURE,
    ApprovalWorkflow,
    OperationResult,
    WorkflowServices,
    build_services,
)
from property_kernel.services.auditor_service import AuditorService
from property_kernel.services.entity_sync import (
    EntityStateSynchronizer,
    GovernedEntityAdapter,
    TransactionSnapshot,
)
from property_kernel.services.step_response import StepResponseProcessor
from property_kernel.services.workflow_store import WorkflowDefinitionStore

__all__ = [
    "PERSISTENCE_FAILURE",
    "ApprovalService",
    "ApprovalWorkflow",
    "AuditorService",
    "EntityStateSynchronizer",
    "GovernedEntityAdapter",
    "OperationResult",
    "RequestTransitionListener",
    "StepResponseProcessor",
    "TransactionSnapshot",
    "WorkflowDefinitionStore",
    "WorkflowServices",
    "build_services",
]

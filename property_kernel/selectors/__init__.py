"""Read-only query selectors over approval requests and workflow templates."""

from property_kernel.selectors.approval_selector import (
    ApprovalRequestSelector,
    Page,
    RequestFilter,
    RequestStats,
)
from property_kernel.selectors.workflow_selector import (
    WorkflowSelector,
    WorkflowStatistics,
)

__all__ = [
    "ApprovalRequestSelector",
    "Page",
    "RequestFilter",
    "RequestStats",
    "WorkflowSelector",
    "WorkflowStatistics",
]

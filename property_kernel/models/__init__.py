"""SQLAlchemy ORM models for the property kernel."""

from property_kernel.models.approval import ApprovalRequestModel, ApprovalResponseModel
from property_kernel.models.audit_event import AuditAction, AuditEvent
from property_kernel.models.organization import Bank, BusinessUnit, Role
from property_kernel.models.property import Property, PropertyMovement
from property_kernel.models.transactions import (
    GovernedTransaction,
    PropertyRelease,
    PropertyReturn,
    PropertyTurnover,
)
from property_kernel.models.workflow import ApprovalStepModel, ApprovalWorkflowModel

__all__ = [
    "ApprovalRequestModel",
    "ApprovalResponseModel",
    "ApprovalStepModel",
    "ApprovalWorkflowModel",
    "AuditAction",
    "AuditEvent",
    "Bank",
    "BusinessUnit",
    "GovernedTransaction",
    "Property",
    "PropertyMovement",
    "PropertyRelease",
    "PropertyReturn",
    "PropertyTurnover",
    "Role",
]

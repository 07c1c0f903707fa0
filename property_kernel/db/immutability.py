"""
ORM-Level Immutability Enforcement.

Approval responses and audit events are append-only records: once flushed,
they are never updated or deleted.  SQLAlchemy fires ``before_update`` and
``before_delete`` mapper events before any SQL reaches the database; the
listeners here raise ImmutabilityViolationError from those hooks, aborting
the flush.

    session.flush()
         |
         v
    [before_update / before_delete] --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

PROTECTED ENTITIES

Entity                  | When Immutable         | Why
------------------------|------------------------|--------------------------------
ApprovalResponseModel   | ALWAYS (from creation) | Decision trail of every request
AuditEvent              | ALWAYS (from creation) | Audit trail

USAGE

Registered by ``init_engine_from_url()``; tests register them in conftest.
To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event

from property_kernel.exceptions import ImmutabilityViolationError
from property_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "record_type": entity_type,
            "record_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_response_immutability(mapper, connection, target):
    _block(
        "ApprovalResponse",
        target,
        "UPDATE",
        "Approval responses are immutable and cannot be modified",
    )


def _check_response_delete(mapper, connection, target):
    _block(
        "ApprovalResponse",
        target,
        "DELETE",
        "Approval responses cannot be deleted",
    )


def _check_audit_event_immutability(mapper, connection, target):
    _block(
        "AuditEvent",
        target,
        "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


def _listeners():
    from property_kernel.models.approval import ApprovalResponseModel
    from property_kernel.models.audit_event import AuditEvent

    return (
        (ApprovalResponseModel, "before_update", _check_response_immutability),
        (ApprovalResponseModel, "before_delete", _check_response_delete),
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already attached are not attached twice.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)

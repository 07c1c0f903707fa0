"""
property_kernel.services.entity_sync -- Entity State Synchronizer.

Responsibility:
    Keeps the governed property transaction (release, turnover, return)
    and its property in step with the approval request that governs it.
    Opens the transaction (validating references, snapshotting the
    property, marking it UNDER_REVIEW, writing the open movement), mirrors
    every request transition, and performs the physical completion or
    cancellation once the request is decided.

Architecture position:
    Kernel > Services.  Registered as the request transition listener of
    ``ApprovalService`` so every request status change is mirrored inside
    the same database transaction.

Invariants enforced:
    - A property has at most one open transaction (PENDING, IN_PROGRESS,
      APPROVED) across all three kinds, checked under a row lock on the
      property.
    - The property's status and custody location before the request are
      snapshotted on the transaction and restored on REJECTED, CANCELLED,
      or EXPIRED.
    - Completion is allowed only from APPROVED.
    - Every opened movement is closed with exactly one outcome.

Failure modes:
    - UnsupportedEntityTypeError for entity types without an adapter.
    - InvalidEntityReferenceError for a missing or inactive property,
      business unit, or bank.
    - PropertyNotAvailableError when the property status forbids the move.
    - EntityAlreadyInApprovalProcessError for a second open transaction.
    - TransactionNotFoundError / TransactionNotCompletableError.

Audit relevance:
    Transaction creation, mirrored transitions, completion, and
    cancellation each write an audit event against the transaction.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from property_kernel.domain.approval import ApprovalRequest, ApprovalStatus, EntityType
from property_kernel.domain.clock import Clock, SystemClock
from property_kernel.domain.property import (
    OPEN_TRANSACTION_STATUSES,
    RELEASABLE_STATUSES,
    RELEASE_DESTINATIONS,
    RETURN_ORIGINS,
    RETURNABLE_STATUSES,
    TURNOVER_STATUSES,
    MovementOutcome,
    MovementType,
    PropertyLocation,
    PropertyStatus,
    ReleaseType,
    ReturnType,
    TransactionStatus,
)
from property_kernel.domain.transactions import (
    ReleasePayload,
    ReturnPayload,
    TransactionPayload,
    TurnoverPayload,
    payload_from_mapping,
)
from property_kernel.exceptions import (
    ApprovalValidationError,
    EntityAlreadyInApprovalProcessError,
    InvalidEntityReferenceError,
    PropertyNotAvailableError,
    TransactionNotCompletableError,
    TransactionNotFoundError,
    UnsupportedEntityTypeError,
)
from property_kernel.logging_config import get_logger
from property_kernel.models.audit_event import AuditAction
from property_kernel.models.organization import Bank, BusinessUnit
from property_kernel.models.property import Property, PropertyMovement
from property_kernel.models.transactions import (
    GovernedTransaction,
    PropertyRelease,
    PropertyReturn,
    PropertyTurnover,
)
from property_kernel.services.auditor_service import AuditorService

logger = get_logger("services.entity_sync")

_OPEN_TXN_VALUES = [s.value for s in OPEN_TRANSACTION_STATUSES]

# Request status -> mirrored transaction status.
_MIRRORED_STATUS: dict[ApprovalStatus, TransactionStatus] = {
    ApprovalStatus.IN_PROGRESS: TransactionStatus.IN_PROGRESS,
    ApprovalStatus.APPROVED: TransactionStatus.APPROVED,
    ApprovalStatus.OVERRIDDEN: TransactionStatus.APPROVED,
    ApprovalStatus.REJECTED: TransactionStatus.REJECTED,
    ApprovalStatus.CANCELLED: TransactionStatus.CANCELLED,
    ApprovalStatus.EXPIRED: TransactionStatus.EXPIRED,
}

_CLOSING_OUTCOME: dict[TransactionStatus, MovementOutcome] = {
    TransactionStatus.REJECTED: MovementOutcome.REJECTED,
    TransactionStatus.CANCELLED: MovementOutcome.CANCELLED,
    TransactionStatus.EXPIRED: MovementOutcome.EXPIRED,
}


@dataclass(frozen=True)
class MovementPlan:
    """Where an opened transaction will move the property."""

    movement_type: MovementType
    from_location: PropertyLocation
    to_location: PropertyLocation
    business_unit_id: UUID | None = None
    bank_id: UUID | None = None


@dataclass(frozen=True)
class TransactionSnapshot:
    """Read-only view of a governed transaction and its property."""

    entity_type: str
    entity_id: UUID
    property_id: UUID
    status: TransactionStatus
    property_status: PropertyStatus
    custody_location: PropertyLocation


# =========================================================================
# Per-kind adapters
# =========================================================================


class GovernedEntityAdapter:
    """
    Knowledge about one kind of governed transaction.

    Subclasses supply the ORM model, the property statuses the kind may be
    opened from, how to build the row and its movement, and where the
    property ends up when the transaction completes.
    """

    entity_type: EntityType
    model: type[GovernedTransaction]
    payload_type: type
    reference_type: str
    noun: str
    allowed_statuses: frozenset[PropertyStatus]

    def coerce(self, payload: TransactionPayload | Mapping[str, Any]) -> TransactionPayload:
        if isinstance(payload, self.payload_type):
            return payload
        if isinstance(payload, Mapping):
            try:
                return payload_from_mapping(self.payload_type, payload)
            except (TypeError, ValueError) as exc:
                raise ApprovalValidationError(
                    f"Invalid {self.noun} payload: {exc}"
                ) from exc
        raise ApprovalValidationError(
            f"Expected a {self.payload_type.__name__} for {self.entity_type.value}"
        )

    def validate_references(self, session: Session, payload, prop: Property) -> None:
        """Hook for kind-specific reference checks."""

    def build(self, payload, prop: Property, actor_id: UUID) -> GovernedTransaction:
        raise NotImplementedError

    def plan_movement(self, txn: GovernedTransaction, prop: Property) -> MovementPlan:
        raise NotImplementedError

    def finalize(self, txn: GovernedTransaction, prop: Property) -> None:
        """Apply the physical destination of a completed transaction."""
        raise NotImplementedError


def _require_active_unit(session: Session, unit_id: UUID | None, label: str) -> None:
    if unit_id is None:
        return
    unit = session.get(BusinessUnit, unit_id)
    if unit is None or not unit.is_active:
        raise InvalidEntityReferenceError(
            label, str(unit_id), "not found or inactive"
        )


class ReleaseAdapter(GovernedEntityAdapter):
    entity_type = EntityType.PROPERTY_RELEASE
    model = PropertyRelease
    payload_type = ReleasePayload
    reference_type = "RELEASE"
    noun = "release"
    allowed_statuses = RELEASABLE_STATUSES

    def validate_references(self, session: Session, payload: ReleasePayload, prop: Property) -> None:
        if payload.release_type == ReleaseType.TO_SUBSIDIARY:
            if payload.business_unit_id is None:
                raise InvalidEntityReferenceError(
                    "business_unit", None, "a subsidiary release needs a business unit"
                )
            _require_active_unit(session, payload.business_unit_id, "business_unit")
        elif payload.release_type == ReleaseType.TO_BANK:
            if payload.bank_id is None:
                raise InvalidEntityReferenceError(
                    "bank", None, "a bank release needs a bank"
                )
            bank = session.get(Bank, payload.bank_id)
            if bank is None or not bank.is_active:
                raise InvalidEntityReferenceError(
                    "bank", str(payload.bank_id), "not found or inactive"
                )

    def build(self, payload: ReleasePayload, prop: Property, actor_id: UUID) -> PropertyRelease:
        return PropertyRelease(
            property_id=prop.id,
            release_type=payload.release_type.value,
            business_unit_id=payload.business_unit_id,
            bank_id=payload.bank_id,
            expected_return_date=payload.expected_return_date,
            purpose_of_release=payload.purpose_of_release,
            received_by_name=payload.received_by_name,
            transmittal_number=payload.transmittal_number,
            notes=payload.notes,
        )

    def plan_movement(self, txn: PropertyRelease, prop: Property) -> MovementPlan:
        movement_type, location, _ = RELEASE_DESTINATIONS[ReleaseType(txn.release_type)]
        return MovementPlan(
            movement_type=movement_type,
            from_location=PropertyLocation(txn.previous_custody_location),
            to_location=location,
            business_unit_id=txn.business_unit_id,
            bank_id=txn.bank_id,
        )

    def finalize(self, txn: PropertyRelease, prop: Property) -> None:
        release_type = ReleaseType(txn.release_type)
        _, location, status = RELEASE_DESTINATIONS[release_type]
        prop.status = status.value
        prop.custody_location = location.value
        if release_type == ReleaseType.TO_BANK:
            prop.bank_id = txn.bank_id


class TurnoverAdapter(GovernedEntityAdapter):
    entity_type = EntityType.PROPERTY_TURNOVER
    model = PropertyTurnover
    payload_type = TurnoverPayload
    reference_type = "TURNOVER"
    noun = "turnover"
    allowed_statuses = TURNOVER_STATUSES

    def validate_references(self, session: Session, payload: TurnoverPayload, prop: Property) -> None:
        _require_active_unit(session, payload.from_business_unit_id, "from_business_unit")
        _require_active_unit(session, payload.to_business_unit_id, "to_business_unit")

    def build(self, payload: TurnoverPayload, prop: Property, actor_id: UUID) -> PropertyTurnover:
        return PropertyTurnover(
            property_id=prop.id,
            turnover_type=payload.turnover_type.value,
            from_business_unit_id=payload.from_business_unit_id or prop.business_unit_id,
            to_business_unit_id=payload.to_business_unit_id,
            purpose=payload.purpose,
            notes=payload.notes,
        )

    def plan_movement(self, txn: PropertyTurnover, prop: Property) -> MovementPlan:
        return MovementPlan(
            movement_type=MovementType.TURNOVER_INTERNAL,
            from_location=PropertyLocation(txn.previous_custody_location),
            to_location=PropertyLocation.SUBSIDIARY_COMPANY,
            business_unit_id=txn.to_business_unit_id,
        )

    def finalize(self, txn: PropertyTurnover, prop: Property) -> None:
        prop.status = PropertyStatus.ACTIVE.value
        prop.custody_location = PropertyLocation.SUBSIDIARY_COMPANY.value
        if txn.to_business_unit_id is not None:
            prop.business_unit_id = txn.to_business_unit_id


class ReturnAdapter(GovernedEntityAdapter):
    entity_type = EntityType.PROPERTY_RETURN
    model = PropertyReturn
    payload_type = ReturnPayload
    reference_type = "RETURN"
    noun = "return"
    allowed_statuses = RETURNABLE_STATUSES

    def validate_references(self, session: Session, payload: ReturnPayload, prop: Property) -> None:
        _require_active_unit(session, payload.business_unit_id, "business_unit")

    def build(self, payload: ReturnPayload, prop: Property, actor_id: UUID) -> PropertyReturn:
        return PropertyReturn(
            property_id=prop.id,
            return_type=payload.return_type.value,
            business_unit_id=payload.business_unit_id,
            returned_by_name=payload.returned_by_name,
            reason_for_return=payload.reason_for_return,
            condition=payload.condition,
            notes=payload.notes,
        )

    def plan_movement(self, txn: PropertyReturn, prop: Property) -> MovementPlan:
        movement_type, origin = RETURN_ORIGINS[ReturnType(txn.return_type)]
        return MovementPlan(
            movement_type=movement_type,
            from_location=origin,
            to_location=PropertyLocation.MAIN_OFFICE,
            business_unit_id=txn.business_unit_id,
        )

    def finalize(self, txn: PropertyReturn, prop: Property) -> None:
        prop.status = PropertyStatus.ACTIVE.value
        prop.custody_location = PropertyLocation.MAIN_OFFICE.value
        prop.bank_id = None


DEFAULT_ADAPTERS: tuple[GovernedEntityAdapter, ...] = (
    ReleaseAdapter(),
    TurnoverAdapter(),
    ReturnAdapter(),
)

_ALL_MODELS: tuple[type[GovernedTransaction], ...] = tuple(a.model for a in DEFAULT_ADAPTERS)


# =========================================================================
# Synchronizer
# =========================================================================


class EntityStateSynchronizer:
    """Mirrors request state onto governed property transactions."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        adapters: tuple[GovernedEntityAdapter, ...] = DEFAULT_ADAPTERS,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._adapters = {a.entity_type.value: a for a in adapters}

    def adapter_for(self, entity_type: EntityType | str) -> GovernedEntityAdapter:
        key = entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnsupportedEntityTypeError(key)
        return adapter

    # =====================================================================
    # Opening
    # =====================================================================

    def open_entity(
        self,
        entity_type: EntityType | str,
        payload: TransactionPayload | Mapping[str, Any],
        requested_by_id: UUID,
        acting_business_unit_id: UUID | None = None,
    ) -> GovernedTransaction:
        """
        Create a PENDING transaction and put its property under review.

        The property row is locked first so two openings for the same
        property serialize on PostgreSQL.
        """
        adapter = self.adapter_for(entity_type)
        data = adapter.coerce(payload)
        prop = self._lock_property(data.property_id)

        if acting_business_unit_id is not None and prop.business_unit_id != acting_business_unit_id:
            raise InvalidEntityReferenceError(
                "property", str(prop.id), "property belongs to another business unit"
            )
        self._ensure_no_open_transaction(prop.id)
        status = PropertyStatus(prop.status)
        if status not in adapter.allowed_statuses:
            raise PropertyNotAvailableError(
                str(prop.id), status.value, sorted(s.value for s in adapter.allowed_statuses)
            )
        adapter.validate_references(self._session, data, prop)

        txn = adapter.build(data, prop, requested_by_id)
        txn.status = TransactionStatus.PENDING.value
        txn.requested_by_id = requested_by_id
        txn.created_by_id = requested_by_id
        txn.previous_property_status = prop.status
        txn.previous_custody_location = prop.custody_location
        self._session.add(txn)
        self._session.flush()

        plan = adapter.plan_movement(txn, prop)
        prop.status = PropertyStatus.UNDER_REVIEW.value
        prop.updated_by_id = requested_by_id
        self._session.add(
            PropertyMovement(
                property_id=prop.id,
                movement_type=plan.movement_type.value,
                from_location=plan.from_location.value,
                to_location=plan.to_location.value,
                business_unit_id=plan.business_unit_id,
                bank_id=plan.bank_id,
                reference_type=adapter.reference_type,
                reference_id=txn.id,
                moved_by_id=requested_by_id,
                movement_date=self._clock.now(),
                notes=self._movement_note(adapter, data.notes),
            )
        )
        self._session.flush()

        self._auditor.record_transaction_created(
            entity_type=adapter.entity_type.value,
            entity_id=txn.id,
            actor_id=requested_by_id,
            property_id=prop.id,
            details={
                "movement_type": plan.movement_type.value,
                "from_location": plan.from_location.value,
                "to_location": plan.to_location.value,
                "previous_property_status": txn.previous_property_status,
            },
        )
        logger.info(
            "governed_entity_opened",
            extra={
                "workflow_entity_type": adapter.entity_type.value,
                "entity_ref": str(txn.id),
                "property_id": str(prop.id),
                "movement_type": plan.movement_type.value,
            },
        )
        return txn

    # =====================================================================
    # Mirroring
    # =====================================================================

    def on_request_transition(
        self,
        request: ApprovalRequest,
        previous_status: ApprovalStatus,
        actor_id: UUID,
    ) -> None:
        """Mirror a request status change onto its governed transaction."""
        target = _MIRRORED_STATUS.get(request.status)
        if target is None:
            return
        adapter = self._adapters.get(request.entity_type)
        if adapter is None:
            logger.debug(
                "transition_not_mirrored",
                extra={"workflow_entity_type": request.entity_type},
            )
            return

        txn = self._load_transaction(adapter, request.entity_id)
        from_status = txn.status
        if from_status == target.value:
            return
        prop = self._lock_property(txn.property_id)
        now = self._clock.now()
        txn.status = target.value
        txn.updated_by_id = actor_id

        if target == TransactionStatus.APPROVED:
            txn.approved_by_id = actor_id
            txn.approved_at = now
        elif target in _CLOSING_OUTCOME:
            txn.closed_at = now
            self._restore_property(txn, prop, actor_id)
            self._close_movement(adapter, txn, _CLOSING_OUTCOME[target], now)
        self._session.flush()

        self._auditor.record_transaction_transition(
            entity_type=adapter.entity_type.value,
            entity_id=txn.id,
            action=AuditAction.TRANSACTION_STATUS_MIRRORED,
            actor_id=actor_id,
            from_status=from_status,
            to_status=target.value,
            property_status=prop.status,
        )
        logger.info(
            "entity_state_synchronized",
            extra={
                "workflow_entity_type": adapter.entity_type.value,
                "entity_ref": str(txn.id),
                "request_status": request.status.value,
                "from_status": from_status,
                "to_status": target.value,
            },
        )

    # =====================================================================
    # Completion and cancellation after approval
    # =====================================================================

    def complete_entity(
        self,
        entity_type: EntityType | str,
        entity_id: UUID,
        actor_id: UUID,
        received_by_id: UUID | None = None,
    ) -> TransactionSnapshot:
        """Carry out an APPROVED transaction: move the property to its destination."""
        adapter = self.adapter_for(entity_type)
        txn = self._load_transaction(adapter, entity_id)
        if txn.status != TransactionStatus.APPROVED.value:
            raise TransactionNotCompletableError(
                adapter.entity_type.value, str(entity_id), txn.status
            )
        prop = self._lock_property(txn.property_id)
        now = self._clock.now()

        txn.status = TransactionStatus.COMPLETED.value
        txn.completed_at = now
        txn.closed_at = now
        txn.received_by_id = received_by_id or actor_id
        txn.updated_by_id = actor_id
        adapter.finalize(txn, prop)
        prop.updated_by_id = actor_id
        self._close_movement(adapter, txn, MovementOutcome.COMPLETED, now)
        self._session.flush()

        self._auditor.record_transaction_transition(
            entity_type=adapter.entity_type.value,
            entity_id=txn.id,
            action=AuditAction.TRANSACTION_COMPLETED,
            actor_id=actor_id,
            from_status=TransactionStatus.APPROVED.value,
            to_status=TransactionStatus.COMPLETED.value,
            property_status=prop.status,
        )
        logger.info(
            "governed_entity_completed",
            extra={
                "workflow_entity_type": adapter.entity_type.value,
                "entity_ref": str(txn.id),
                "property_status": prop.status,
                "custody_location": prop.custody_location,
            },
        )
        return self._snapshot(adapter, txn, prop)

    def cancel_approved_entity(
        self,
        entity_type: EntityType | str,
        entity_id: UUID,
        actor_id: UUID,
    ) -> TransactionSnapshot:
        """
        Abandon an APPROVED transaction before completion.

        Open transactions are cancelled through their request instead, so
        the request and the transaction never disagree.
        """
        adapter = self.adapter_for(entity_type)
        txn = self._load_transaction(adapter, entity_id)
        if txn.status != TransactionStatus.APPROVED.value:
            raise TransactionNotCompletableError(
                adapter.entity_type.value, str(entity_id), txn.status
            )
        prop = self._lock_property(txn.property_id)
        now = self._clock.now()
        txn.status = TransactionStatus.CANCELLED.value
        txn.closed_at = now
        txn.updated_by_id = actor_id
        self._restore_property(txn, prop, actor_id)
        self._close_movement(adapter, txn, MovementOutcome.CANCELLED, now)
        self._session.flush()

        self._auditor.record_transaction_transition(
            entity_type=adapter.entity_type.value,
            entity_id=txn.id,
            action=AuditAction.TRANSACTION_CANCELLED,
            actor_id=actor_id,
            from_status=TransactionStatus.APPROVED.value,
            to_status=TransactionStatus.CANCELLED.value,
            property_status=prop.status,
        )
        logger.info(
            "governed_entity_cancelled",
            extra={
                "workflow_entity_type": adapter.entity_type.value,
                "entity_ref": str(txn.id),
            },
        )
        return self._snapshot(adapter, txn, prop)

    def get_snapshot(self, entity_type: EntityType | str, entity_id: UUID) -> TransactionSnapshot:
        adapter = self.adapter_for(entity_type)
        txn = self._load_transaction(adapter, entity_id)
        prop = self._session.get(Property, txn.property_id)
        return self._snapshot(adapter, txn, prop)

    # =====================================================================
    # Internals
    # =====================================================================

    def _lock_property(self, property_id: UUID) -> Property:
        prop = self._session.execute(
            select(Property)
            .where(Property.id == property_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if prop is None:
            raise InvalidEntityReferenceError("property", str(property_id), "not found")
        return prop

    def _ensure_no_open_transaction(self, property_id: UUID) -> None:
        for model in _ALL_MODELS:
            status = self._session.execute(
                select(model.status).where(
                    model.property_id == property_id,
                    model.status.in_(_OPEN_TXN_VALUES),
                )
            ).scalars().first()
            if status is not None:
                raise EntityAlreadyInApprovalProcessError(
                    "property", str(property_id), status
                )

    def _load_transaction(
        self,
        adapter: GovernedEntityAdapter,
        entity_id: UUID,
    ) -> GovernedTransaction:
        txn = self._session.execute(
            select(adapter.model)
            .where(adapter.model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(adapter.entity_type.value, str(entity_id))
        return txn

    def _restore_property(
        self,
        txn: GovernedTransaction,
        prop: Property,
        actor_id: UUID,
    ) -> None:
        prop.status = txn.previous_property_status
        prop.custody_location = txn.previous_custody_location
        prop.updated_by_id = actor_id

    def _close_movement(
        self,
        adapter: GovernedEntityAdapter,
        txn: GovernedTransaction,
        outcome: MovementOutcome,
        closed_at,
    ) -> None:
        movement = self._session.execute(
            select(PropertyMovement).where(
                PropertyMovement.reference_type == adapter.reference_type,
                PropertyMovement.reference_id == txn.id,
                PropertyMovement.closed_at.is_(None),
            )
        ).scalars().first()
        if movement is None:
            logger.warning(
                "movement_not_found",
                extra={
                    "workflow_entity_type": adapter.entity_type.value,
                    "entity_ref": str(txn.id),
                },
            )
            return
        movement.closed_at = closed_at
        movement.outcome = outcome.value

    @staticmethod
    def _movement_note(adapter: GovernedEntityAdapter, notes: str | None) -> str:
        base = f"Property {adapter.noun} request created - awaiting approval"
        return f"{base}. {notes}" if notes else base

    @staticmethod
    def _snapshot(
        adapter: GovernedEntityAdapter,
        txn: GovernedTransaction,
        prop: Property,
    ) -> TransactionSnapshot:
        return TransactionSnapshot(
            entity_type=adapter.entity_type.value,
            entity_id=txn.id,
            property_id=txn.property_id,
            status=TransactionStatus(txn.status),
            property_status=PropertyStatus(prop.status),
            custody_location=PropertyLocation(prop.custody_location),
        )


__all__ = [
    "DEFAULT_ADAPTERS",
    "EntityStateSynchronizer",
    "GovernedEntityAdapter",
    "MovementPlan",
    "ReleaseAdapter",
    "ReturnAdapter",
    "TransactionSnapshot",
    "TurnoverAdapter",
]

"""
property_kernel.services.workflow_store -- Workflow Definition Store.

Responsibility:
    Persists and retrieves workflow templates (an ordered chain of approval
    steps, each bound to a role) and resolves the single active template
    for an entity type.  All template authoring goes through this service.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.  Called by
    the approval workflow facade and by the configuration bridge.

Invariants enforced:
    - Step orders of every template read exactly 1..N after each write.
    - At most one active template per entity type (service check plus a
      partial unique index).
    - Template names are unique.
    - Step rows referenced by recorded responses are never deleted.
    - Steps are not replaced while open requests reference the template.

Failure modes:
    - NoActiveWorkflowError when no active template exists.
    - WorkflowHasNoStepsError when the active template has zero steps.
    - InvalidStepOrderError on non-contiguous or duplicate orders.
    - MultipleActiveWorkflowsError when an activation would collide.
    - WorkflowInUseError when requests block an edit or a delete.
    - WorkflowNotFoundError / RoleNotFoundError / DuplicateWorkflowNameError.

Audit relevance:
    Every template change writes an ApprovalWorkflow audit event.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from property_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    EntityType,
    StepSpec,
    WorkflowTemplate,
)
from property_kernel.domain.clock import Clock, SystemClock
from property_kernel.domain.workflow_steps import (
    insert_step,
    move_step,
    normalize_explicit,
    remove_step,
    validate_override_policy,
    validate_step_orders,
)
from property_kernel.exceptions import (
    DuplicateWorkflowNameError,
    InvalidStepOrderError,
    MultipleActiveWorkflowsError,
    NoActiveWorkflowError,
    RoleNotFoundError,
    UnsupportedEntityTypeError,
    WorkflowHasNoStepsError,
    WorkflowInUseError,
    WorkflowNotFoundError,
)
from property_kernel.logging_config import get_logger
from property_kernel.models.approval import ApprovalRequestModel, ApprovalResponseModel
from property_kernel.models.audit_event import AuditAction
from property_kernel.models.organization import Role
from property_kernel.models.workflow import ApprovalStepModel, ApprovalWorkflowModel
from property_kernel.services.auditor_service import AuditorService

logger = get_logger("services.workflow_store")

_COPY_SUFFIX = " (Copy)"


def _entity_type_value(entity_type: EntityType | str) -> str:
    try:
        return EntityType(entity_type).value
    except ValueError:
        raise UnsupportedEntityTypeError(str(entity_type)) from None


class WorkflowDefinitionStore:
    """Reads and writes workflow templates."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    # =====================================================================
    # Resolution
    # =====================================================================

    def find_active_template(self, entity_type: EntityType | str) -> WorkflowTemplate:
        """
        Return the single active template for ``entity_type``.

        Raises:
            NoActiveWorkflowError: no active template exists.
            WorkflowHasNoStepsError: the active template has no steps.
            MultipleActiveWorkflowsError: more than one active template
                (only reachable if the partial index was bypassed).
            InvalidStepOrderError: stored steps are not 1..N.
        """
        type_value = _entity_type_value(entity_type)
        models = self._session.execute(
            select(ApprovalWorkflowModel).where(
                ApprovalWorkflowModel.entity_type == type_value,
                ApprovalWorkflowModel.is_active.is_(True),
            )
        ).scalars().all()

        if not models:
            logger.warning(
                "no_active_workflow", extra={"workflow_entity_type": type_value}
            )
            raise NoActiveWorkflowError(type_value)
        if len(models) > 1:
            raise MultipleActiveWorkflowsError(type_value, str(models[0].id))

        template = models[0].to_dto()
        if not template.steps:
            raise WorkflowHasNoStepsError(str(template.workflow_id), template.name)
        validate_step_orders([s.step_order for s in template.steps])
        return template

    def get_template(self, workflow_id: UUID) -> WorkflowTemplate:
        return self._load_model(workflow_id).to_dto()

    # =====================================================================
    # Authoring
    # =====================================================================

    def create_template(
        self,
        name: str,
        entity_type: EntityType | str,
        steps: Sequence[StepSpec],
        actor_id: UUID,
        description: str | None = None,
        is_active: bool = True,
    ) -> WorkflowTemplate:
        """
        Create a template with its steps in one write.

        Explicit step orders must already read 1..N; steps without orders
        are numbered by input position.
        """
        type_value = _entity_type_value(entity_type)
        name = name.strip()
        ordered = normalize_explicit(steps)
        self._ensure_name_available(name)
        self._ensure_roles_exist(ordered)
        if is_active:
            self._ensure_no_other_active(type_value, exclude_id=None)

        model = ApprovalWorkflowModel(
            name=name,
            description=description,
            entity_type=type_value,
            is_active=is_active,
            created_by_id=actor_id,
        )
        self._session.add(model)
        self._session.flush()
        self._write_steps(model, ordered)

        self._auditor.record_workflow_change(
            workflow_id=model.id,
            action=AuditAction.WORKFLOW_CREATED,
            actor_id=actor_id,
            payload={
                "name": name,
                "entity_type": type_value,
                "is_active": is_active,
                "steps": self._step_summary(ordered),
            },
        )
        logger.info(
            "workflow_template_created",
            extra={
                "workflow_id": str(model.id),
                "workflow_name": name,
                "workflow_entity_type": type_value,
                "step_count": len(ordered),
            },
        )
        return model.to_dto()

    def update_template(
        self,
        workflow_id: UUID,
        actor_id: UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        entity_type: EntityType | str | None = None,
        is_active: bool | None = None,
    ) -> WorkflowTemplate:
        """Update template metadata; steps are edited through the step operations."""
        model = self._load_model(workflow_id)
        changes: dict[str, Any] = {}

        if name is not None and name.strip() != model.name:
            name = name.strip()
            self._ensure_name_available(name)
            changes["name"] = {"from": model.name, "to": name}
            model.name = name
        if description is not None and description != model.description:
            changes["description"] = {"from": model.description, "to": description}
            model.description = description

        target_type = (
            _entity_type_value(entity_type) if entity_type is not None else model.entity_type
        )
        target_active = model.is_active if is_active is None else is_active
        if target_type != model.entity_type:
            request_count = self._count_requests(model.id)
            if request_count:
                raise WorkflowInUseError(
                    str(model.id),
                    request_count,
                    "entity type cannot change once requests exist",
                )
            changes["entity_type"] = {"from": model.entity_type, "to": target_type}
        if target_active and (target_type != model.entity_type or not model.is_active):
            self._ensure_no_other_active(target_type, exclude_id=model.id)
        if target_active != model.is_active:
            changes["is_active"] = {"from": model.is_active, "to": target_active}

        model.entity_type = target_type
        model.is_active = target_active
        model.updated_by_id = actor_id
        self._session.flush()

        if changes:
            self._auditor.record_workflow_change(
                workflow_id=model.id,
                action=AuditAction.WORKFLOW_UPDATED,
                actor_id=actor_id,
                payload=changes,
            )
            logger.info(
                "workflow_updated",
                extra={"workflow_id": str(model.id), "changed_fields": sorted(changes)},
            )
        return model.to_dto()

    def replace_steps(
        self,
        workflow_id: UUID,
        steps: Sequence[StepSpec],
        actor_id: UUID,
    ) -> WorkflowTemplate:
        """
        Replace the whole step chain.

        Steps without a ``step_id`` take over the existing rows by position,
        so a template with historical responses can still be re-authored.
        Blocked while any open request uses the template.
        """
        model = self._load_model(workflow_id)
        self._ensure_no_open_requests(model, "steps cannot change while requests are open")
        ordered = normalize_explicit(steps)
        existing = sorted(model.steps, key=lambda s: s.step_order)
        claimed = {s.step_id for s in ordered if s.step_id is not None}
        free_rows = iter(row for row in existing if row.id not in claimed)
        bound: list[StepSpec] = []
        for spec in ordered:
            if spec.step_id is None:
                row = next(free_rows, None)
                spec = replace(spec, step_id=row.id if row is not None else None)
            bound.append(spec)
        return self._save_steps(model, tuple(bound), actor_id, "replace")

    def add_step(
        self,
        workflow_id: UUID,
        step: StepSpec,
        actor_id: UUID,
        position: int | None = None,
    ) -> WorkflowTemplate:
        """Insert a step at 1-based ``position`` (append when omitted)."""
        model = self._load_model(workflow_id)
        self._ensure_no_open_requests(model, "steps cannot change while requests are open")
        specs = insert_step(self._specs_of(model), replace(step, step_id=None), position)
        return self._save_steps(model, specs, actor_id, "add")

    def remove_step(
        self,
        workflow_id: UUID,
        step_order: int,
        actor_id: UUID,
    ) -> WorkflowTemplate:
        """Remove the step at ``step_order`` and close the gap."""
        model = self._load_model(workflow_id)
        self._ensure_no_open_requests(model, "steps cannot change while requests are open")
        specs = remove_step(self._specs_of(model), step_order)
        return self._save_steps(model, specs, actor_id, "remove")

    def move_step(
        self,
        workflow_id: UUID,
        from_order: int,
        to_order: int,
        actor_id: UUID,
    ) -> WorkflowTemplate:
        """Move one step to a new position, shifting the steps in between."""
        model = self._load_model(workflow_id)
        self._ensure_no_open_requests(model, "steps cannot change while requests are open")
        specs = move_step(self._specs_of(model), from_order, to_order)
        return self._save_steps(model, specs, actor_id, "move")

    def reorder_steps(
        self,
        workflow_id: UUID,
        ordered_step_ids: Sequence[UUID],
        actor_id: UUID,
    ) -> WorkflowTemplate:
        """
        Reorder the chain to follow ``ordered_step_ids``.

        The IDs must be a permutation of the template's current steps.
        """
        model = self._load_model(workflow_id)
        self._ensure_no_open_requests(model, "steps cannot change while requests are open")
        by_id = {s.step_id: s for s in self._specs_of(model)}
        if len(ordered_step_ids) != len(by_id) or set(ordered_step_ids) != set(by_id):
            raise InvalidStepOrderError(
                [s.step_order for s in by_id.values()],
                "Reorder must list every step of the workflow exactly once",
            )
        specs = tuple(
            replace(by_id[step_id], step_order=position)
            for position, step_id in enumerate(ordered_step_ids, start=1)
        )
        return self._save_steps(model, specs, actor_id, "reorder")

    def set_active(
        self,
        workflow_id: UUID,
        is_active: bool,
        actor_id: UUID,
    ) -> WorkflowTemplate:
        model = self._load_model(workflow_id)
        if model.is_active == is_active:
            return model.to_dto()
        if is_active:
            if not model.steps:
                raise WorkflowHasNoStepsError(str(model.id), model.name)
            self._ensure_no_other_active(model.entity_type, exclude_id=model.id)
        model.is_active = is_active
        model.updated_by_id = actor_id
        self._session.flush()

        action = AuditAction.WORKFLOW_ACTIVATED if is_active else AuditAction.WORKFLOW_DEACTIVATED
        self._auditor.record_workflow_change(
            workflow_id=model.id,
            action=action,
            actor_id=actor_id,
            payload={"entity_type": model.entity_type, "is_active": is_active},
        )
        logger.info(
            "workflow_activation_changed",
            extra={"workflow_id": str(model.id), "is_active": is_active},
        )
        return model.to_dto()

    def toggle_active(self, workflow_id: UUID, actor_id: UUID) -> WorkflowTemplate:
        model = self._load_model(workflow_id)
        return self.set_active(workflow_id, not model.is_active, actor_id)

    def duplicate_template(
        self,
        workflow_id: UUID,
        actor_id: UUID,
        new_name: str | None = None,
    ) -> WorkflowTemplate:
        """Copy a template and its steps; the copy starts inactive."""
        source = self._load_model(workflow_id)
        name = (new_name or f"{source.name}{_COPY_SUFFIX}").strip()
        specs = tuple(replace(s, step_id=None) for s in self._specs_of(source))
        copy = self.create_template(
            name=name,
            entity_type=source.entity_type,
            steps=specs,
            actor_id=actor_id,
            description=source.description,
            is_active=False,
        )
        self._auditor.record_workflow_change(
            workflow_id=copy.workflow_id,
            action=AuditAction.WORKFLOW_DUPLICATED,
            actor_id=actor_id,
            payload={"source_workflow_id": source.id, "source_name": source.name},
        )
        return copy

    def delete_template(self, workflow_id: UUID, actor_id: UUID) -> None:
        """
        Delete a template that no request has ever used.

        Templates with request history must be deactivated instead.
        """
        model = self._load_model(workflow_id)
        request_count = self._count_requests(model.id)
        if request_count:
            raise WorkflowInUseError(
                str(model.id),
                request_count,
                "templates with approval history cannot be deleted; deactivate it instead",
            )
        payload = {"name": model.name, "entity_type": model.entity_type}
        self._session.delete(model)
        self._session.flush()
        self._auditor.record_workflow_change(
            workflow_id=workflow_id,
            action=AuditAction.WORKFLOW_DELETED,
            actor_id=actor_id,
            payload=payload,
        )
        logger.info("workflow_deleted", extra={"workflow_id": str(workflow_id)})

    # =====================================================================
    # Internals
    # =====================================================================

    def _load_model(self, workflow_id: UUID) -> ApprovalWorkflowModel:
        model = self._session.get(ApprovalWorkflowModel, workflow_id)
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return model

    def _specs_of(self, model: ApprovalWorkflowModel) -> tuple[StepSpec, ...]:
        return tuple(
            StepSpec(
                step_name=row.step_name,
                role_id=row.role_id,
                step_order=row.step_order,
                is_required=row.is_required,
                can_override=row.can_override,
                override_min_level=row.override_min_level,
                step_id=row.id,
            )
            for row in sorted(model.steps, key=lambda s: s.step_order)
        )

    def _save_steps(
        self,
        model: ApprovalWorkflowModel,
        specs: tuple[StepSpec, ...],
        actor_id: UUID,
        operation: str,
    ) -> WorkflowTemplate:
        validate_override_policy(specs)
        self._ensure_roles_exist(specs)
        before = [row.step_order for row in model.steps]
        self._write_steps(model, specs)
        model.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record_workflow_change(
            workflow_id=model.id,
            action=AuditAction.WORKFLOW_STEPS_CHANGED,
            actor_id=actor_id,
            payload={
                "operation": operation,
                "previous_step_count": len(before),
                "steps": self._step_summary(specs),
            },
        )
        logger.info(
            "workflow_steps_changed",
            extra={
                "workflow_id": str(model.id),
                "operation": operation,
                "step_count": len(specs),
            },
        )
        return model.to_dto()

    def _write_steps(
        self,
        model: ApprovalWorkflowModel,
        specs: Sequence[StepSpec],
    ) -> None:
        """
        Apply ``specs`` (already 1..N) to the template's step rows.

        Rows named by ``step_id`` are updated in place; the rest are created.
        Existing rows are first shifted above the target range so the
        UNIQUE(workflow_id, step_order) constraint holds at every flush.
        """
        validate_step_orders([s.step_order for s in specs])
        rows = {row.id: row for row in model.steps}
        keep = {s.step_id for s in specs if s.step_id is not None}
        orphans = [row for row in rows.values() if row.id not in keep]
        self._ensure_steps_unreferenced(model, orphans)

        for row in orphans:
            model.steps.remove(row)
        self._session.flush()

        offset = len(rows) + len(specs) + 1
        for row in model.steps:
            row.step_order += offset
        self._session.flush()

        for spec in specs:
            row = rows.get(spec.step_id) if spec.step_id is not None else None
            if row is None:
                row = ApprovalStepModel(workflow_id=model.id)
                model.steps.append(row)
            row.step_order = spec.step_order
            row.step_name = spec.step_name.strip()
            row.role_id = spec.role_id
            row.is_required = spec.is_required
            row.can_override = spec.can_override
            row.override_min_level = spec.override_min_level
        self._session.flush()
        for row in model.steps:
            self._session.expire(row, ["role"])
        validate_step_orders([row.step_order for row in model.steps])

    def _ensure_steps_unreferenced(
        self,
        model: ApprovalWorkflowModel,
        rows: Sequence[ApprovalStepModel],
    ) -> None:
        if not rows:
            return
        referenced = self._session.execute(
            select(func.count(ApprovalResponseModel.id)).where(
                ApprovalResponseModel.step_id.in_([row.id for row in rows])
            )
        ).scalar_one()
        if referenced:
            raise WorkflowInUseError(
                str(model.id),
                self._count_requests(model.id),
                "steps with recorded responses cannot be removed",
            )

    def _ensure_no_open_requests(self, model: ApprovalWorkflowModel, reason: str) -> None:
        open_count = self._count_requests(model.id, open_only=True)
        if open_count:
            raise WorkflowInUseError(str(model.id), open_count, reason)

    def _count_requests(self, workflow_id: UUID, open_only: bool = False) -> int:
        stmt = select(func.count(ApprovalRequestModel.id)).where(
            ApprovalRequestModel.workflow_id == workflow_id
        )
        if open_only:
            stmt = stmt.where(
                ApprovalRequestModel.status.in_([s.value for s in OPEN_APPROVAL_STATUSES])
            )
        return self._session.execute(stmt).scalar_one()

    def _ensure_name_available(self, name: str) -> None:
        existing = self._session.execute(
            select(ApprovalWorkflowModel.id).where(ApprovalWorkflowModel.name == name)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateWorkflowNameError(name)

    def _ensure_no_other_active(self, entity_type: str, exclude_id: UUID | None) -> None:
        stmt = select(ApprovalWorkflowModel.id).where(
            ApprovalWorkflowModel.entity_type == entity_type,
            ApprovalWorkflowModel.is_active.is_(True),
        )
        if exclude_id is not None:
            stmt = stmt.where(ApprovalWorkflowModel.id != exclude_id)
        active_id = self._session.execute(stmt).scalars().first()
        if active_id is not None:
            raise MultipleActiveWorkflowsError(entity_type, str(active_id))

    def _ensure_roles_exist(self, specs: Sequence[StepSpec]) -> None:
        role_ids = {s.role_id for s in specs}
        found = set(
            self._session.execute(select(Role.id).where(Role.id.in_(role_ids))).scalars()
        )
        for role_id in role_ids - found:
            raise RoleNotFoundError(str(role_id))

    @staticmethod
    def _step_summary(specs: Sequence[StepSpec]) -> list[dict[str, Any]]:
        return [
            {
                "step_order": s.step_order,
                "step_name": s.step_name,
                "role_id": s.role_id,
                "can_override": s.can_override,
            }
            for s in specs
        ]

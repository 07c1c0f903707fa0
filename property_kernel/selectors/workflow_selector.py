"""
Module: property_kernel.selectors.workflow_selector
Responsibility: Read-only listings and statistics over workflow templates.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func, select

from property_kernel.domain.approval import WorkflowTemplate
from property_kernel.models.workflow import ApprovalStepModel, ApprovalWorkflowModel
from property_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class WorkflowStatistics:
    total: int
    active: int
    total_steps: int
    by_entity_type: dict[str, int] = field(default_factory=dict)

    @property
    def inactive(self) -> int:
        return self.total - self.active

    @property
    def average_steps(self) -> float:
        return round(self.total_steps / self.total, 2) if self.total else 0.0


class WorkflowSelector(BaseSelector[ApprovalWorkflowModel]):
    """Queries workflow templates."""

    def list_templates(
        self,
        entity_type: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> list[WorkflowTemplate]:
        """Templates ordered by entity type then name; ``search`` matches name or description."""
        stmt = select(ApprovalWorkflowModel)
        if entity_type is not None:
            stmt = stmt.where(ApprovalWorkflowModel.entity_type == entity_type)
        if is_active is not None:
            stmt = stmt.where(ApprovalWorkflowModel.is_active.is_(is_active))
        if search:
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                func.lower(ApprovalWorkflowModel.name).like(pattern)
                | func.lower(func.coalesce(ApprovalWorkflowModel.description, "")).like(pattern)
            )
        stmt = stmt.order_by(ApprovalWorkflowModel.entity_type, ApprovalWorkflowModel.name)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def get_statistics(self) -> WorkflowStatistics:
        rows = self.session.execute(
            select(
                ApprovalWorkflowModel.entity_type,
                ApprovalWorkflowModel.is_active,
                func.count(ApprovalWorkflowModel.id),
            ).group_by(ApprovalWorkflowModel.entity_type, ApprovalWorkflowModel.is_active)
        ).all()
        total_steps = self.session.execute(
            select(func.count(ApprovalStepModel.id))
        ).scalar_one()

        by_entity_type: dict[str, int] = {}
        total = active = 0
        for entity_type, is_active, count in rows:
            by_entity_type[entity_type] = by_entity_type.get(entity_type, 0) + count
            total += count
            if is_active:
                active += count
        return WorkflowStatistics(
            total=total,
            active=active,
            total_steps=total_steps,
            by_entity_type=by_entity_type,
        )

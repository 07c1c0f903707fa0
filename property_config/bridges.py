"""
Config -> Kernel Bridges.

Functions that convert a ``WorkflowConfigurationSet`` into kernel inputs.
They live in property_config (the producer) because the kernel must NEVER
import property_config.

Usage:
    from property_config import get_active_config
    from property_config.bridges import build_settings, seed_configuration

    config = get_active_config()
    settings = build_settings(config)
    with session_scope() as session:
        seed_configuration(session, config, actor_id)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from property_config.schema import WorkflowConfigurationSet, WorkflowTemplateDef
from property_kernel.domain.approval import StepSpec
from property_kernel.domain.clock import Clock
from property_kernel.domain.settings import ApprovalSettings
from property_kernel.logging_config import get_logger
from property_kernel.models.organization import Bank, BusinessUnit, Role
from property_kernel.models.workflow import ApprovalWorkflowModel
from property_kernel.services.auditor_service import AuditorService
from property_kernel.services.workflow_store import WorkflowDefinitionStore

logger = get_logger("config.bridges")


def build_settings(config: WorkflowConfigurationSet) -> ApprovalSettings:
    return ApprovalSettings(
        administrator_role=config.settings.administrator_role,
        request_timeout_hours=config.settings.request_timeout_hours,
    )


@dataclass
class SeedResult:
    """Names of the rows created by one seeding run; existing rows are skipped."""

    roles: list[str] = field(default_factory=list)
    business_units: list[str] = field(default_factory=list)
    banks: list[str] = field(default_factory=list)
    workflows: list[str] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return (
            len(self.roles)
            + len(self.business_units)
            + len(self.banks)
            + len(self.workflows)
        )


def seed_configuration(
    session: Session,
    config: WorkflowConfigurationSet,
    actor_id: UUID,
    clock: Clock | None = None,
) -> SeedResult:
    """
    Create the roles, business units, banks and workflow templates of
    ``config`` that do not exist yet, matching on name.

    Templates go through ``WorkflowDefinitionStore`` so they get the same
    validation and audit trail as templates authored at runtime.  Flushes
    but does not commit.
    """
    result = SeedResult()

    role_ids: dict[str, UUID] = {
        role.name: role.id for role in session.execute(select(Role)).scalars()
    }
    for role_def in config.roles:
        if role_def.name in role_ids:
            continue
        role = Role(
            name=role_def.name,
            description=role_def.description,
            level=role_def.level,
            created_by_id=actor_id,
        )
        session.add(role)
        session.flush()
        role_ids[role.name] = role.id
        result.roles.append(role.name)

    existing_units = set(session.execute(select(BusinessUnit.name)).scalars())
    for unit_def in config.business_units:
        if unit_def.name in existing_units:
            continue
        session.add(
            BusinessUnit(
                name=unit_def.name,
                code=unit_def.code,
                description=unit_def.description,
                is_active=unit_def.is_active,
                created_by_id=actor_id,
            )
        )
        result.business_units.append(unit_def.name)

    existing_banks = set(session.execute(select(Bank.name)).scalars())
    for bank_def in config.banks:
        if bank_def.name in existing_banks:
            continue
        session.add(
            Bank(
                name=bank_def.name,
                branch=bank_def.branch,
                is_active=bank_def.is_active,
                created_by_id=actor_id,
            )
        )
        result.banks.append(bank_def.name)
    session.flush()

    store = WorkflowDefinitionStore(session, AuditorService(session, clock), clock)
    existing_workflows = set(session.execute(select(ApprovalWorkflowModel.name)).scalars())
    for workflow_def in config.workflows:
        if workflow_def.name in existing_workflows:
            continue
        store.create_template(
            name=workflow_def.name,
            entity_type=workflow_def.entity_type,
            steps=_step_specs(workflow_def, role_ids),
            actor_id=actor_id,
            description=workflow_def.description,
            is_active=workflow_def.is_active,
        )
        result.workflows.append(workflow_def.name)

    logger.info(
        "configuration_seeded",
        extra={
            "config_set_id": config.config_id,
            "checksum": config.checksum,
            "created_count": result.created_count,
        },
    )
    return result


def _step_specs(
    workflow: WorkflowTemplateDef, role_ids: dict[str, UUID]
) -> list[StepSpec]:
    return [
        StepSpec(
            step_name=step.step_name,
            role_id=role_ids[step.role],
            step_order=step.step_order,
            is_required=step.is_required,
            can_override=step.can_override,
            override_min_level=step.override_min_level,
        )
        for step in sorted(workflow.steps, key=lambda s: s.step_order)
    ]

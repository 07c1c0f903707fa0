"""
Configuration Validator (``property_config.validator``).

Responsibility
--------------
Validates a ``WorkflowConfigurationSet`` before it is handed to the kernel
or seeded into a database.

Invariants enforced
-------------------
* Role, business unit, bank and workflow names are unique.
* Every workflow targets a known entity type and has at least one step.
* Step orders of a workflow read exactly 1..N.
* Every step references a declared role.
* Override-capable steps declare a non-negative ``override_min_level``.
* At most one active workflow per entity type.

Failure modes
-------------
* Errors  -> the set MUST NOT be used.
* Warnings  -> the set is usable but should be reviewed (for example an
  administrator role that no declared role carries).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from property_config.schema import WorkflowConfigurationSet
from property_kernel.domain.approval import EntityType
from property_kernel.domain.workflow_steps import is_contiguous


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: WorkflowConfigurationSet) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _check_unique_names(config, result)
    _check_settings(config, result)
    _check_workflows(config, result)
    return result


def _check_unique_names(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    sections = {
        "role": [r.name for r in config.roles],
        "business unit": [b.name for b in config.business_units],
        "bank": [b.name for b in config.banks],
        "workflow": [w.name for w in config.workflows],
    }
    for kind, names in sections.items():
        for name, count in Counter(names).items():
            if count > 1:
                result.add_error(f"Duplicate {kind} name '{name}'")

    for role in config.roles:
        if role.level < 0:
            result.add_error(f"Role '{role.name}' has a negative level")


def _check_settings(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    settings = config.settings
    if settings.request_timeout_hours is not None and settings.request_timeout_hours <= 0:
        result.add_error("settings.request_timeout_hours must be positive")
    if settings.administrator_role and config.role_named(settings.administrator_role) is None:
        result.add_warning(
            f"Administrator role '{settings.administrator_role}' is not declared under roles"
        )


def _check_workflows(
    config: WorkflowConfigurationSet, result: ConfigValidationResult
) -> None:
    known_types = {t.value for t in EntityType}
    declared_roles = {r.name for r in config.roles}
    active_by_type: Counter[str] = Counter()

    for workflow in config.workflows:
        label = f"Workflow '{workflow.name}'"
        if workflow.entity_type not in known_types:
            result.add_error(f"{label}: unknown entity type '{workflow.entity_type}'")
        if not workflow.steps:
            result.add_error(f"{label}: at least one approval step is required")
            continue
        if workflow.is_active:
            active_by_type[workflow.entity_type] += 1

        orders = [s.step_order for s in workflow.steps]
        if len(set(orders)) != len(orders) or not is_contiguous(orders):
            result.add_error(
                f"{label}: step orders {sorted(orders)} must be sequential starting from 1"
            )

        for step in workflow.steps:
            if step.role not in declared_roles:
                result.add_error(
                    f"{label}: step '{step.step_name}' references undeclared role '{step.role}'"
                )
            if step.can_override and step.override_min_level is None:
                result.add_error(
                    f"{label}: step '{step.step_name}' allows override but has no override_min_level"
                )
            if step.override_min_level is not None and step.override_min_level < 0:
                result.add_error(
                    f"{label}: step '{step.step_name}' has a negative override_min_level"
                )

    for entity_type, count in active_by_type.items():
        if count > 1:
            result.add_error(
                f"{count} active workflows declared for entity type '{entity_type}'"
            )

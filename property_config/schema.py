"""
WorkflowConfigurationSet schema.

Defines the human-authored, reviewable source artifact for approval
configuration: the roles that can approve, the workflow templates that
chain them, the reference business units and banks, and the kernel
settings.  YAML fragments are parsed into these types by the loader and
checked by the validator before anything reaches the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Kernel settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KernelSettingsDef:
    """Runtime settings handed to the kernel through ``bridges.build_settings``."""

    administrator_role: str | None = "System Admin"
    request_timeout_hours: int | None = None


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleDef:
    name: str
    description: str | None = None
    level: int = 0


@dataclass(frozen=True)
class BusinessUnitDef:
    name: str
    code: str | None = None
    description: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class BankDef:
    name: str
    branch: str | None = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Workflow templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowStepDef:
    """One step of a template; ``role`` is a role name, resolved at seed time."""

    step_name: str
    role: str
    step_order: int
    is_required: bool = True
    can_override: bool = False
    override_min_level: int | None = None


@dataclass(frozen=True)
class WorkflowTemplateDef:
    name: str
    entity_type: str
    steps: tuple[WorkflowStepDef, ...]
    description: str | None = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Top-level configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfigurationSet:
    """
    The complete configuration artifact.

    ``checksum`` is the SHA-256 of the canonical JSON of the merged source
    fragments; identical YAML always produces an identical checksum.
    """

    config_id: str
    version: int
    settings: KernelSettingsDef
    roles: tuple[RoleDef, ...] = ()
    workflows: tuple[WorkflowTemplateDef, ...] = ()
    business_units: tuple[BusinessUnitDef, ...] = ()
    banks: tuple[BankDef, ...] = ()
    description: str | None = None
    checksum: str = ""

    def role_named(self, name: str) -> RoleDef | None:
        for role in self.roles:
            if role.name == name:
                return role
        return None

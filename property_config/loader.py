"""
Configuration Loader (``property_config.loader``).

Responsibility
--------------
Loads the YAML fragments of one configuration set and parses them into
the frozen ``property_config.schema`` dataclasses.  This is build and test
tooling; runtime callers go through ``property_config.get_active_config()``.

A set is a directory holding ``root.yaml``.  The root may name further
fragment files under ``includes``; list-valued sections of every fragment
(``roles``, ``workflows``, ``business_units``, ``banks``) are concatenated
in include order.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* A fragment that is not a mapping  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from property_config.schema import (
    BankDef,
    BusinessUnitDef,
    KernelSettingsDef,
    RoleDef,
    WorkflowConfigurationSet,
    WorkflowStepDef,
    WorkflowTemplateDef,
)

LIST_SECTIONS = ("roles", "workflows", "business_units", "banks")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def assemble_set_data(set_dir: Path) -> dict[str, Any]:
    """Merge ``root.yaml`` and its includes into one plain dict."""
    root = load_yaml_file(set_dir / "root.yaml")
    merged: dict[str, Any] = {k: v for k, v in root.items() if k != "includes"}
    for section in LIST_SECTIONS:
        merged[section] = list(merged.get(section) or [])

    for include in root.get("includes") or []:
        fragment = load_yaml_file(set_dir / include)
        for section in LIST_SECTIONS:
            merged[section].extend(fragment.get(section) or [])
    return merged


def parse_settings(data: dict[str, Any] | None) -> KernelSettingsDef:
    data = data or {}
    timeout = data.get("request_timeout_hours")
    return KernelSettingsDef(
        administrator_role=data.get("administrator_role", "System Admin"),
        request_timeout_hours=int(timeout) if timeout is not None else None,
    )


def parse_role(data: dict[str, Any]) -> RoleDef:
    return RoleDef(
        name=data["name"],
        description=data.get("description"),
        level=int(data.get("level", 0)),
    )


def parse_step(data: dict[str, Any], position: int) -> WorkflowStepDef:
    """Parse a step; a missing ``step_order`` takes its list position."""
    level = data.get("override_min_level")
    return WorkflowStepDef(
        step_name=data["step_name"],
        role=data["role"],
        step_order=int(data.get("step_order", position)),
        is_required=bool(data.get("is_required", True)),
        can_override=bool(data.get("can_override", False)),
        override_min_level=int(level) if level is not None else None,
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowTemplateDef:
    return WorkflowTemplateDef(
        name=data["name"],
        entity_type=data["entity_type"],
        steps=tuple(
            parse_step(step, position)
            for position, step in enumerate(data.get("steps") or [], start=1)
        ),
        description=data.get("description"),
        is_active=bool(data.get("is_active", True)),
    )


def parse_business_unit(data: dict[str, Any]) -> BusinessUnitDef:
    return BusinessUnitDef(
        name=data["name"],
        code=data.get("code"),
        description=data.get("description"),
        is_active=bool(data.get("is_active", True)),
    )


def parse_bank(data: dict[str, Any]) -> BankDef:
    return BankDef(
        name=data["name"],
        branch=data.get("branch"),
        is_active=bool(data.get("is_active", True)),
    )


def parse_configuration_set(data: dict[str, Any]) -> WorkflowConfigurationSet:
    return WorkflowConfigurationSet(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        description=data.get("description"),
        settings=parse_settings(data.get("settings")),
        roles=tuple(parse_role(r) for r in data.get("roles") or []),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows") or []),
        business_units=tuple(
            parse_business_unit(b) for b in data.get("business_units") or []
        ),
        banks=tuple(parse_bank(b) for b in data.get("banks") or []),
        checksum=compute_checksum(data),
    )


def load_configuration_set(set_dir: Path) -> WorkflowConfigurationSet:
    """Assemble and parse the configuration set rooted at ``set_dir``."""
    return parse_configuration_set(assemble_set_data(set_dir))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; deterministic for equal data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

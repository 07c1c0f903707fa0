"""
property_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a validated, frozen
    ``WorkflowConfigurationSet``.  YAML loading is internal tooling and is
    not exposed to callers.

Architecture position:
    Configuration -- YAML-driven roles, workflow templates, reference data
    and kernel settings.  Sits above ``property_kernel``; the kernel MUST
    NEVER import from ``property_config``.  ``property_config.bridges``
    translates a configuration set into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - A set is returned only after ``validate_configuration`` reports no errors.
    - Same YAML fragments always produce the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the named configuration set does not exist.
    - ``ValueError`` -- validation failures, listed one per line.

Audit relevance:
    Every successful call emits a ``WORKFLOW_CONFIG_TRACE`` log entry with
    the config_id, version, checksum and section counts, tying seeded
    templates back to the configuration version that produced them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from property_config.loader import load_configuration_set
from property_config.schema import WorkflowConfigurationSet
from property_config.validator import validate_configuration

_logger = logging.getLogger("property_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_dir: Path | None = None,
    set_name: str = "default",
) -> WorkflowConfigurationSet:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to the configuration sets directory.
            Defaults to property_config/sets/.
        set_name: Name of the set subdirectory holding ``root.yaml``.

    Raises:
        FileNotFoundError: If the set directory or its root.yaml is missing.
        ValueError: If configuration validation fails.
    """
    set_dir = (config_dir or _DEFAULT_CONFIG_DIR) / set_name
    if not (set_dir / "root.yaml").is_file():
        raise FileNotFoundError(f"Configuration set not found: {set_dir}")

    config_set = load_configuration_set(set_dir)

    validation = validate_configuration(config_set)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set_id": config_set.config_id,
            "config_set_version": config_set.version,
            "checksum": config_set.checksum,
            "role_count": len(config_set.roles),
            "workflow_count": len(config_set.workflows),
            "business_unit_count": len(config_set.business_units),
            "bank_count": len(config_set.banks),
        },
    )
    return config_set


__all__ = ["WorkflowConfigurationSet", "get_active_config"]

"""
Tests for approval configuration loading and validation.

Covers:
- The shipped default set loads, validates and carries every workflow
- includes are merged in order; step_order defaults to list position
- Checksums are deterministic and change with content
- Validation errors block the set; warnings are logged
- Every successful load emits WORKFLOW_CONFIG_TRACE
"""

from pathlib import Path
from textwrap import dedent, indent

import pytest
import yaml

from property_config import get_active_config
from property_config.loader import compute_checksum, load_configuration_set, load_yaml_file
from property_config.validator import validate_configuration
from property_kernel.domain.approval import EntityType


def _write_set(base: Path, root: str, **fragments: str) -> Path:
    set_dir = base / "custom"
    set_dir.mkdir(parents=True, exist_ok=True)
    (set_dir / "root.yaml").write_text(dedent(root))
    for name, body in fragments.items():
        (set_dir / f"{name}.yaml").write_text(dedent(body))
    return base


def _workflow_entry(text: str) -> str:
    """Indent a workflow list item to sit under the root `workflows:` key."""
    return indent(dedent(text), "  ")


MINIMAL_ROOT = dedent(
    """\
    config_id: test-set
    version: 3
    settings:
      administrator_role: System Admin
      request_timeout_hours: 24
    roles:
      - name: System Admin
        level: 4
      - name: Manager
        level: 1
    workflows:
      - name: Release
        entity_type: PROPERTY_RELEASE
        steps:
          - step_name: Manager Approval
            role: Manager
"""
)


# =============================================================================
# Default set
# =============================================================================


class TestDefaultSet:

    def test_loads_and_validates(self):
        config = get_active_config()

        assert config.config_id == "property-approvals-default"
        assert config.settings.administrator_role == "System Admin"
        assert config.settings.request_timeout_hours == 168
        assert validate_configuration(config).is_valid

    def test_one_workflow_per_property_transaction(self):
        config = get_active_config()
        types = {w.entity_type for w in config.workflows}
        assert types == {
            EntityType.PROPERTY_RELEASE.value,
            EntityType.PROPERTY_TURNOVER.value,
            EntityType.PROPERTY_RETURN.value,
        }

    def test_release_chain(self):
        config = get_active_config()
        release = next(w for w in config.workflows if w.entity_type == "PROPERTY_RELEASE")
        assert [s.role for s in release.steps] == ["Supervisor", "Manager", "Approver"]
        assert release.steps[0].can_override
        assert release.steps[0].override_min_level == 2

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(config_dir=tmp_path, set_name="nope")

    def test_emits_config_trace(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "WORKFLOW_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["workflow_count"] == 3


# =============================================================================
# Loader
# =============================================================================


class TestLoader:

    def test_step_order_defaults_to_position(self, tmp_path):
        base = _write_set(tmp_path, MINIMAL_ROOT)
        config = load_configuration_set(base / "custom")
        assert config.version == 3
        assert config.workflows[0].steps[0].step_order == 1

    def test_includes_are_concatenated(self, tmp_path):
        root = MINIMAL_ROOT + "includes:\n  - extra.yaml\n"
        base = _write_set(
            tmp_path,
            root,
            extra="""\
            banks:
              - name: Landbank
                branch: General Santos
            roles:
              - name: Custodian
            """,
        )

        config = load_configuration_set(base / "custom")

        assert [r.name for r in config.roles] == ["System Admin", "Manager", "Custodian"]
        assert config.banks[0].branch == "General Santos"

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="expected a mapping"):
            load_yaml_file(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("roles: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_file(path)

    def test_missing_required_key(self, tmp_path):
        base = _write_set(tmp_path, "version: 1\n")
        with pytest.raises(KeyError):
            load_configuration_set(base / "custom")


class TestChecksum:

    def test_deterministic(self):
        data = {"b": [1, 2], "a": {"x": 1}}
        assert compute_checksum(data) == compute_checksum({"a": {"x": 1}, "b": [1, 2]})

    def test_changes_with_content(self, tmp_path):
        first = load_configuration_set(_write_set(tmp_path / "one", MINIMAL_ROOT) / "custom")
        second = load_configuration_set(
            _write_set(tmp_path / "two", MINIMAL_ROOT.replace("version: 3", "version: 4"))
            / "custom"
        )
        assert first.checksum != second.checksum


# =============================================================================
# Validation
# =============================================================================


class TestValidation:

    def _load(self, tmp_path, root: str):
        return load_configuration_set(_write_set(tmp_path, root) / "custom")

    def test_minimal_set_is_valid(self, tmp_path):
        assert validate_configuration(self._load(tmp_path, MINIMAL_ROOT)).is_valid

    def test_undeclared_role(self, tmp_path):
        config = self._load(tmp_path, MINIMAL_ROOT.replace("role: Manager", "role: Auditor"))
        result = validate_configuration(config)
        assert any("undeclared role 'Auditor'" in e for e in result.errors)

    def test_gap_in_step_orders(self, tmp_path):
        root = MINIMAL_ROOT + _workflow_entry(
            """\
              - name: Turnover
                entity_type: PROPERTY_TURNOVER
                steps:
                  - step_name: First
                    role: Manager
                    step_order: 1
                  - step_name: Third
                    role: Manager
                    step_order: 3
            """
        )
        result = validate_configuration(self._load(tmp_path, root))
        assert any("must be sequential starting from 1" in e for e in result.errors)

    def test_override_without_level(self, tmp_path):
        root = MINIMAL_ROOT.replace(
            "role: Manager\n", "role: Manager\n        can_override: true\n"
        )
        result = validate_configuration(self._load(tmp_path, root))
        assert any("has no override_min_level" in e for e in result.errors)

    def test_two_active_workflows_for_one_type(self, tmp_path):
        root = MINIMAL_ROOT + _workflow_entry(
            """\
              - name: Release Again
                entity_type: PROPERTY_RELEASE
                steps:
                  - step_name: Manager Approval
                    role: Manager
            """
        )
        result = validate_configuration(self._load(tmp_path, root))
        assert any("2 active workflows" in e for e in result.errors)

    def test_unknown_entity_type(self, tmp_path):
        config = self._load(
            tmp_path, MINIMAL_ROOT.replace("PROPERTY_RELEASE", "PROPERTY_SALE")
        )
        result = validate_configuration(config)
        assert any("unknown entity type 'PROPERTY_SALE'" in e for e in result.errors)

    def test_non_positive_timeout(self, tmp_path):
        config = self._load(
            tmp_path, MINIMAL_ROOT.replace("request_timeout_hours: 24", "request_timeout_hours: 0")
        )
        assert "settings.request_timeout_hours must be positive" in validate_configuration(
            config
        ).errors

    def test_invalid_set_is_refused(self, tmp_path):
        base = _write_set(tmp_path, MINIMAL_ROOT.replace("role: Manager", "role: Auditor"))
        with pytest.raises(ValueError, match="Configuration validation failed"):
            get_active_config(config_dir=base, set_name="custom")

    def test_undeclared_admin_role_is_a_warning(self, tmp_path, captured_logs):
        root = MINIMAL_ROOT.replace("administrator_role: System Admin", "administrator_role: Root")
        base = _write_set(tmp_path, root)

        config = get_active_config(config_dir=base, set_name="custom")

        assert config.settings.administrator_role == "Root"
        warnings = [r for r in captured_logs() if r["message"] == "config_validation_warning"]
        assert "Administrator role 'Root'" in warnings[0]["warning"]

"""
Tests for WorkflowDefinitionStore.

Covers:
- Template creation with explicit and positional step orders
- Active template resolution per entity type and its failure modes
- At most one active template per entity type
- Step edits (add, remove, move, reorder, replace) keep orders 1..N
- Edits blocked while requests are open; history-bearing steps kept
- Duplicate, toggle, delete
- Audit trail of template changes
"""

from uuid import uuid4

import pytest

from property_kernel.domain.approval import ApprovalDecision, Actor, EntityType, StepSpec
from property_kernel.exceptions import (
    DuplicateWorkflowNameError,
    InvalidStepOrderError,
    MultipleActiveWorkflowsError,
    NoActiveWorkflowError,
    RoleNotFoundError,
    UnsupportedEntityTypeError,
    WorkflowInUseError,
    WorkflowNotFoundError,
)
from property_kernel.models.audit_event import AuditAction

from tests.conftest import ADMIN_ACTOR_ID, REQUESTER_ID


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def spec(reference_data):
    def _spec(role_name: str, order: int | None = None, **kwargs) -> StepSpec:
        return StepSpec(
            step_name=f"{role_name} Review",
            role_id=reference_data.roles[role_name].role_id,
            step_order=order,
            **kwargs,
        )

    return _spec


@pytest.fixture
def release_workflow(store, spec):
    return store.create_template(
        name="Property Release Approval",
        entity_type=EntityType.PROPERTY_RELEASE,
        steps=[spec("Supervisor"), spec("Manager"), spec("Approver")],
        actor_id=ADMIN_ACTOR_ID,
    )


def _step_names(template) -> list[str]:
    return [s.step_name for s in template.steps]


def _open_request(services, template, reference_data, key="main-1"):
    txn = services.synchronizer.open_entity(
        EntityType.PROPERTY_RELEASE,
        {"property_id": reference_data.properties[key], "release_type": "TO_EXTERNAL"},
        REQUESTER_ID,
    )
    return services.approvals.create_request(
        template, txn.id, REQUESTER_ID, property_id=txn.property_id
    )


# =============================================================================
# Creation and resolution
# =============================================================================


class TestCreateTemplate:

    def test_positional_orders(self, release_workflow):
        assert [s.step_order for s in release_workflow.steps] == [1, 2, 3]
        assert release_workflow.first_approver == "Supervisor"
        assert release_workflow.is_active

    def test_explicit_orders_sorted(self, store, spec):
        template = store.create_template(
            name="Turnover",
            entity_type="PROPERTY_TURNOVER",
            steps=[spec("Approver", 2), spec("Manager", 1)],
            actor_id=ADMIN_ACTOR_ID,
        )
        assert _step_names(template) == ["Manager Review", "Approver Review"]

    def test_gap_in_orders_rejected(self, store, spec):
        with pytest.raises(InvalidStepOrderError, match="sequential starting from 1"):
            store.create_template(
                name="Gappy",
                entity_type=EntityType.PROPERTY_RELEASE,
                steps=[spec("Manager", 1), spec("Approver", 3)],
                actor_id=ADMIN_ACTOR_ID,
            )

    def test_unknown_role_rejected(self, store):
        with pytest.raises(RoleNotFoundError):
            store.create_template(
                name="Ghost",
                entity_type=EntityType.PROPERTY_RELEASE,
                steps=[StepSpec(step_name="Ghost", role_id=uuid4())],
                actor_id=ADMIN_ACTOR_ID,
            )

    def test_duplicate_name_rejected(self, store, spec, release_workflow):
        with pytest.raises(DuplicateWorkflowNameError):
            store.create_template(
                name=" Property Release Approval ",
                entity_type=EntityType.PROPERTY_RETURN,
                steps=[spec("Manager")],
                actor_id=ADMIN_ACTOR_ID,
            )

    def test_second_active_template_rejected(self, store, spec, release_workflow):
        with pytest.raises(MultipleActiveWorkflowsError):
            store.create_template(
                name="Another Release",
                entity_type=EntityType.PROPERTY_RELEASE,
                steps=[spec("Manager")],
                actor_id=ADMIN_ACTOR_ID,
            )

    def test_inactive_template_may_coexist(self, store, spec, release_workflow):
        draft = store.create_template(
            name="Release Draft",
            entity_type=EntityType.PROPERTY_RELEASE,
            steps=[spec("Manager")],
            actor_id=ADMIN_ACTOR_ID,
            is_active=False,
        )
        assert not draft.is_active

    def test_unsupported_entity_type(self, store, spec):
        with pytest.raises(UnsupportedEntityTypeError):
            store.create_template(
                name="Cars",
                entity_type="VEHICLE_RELEASE",
                steps=[spec("Manager")],
                actor_id=ADMIN_ACTOR_ID,
            )

    def test_creation_is_audited(self, services, release_workflow):
        trace = services.auditor.get_trace("ApprovalWorkflow", release_workflow.workflow_id)
        assert trace.actions == (AuditAction.WORKFLOW_CREATED,)
        assert len(trace.entries[0].payload["steps"]) == 3


class TestFindActiveTemplate:

    def test_resolves_active_template(self, store, release_workflow):
        found = store.find_active_template(EntityType.PROPERTY_RELEASE)
        assert found.workflow_id == release_workflow.workflow_id
        assert found.last_step_order == 3

    def test_no_template(self, store):
        with pytest.raises(NoActiveWorkflowError) as exc_info:
            store.find_active_template(EntityType.PROPERTY_RETURN)
        assert exc_info.value.code == "NO_ACTIVE_WORKFLOW"
        assert "administrator" in str(exc_info.value).lower()

    def test_inactive_template_is_not_resolved(self, store, release_workflow):
        store.set_active(release_workflow.workflow_id, False, ADMIN_ACTOR_ID)
        with pytest.raises(NoActiveWorkflowError):
            store.find_active_template(EntityType.PROPERTY_RELEASE)

    def test_unknown_workflow_id(self, store):
        with pytest.raises(WorkflowNotFoundError):
            store.get_template(uuid4())


# =============================================================================
# Step edits
# =============================================================================


class TestStepEdits:

    def test_add_step_in_middle(self, store, spec, release_workflow):
        updated = store.add_step(
            release_workflow.workflow_id, spec("Director"), ADMIN_ACTOR_ID, position=2
        )
        assert _step_names(updated) == [
            "Supervisor Review",
            "Director Review",
            "Manager Review",
            "Approver Review",
        ]
        assert [s.step_order for s in updated.steps] == [1, 2, 3, 4]

    def test_add_override_step_without_level_rejected(self, store, spec, release_workflow):
        with pytest.raises(InvalidStepOrderError, match="no override_min_level"):
            store.add_step(
                release_workflow.workflow_id,
                spec("Director", can_override=True),
                ADMIN_ACTOR_ID,
            )
        assert store.get_template(release_workflow.workflow_id).last_step_order == 3

    def test_add_step_with_negative_override_level_rejected(
        self, store, spec, release_workflow
    ):
        with pytest.raises(InvalidStepOrderError, match="negative override_min_level"):
            store.add_step(
                release_workflow.workflow_id,
                spec("Director", can_override=True, override_min_level=-5),
                ADMIN_ACTOR_ID,
            )
        assert store.get_template(release_workflow.workflow_id).last_step_order == 3

    def test_remove_step_closes_gap(self, store, release_workflow):
        updated = store.remove_step(release_workflow.workflow_id, 1, ADMIN_ACTOR_ID)
        assert _step_names(updated) == ["Manager Review", "Approver Review"]
        assert [s.step_order for s in updated.steps] == [1, 2]

    def test_move_step(self, store, release_workflow):
        updated = store.move_step(release_workflow.workflow_id, 3, 1, ADMIN_ACTOR_ID)
        assert _step_names(updated) == ["Approver Review", "Supervisor Review", "Manager Review"]

    def test_move_keeps_step_identity(self, store, release_workflow):
        ids_before = {s.step_name: s.step_id for s in release_workflow.steps}
        updated = store.move_step(release_workflow.workflow_id, 1, 2, ADMIN_ACTOR_ID)
        assert {s.step_name: s.step_id for s in updated.steps} == ids_before

    def test_reorder_by_step_ids(self, store, release_workflow):
        reversed_ids = [s.step_id for s in reversed(release_workflow.steps)]
        updated = store.reorder_steps(release_workflow.workflow_id, reversed_ids, ADMIN_ACTOR_ID)
        assert [s.step_id for s in updated.steps] == reversed_ids

    def test_reorder_requires_every_step(self, store, release_workflow):
        with pytest.raises(InvalidStepOrderError, match="exactly once"):
            store.reorder_steps(
                release_workflow.workflow_id,
                [release_workflow.steps[0].step_id],
                ADMIN_ACTOR_ID,
            )

    def test_replace_steps(self, store, spec, release_workflow):
        updated = store.replace_steps(
            release_workflow.workflow_id, [spec("Director"), spec("Approver")], ADMIN_ACTOR_ID
        )
        assert _step_names(updated) == ["Director Review", "Approver Review"]
        assert updated.steps[0].step_id == release_workflow.steps[0].step_id

    def test_step_edits_are_audited(self, services, store, release_workflow):
        store.remove_step(release_workflow.workflow_id, 2, ADMIN_ACTOR_ID)
        trace = services.auditor.get_trace("ApprovalWorkflow", release_workflow.workflow_id)
        assert trace.last_action == AuditAction.WORKFLOW_STEPS_CHANGED
        assert trace.entries[-1].payload["operation"] == "remove"

    def test_edit_blocked_while_request_open(
        self, services, store, spec, release_workflow, reference_data
    ):
        _open_request(services, release_workflow, reference_data)
        with pytest.raises(WorkflowInUseError):
            store.add_step(release_workflow.workflow_id, spec("Director"), ADMIN_ACTOR_ID)

    def test_answered_step_cannot_be_removed_after_close(
        self, services, store, release_workflow, reference_data
    ):
        request = _open_request(services, release_workflow, reference_data)
        services.responses.respond(
            request.request_id,
            Actor(uuid4(), reference_data.roles["Supervisor"]),
            ApprovalDecision.REJECTED,
            comments="Title is encumbered",
        )

        with pytest.raises(WorkflowInUseError, match="recorded responses"):
            store.remove_step(release_workflow.workflow_id, 1, ADMIN_ACTOR_ID)
        updated = store.remove_step(release_workflow.workflow_id, 3, ADMIN_ACTOR_ID)
        assert updated.last_step_order == 2


# =============================================================================
# Lifecycle
# =============================================================================


class TestTemplateLifecycle:

    def test_toggle_active(self, store, release_workflow):
        off = store.toggle_active(release_workflow.workflow_id, ADMIN_ACTOR_ID)
        on = store.toggle_active(release_workflow.workflow_id, ADMIN_ACTOR_ID)
        assert not off.is_active
        assert on.is_active

    def test_activation_collision(self, store, spec, release_workflow):
        draft = store.create_template(
            name="Release Draft",
            entity_type=EntityType.PROPERTY_RELEASE,
            steps=[spec("Manager")],
            actor_id=ADMIN_ACTOR_ID,
            is_active=False,
        )
        with pytest.raises(MultipleActiveWorkflowsError):
            store.set_active(draft.workflow_id, True, ADMIN_ACTOR_ID)

    def test_duplicate_starts_inactive(self, services, store, release_workflow):
        copy = store.duplicate_template(release_workflow.workflow_id, ADMIN_ACTOR_ID)
        assert copy.name == "Property Release Approval (Copy)"
        assert not copy.is_active
        assert _step_names(copy) == _step_names(release_workflow)
        assert {s.step_id for s in copy.steps}.isdisjoint(
            {s.step_id for s in release_workflow.steps}
        )
        trace = services.auditor.get_trace("ApprovalWorkflow", copy.workflow_id)
        assert trace.actions == (AuditAction.WORKFLOW_CREATED, AuditAction.WORKFLOW_DUPLICATED)

    def test_update_metadata(self, store, release_workflow):
        updated = store.update_template(
            release_workflow.workflow_id,
            ADMIN_ACTOR_ID,
            name="Release Approval v2",
            description="Three signatures",
        )
        assert updated.name == "Release Approval v2"
        assert updated.description == "Three signatures"

    def test_entity_type_frozen_once_used(self, services, store, release_workflow, reference_data):
        _open_request(services, release_workflow, reference_data)
        with pytest.raises(WorkflowInUseError):
            store.update_template(
                release_workflow.workflow_id,
                ADMIN_ACTOR_ID,
                entity_type=EntityType.PROPERTY_RETURN,
            )

    def test_delete_unused_template(self, store, release_workflow):
        store.delete_template(release_workflow.workflow_id, ADMIN_ACTOR_ID)
        with pytest.raises(WorkflowNotFoundError):
            store.get_template(release_workflow.workflow_id)

    def test_delete_used_template_refused(self, services, store, release_workflow, reference_data):
        _open_request(services, release_workflow, reference_data)
        with pytest.raises(WorkflowInUseError, match="deactivate"):
            store.delete_template(release_workflow.workflow_id, ADMIN_ACTOR_ID)

"""
End-to-end tests for the ApprovalWorkflow boundary operations.

Each operation runs in its own committed transaction; state is read back
through fresh sessions.

Scenarios:
- Happy path: 2-step release, then completion
- Rejection short-circuits a 3-step chain and restores the property
- Rejection without comments changes nothing
- Duplicate request for the same property is blocked
- No active workflow: nothing is persisted
- Override anywhere in the chain yields OVERRIDDEN
- Cancellation by requester and by administrator
- Expiry sweep
- Audit trail and structured logs of one request
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from property_kernel.domain.approval import ApprovalStatus, EntityType, StepState
from property_kernel.domain.property import PropertyLocation, PropertyStatus, TransactionStatus
from property_kernel.exceptions import ApprovalRequestNotFoundError
from property_kernel.models.approval import ApprovalRequestModel, ApprovalResponseModel
from property_kernel.models.audit_event import AuditAction
from property_kernel.models.property import Property, PropertyMovement
from property_kernel.models.transactions import PropertyRelease
from property_kernel.services.approval_workflow import PERSISTENCE_FAILURE
from property_kernel.services.auditor_service import AuditorService

from tests.conftest import REQUESTER_ID


@pytest.fixture
def read(session_factory):
    """Run ``fn(session)`` against a fresh session and return its result."""

    def _read(fn):
        with session_factory() as sess:
            return fn(sess)

    return _read


@pytest.fixture
def property_state(read, reference_data):
    def _state(key: str = "main-1") -> tuple[str, str]:
        prop = read(lambda s: s.get(Property, reference_data.properties[key]))
        return prop.status, prop.custody_location

    return _state


@pytest.fixture
def role_id(reference_data):
    def _role_id(name: str):
        return reference_data.roles[name].role_id

    return _role_id


@pytest.fixture
def create_release(workflow, release_payload):
    def _create(key: str = "main-1", **overrides):
        result = workflow.create_entity_with_approval(
            EntityType.PROPERTY_RELEASE, release_payload(key, **overrides), REQUESTER_ID
        )
        assert result.success, result.error
        return result.data

    return _create


def _count(read, model, **filters) -> int:
    def _q(sess):
        stmt = select(func.count(model.id))
        for name, value in filters.items():
            stmt = stmt.where(getattr(model, name) == value)
        return sess.execute(stmt).scalar_one()

    return read(_q)


# =============================================================================
# Happy path
# =============================================================================


class TestHappyPath:

    def test_two_step_release(
        self, workflow, release_template, create_release, role_id, read, property_state
    ):
        created = create_release()
        assert created["status"] == "PENDING"
        assert created["next_approver"] == "Supervisor"
        assert property_state() == ("UNDER_REVIEW", "MAIN_OFFICE")

        first = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Supervisor"), "APPROVED"
        )
        assert first.success
        assert first.data["new_status"] == "IN_PROGRESS"
        assert first.data["current_step_order"] == 2

        second = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Manager"), "APPROVED", comments="Cleared"
        )
        assert second.success
        assert second.data["new_status"] == "APPROVED"
        assert second.data["is_override"] is False
        assert _count(read, ApprovalResponseModel, request_id=created["request_id"]) == 2

        txn = read(lambda s: s.get(PropertyRelease, created["entity_id"]))
        assert txn.status == TransactionStatus.APPROVED.value

        done = workflow.complete_transaction(
            EntityType.PROPERTY_RELEASE, created["entity_id"], uuid4()
        )
        assert done.success
        assert done.data["status"] == "COMPLETED"
        assert property_state() == (
            PropertyStatus.RELEASED.value,
            PropertyLocation.EXTERNAL_HOLDER.value,
        )

    def test_history_read(self, workflow, release_template, create_release, role_id):
        created = create_release()
        workflow.respond_to_request(created["request_id"], uuid4(), role_id("Supervisor"), "APPROVED")

        history = workflow.get_request_with_history(created["request_id"])

        assert history.request.status == ApprovalStatus.IN_PROGRESS
        assert history.workflow.workflow_id == release_template.workflow_id
        assert [p.state for p in history.steps] == [StepState.COMPLETED, StepState.CURRENT]
        assert history.next_approver == "Manager"

    def test_history_of_unknown_request(self, workflow):
        with pytest.raises(ApprovalRequestNotFoundError):
            workflow.get_request_with_history(uuid4())

    def test_can_respond(self, workflow, release_template, create_release, role_id):
        created = create_release()
        assert workflow.can_respond(created["request_id"], role_id("Supervisor"))
        assert not workflow.can_respond(created["request_id"], role_id("Manager"))
        assert not workflow.can_respond(uuid4(), role_id("Supervisor"))
        assert not workflow.can_respond(created["request_id"], uuid4())


# =============================================================================
# Rejection
# =============================================================================


class TestRejection:

    def test_rejection_short_circuits(self, workflow, make_template, create_release, role_id, property_state):
        make_template(EntityType.PROPERTY_RELEASE, ("Supervisor", "Manager", "Approver"))
        created = create_release()

        result = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Supervisor"), "REJECTED",
            comments="Title is under litigation",
        )

        assert result.data["new_status"] == "REJECTED"
        assert result.data["current_step_order"] == 1
        assert property_state() == ("ACTIVE", "MAIN_OFFICE")
        again = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Manager"), "APPROVED"
        )
        assert again.code == "REQUEST_NOT_PENDING"

    def test_rejection_without_comments(self, workflow, release_template, create_release, role_id, read):
        created = create_release()

        result = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Supervisor"), "REJECTED"
        )

        assert not result.success
        assert result.code == "COMMENTS_REQUIRED_FOR_REJECTION"
        assert _count(read, ApprovalResponseModel, request_id=created["request_id"]) == 0
        request = read(lambda s: s.get(ApprovalRequestModel, created["request_id"]))
        assert request.status == "PENDING"

    def test_unauthorized_response(self, workflow, release_template, create_release, role_id):
        created = create_release()
        result = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Staff"), "APPROVED"
        )
        assert result.code == "UNAUTHORIZED"


# =============================================================================
# Creation failures
# =============================================================================


class TestCreationFailures:

    def test_duplicate_request_for_property(self, workflow, release_template, create_release, release_payload, read):
        create_release()

        second = workflow.create_entity_with_approval(
            EntityType.PROPERTY_RELEASE, release_payload(), REQUESTER_ID
        )

        assert not second.success
        assert second.code == "ENTITY_ALREADY_IN_APPROVAL_PROCESS"
        assert _count(read, ApprovalRequestModel) == 1
        assert _count(read, PropertyRelease) == 1

    def test_no_active_workflow_persists_nothing(self, workflow, release_payload, read, property_state):
        result = workflow.create_entity_with_approval(
            EntityType.PROPERTY_RELEASE, release_payload(), REQUESTER_ID
        )

        assert result.code == "NO_ACTIVE_WORKFLOW"
        assert "contact your administrator" in result.error
        assert _count(read, PropertyRelease) == 0
        assert _count(read, PropertyMovement) == 0
        assert property_state() == ("ACTIVE", "MAIN_OFFICE")

    def test_dangling_bank_reference(self, workflow, release_template, release_payload):
        result = workflow.create_entity_with_approval(
            EntityType.PROPERTY_RELEASE,
            release_payload(release_type="TO_BANK", bank_id=uuid4()),
            REQUESTER_ID,
        )
        assert result.code == "INVALID_ENTITY_REFERENCE"

    def test_unsupported_entity_type(self, workflow, release_payload):
        result = workflow.create_entity_with_approval(
            "DOCUMENT_APPROVAL", release_payload(), REQUESTER_ID
        )
        assert result.code == "UNSUPPORTED_ENTITY_TYPE"

    def test_persistence_failure_is_reported(self, workflow, release_template, release_payload, monkeypatch):
        from sqlalchemy.exc import OperationalError

        from property_kernel.services.approval_service import ApprovalService

        def _boom(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(ApprovalService, "create_request", _boom)

        result = workflow.create_entity_with_approval(
            EntityType.PROPERTY_RELEASE, release_payload(), REQUESTER_ID
        )

        assert result.code == PERSISTENCE_FAILURE


# =============================================================================
# Override
# =============================================================================


class TestOverride:

    def test_override_yields_overridden(self, workflow, make_template, create_release, role_id, read):
        make_template(EntityType.PROPERTY_RELEASE, (("Manager", 2), "Approver"))
        created = create_release()

        first = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Approver"), "APPROVED", is_override=True
        )
        assert first.data["is_override"] is True
        assert first.data["new_status"] == "IN_PROGRESS"

        final = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Approver"), "APPROVED"
        )
        assert final.data["new_status"] == "OVERRIDDEN"
        txn = read(lambda s: s.get(PropertyRelease, created["entity_id"]))
        assert txn.status == TransactionStatus.APPROVED.value

    def test_override_below_minimum_level(self, workflow, make_template, create_release, role_id):
        make_template(EntityType.PROPERTY_RELEASE, (("Manager", 3), "Approver"))
        created = create_release()

        result = workflow.respond_to_request(
            created["request_id"], uuid4(), role_id("Approver"), "APPROVED", is_override=True
        )

        assert result.code == "UNAUTHORIZED"


# =============================================================================
# Cancellation and expiry
# =============================================================================


class TestCancellation:

    def test_requester_cancels(self, workflow, release_template, create_release, property_state):
        created = create_release()

        result = workflow.cancel_request(created["request_id"], REQUESTER_ID, reason="Wrong lot")

        assert result.data["new_status"] == "CANCELLED"
        assert property_state() == ("ACTIVE", "MAIN_OFFICE")

    def test_stranger_cannot_cancel(self, workflow, release_template, create_release, role_id):
        created = create_release()
        result = workflow.cancel_request(created["request_id"], uuid4(), role_id("Manager"))
        assert result.code == "CANCELLATION_NOT_ALLOWED"

    def test_administrator_cancels(self, workflow, release_template, create_release, role_id):
        created = create_release()
        result = workflow.cancel_request(created["request_id"], uuid4(), role_id("System Admin"))
        assert result.success

    def test_cancel_transaction_while_open(self, workflow, release_template, create_release, read):
        created = create_release()

        result = workflow.cancel_transaction(
            EntityType.PROPERTY_RELEASE, created["entity_id"], REQUESTER_ID
        )

        assert result.data["status"] == "CANCELLED"
        request = read(lambda s: s.get(ApprovalRequestModel, created["request_id"]))
        assert request.status == "CANCELLED"

    def test_cancel_transaction_after_approval(
        self, workflow, make_template, create_release, role_id, property_state
    ):
        make_template(EntityType.PROPERTY_RELEASE, ("Approver",))
        created = create_release()
        workflow.respond_to_request(created["request_id"], uuid4(), role_id("Approver"), "APPROVED")

        result = workflow.cancel_transaction(
            EntityType.PROPERTY_RELEASE, created["entity_id"], REQUESTER_ID
        )

        assert result.data["status"] == "CANCELLED"
        assert property_state() == ("ACTIVE", "MAIN_OFFICE")

    def test_complete_unapproved_transaction(self, workflow, release_template, create_release):
        created = create_release()
        result = workflow.complete_transaction(
            EntityType.PROPERTY_RELEASE, created["entity_id"], uuid4()
        )
        assert result.code == "TRANSACTION_NOT_COMPLETABLE"


class TestExpiry:

    def test_sweep_expires_idle_requests(
        self, workflow, release_template, create_release, deterministic_clock, property_state
    ):
        created = create_release()
        deterministic_clock.advance_hours(73)

        result = workflow.expire_stale_requests(uuid4())

        assert result.data["expired"] == [created["request_id"]]
        assert result.data["timeout_hours"] == 72
        assert property_state() == ("ACTIVE", "MAIN_OFFICE")

    def test_no_timeout_configured(self, session_factory, deterministic_clock, reference_data):
        from property_kernel.domain.settings import ApprovalSettings
        from property_kernel.services.approval_workflow import ApprovalWorkflow

        unbounded = ApprovalWorkflow(session_factory, deterministic_clock, ApprovalSettings())

        result = unbounded.expire_stale_requests(uuid4())

        assert result.success
        assert result.data == {"expired": [], "timeout_hours": None}


# =============================================================================
# Audit and logs
# =============================================================================


class TestObservability:

    def test_request_audit_trail(self, workflow, release_template, create_release, role_id, read):
        created = create_release()
        workflow.respond_to_request(created["request_id"], uuid4(), role_id("Supervisor"), "APPROVED")
        workflow.respond_to_request(created["request_id"], uuid4(), role_id("Manager"), "APPROVED")

        trace = read(lambda s: AuditorService(s).get_trace("ApprovalRequest", created["request_id"]))

        assert trace.actions == (
            AuditAction.APPROVAL_REQUESTED,
            AuditAction.APPROVAL_RESPONSE_RECORDED,
            AuditAction.APPROVAL_ADVANCED,
            AuditAction.APPROVAL_RESPONSE_RECORDED,
            AuditAction.APPROVAL_GRANTED,
        )
        assert [e.seq for e in trace.entries] == [1, 2, 3, 4, 5]

    def test_operation_logs_share_correlation_id(
        self, workflow, release_template, create_release, captured_logs
    ):
        create_release()

        records = captured_logs()
        messages = [r["message"] for r in records]
        assert "governed_entity_opened" in messages
        assert "approval_request_created" in messages
        assert "workflow_operation_succeeded" in messages
        correlation_ids = {r.get("correlation_id") for r in records}
        assert len(correlation_ids) == 1

    def test_failure_is_logged_with_code(self, workflow, release_payload, captured_logs):
        workflow.create_entity_with_approval(
            EntityType.PROPERTY_RELEASE, release_payload(), REQUESTER_ID
        )

        failed = [r for r in captured_logs() if r["message"] == "workflow_operation_failed"]
        assert failed[0]["error_code"] == "NO_ACTIVE_WORKFLOW"
        assert failed[0]["operation"] == "create_entity_with_approval"

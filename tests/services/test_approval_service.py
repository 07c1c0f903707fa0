"""
Tests for ApprovalService (Approval Request Lifecycle Manager).

Covers:
- Request creation: PENDING at step 1, audit event, duplicate prevention
- Compare-and-set transitions: stale expected step leaves nothing changed
- Terminal states are absorbing
- Cancellation: requester only (administrator excepted), open requests only
- Expiry sweep: only requests idle past the timeout, restores the property
- Cancel and expiry against a row changed underneath them
"""

from uuid import uuid4

import pytest
from sqlalchemy import select, update

from property_kernel.domain.approval import ApprovalStatus, EntityType
from property_kernel.domain.authority import StepOutcome
from property_kernel.domain.property import PropertyStatus, TransactionStatus
from property_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    CancellationNotAllowedError,
    EntityAlreadyInApprovalProcessError,
    InvalidApprovalTransitionError,
    OptimisticLockError,
    RequestNotCancellableError,
    StepAlreadyAnsweredError,
    WorkflowHasNoStepsError,
)
from property_kernel.models.approval import ApprovalRequestModel
from property_kernel.models.audit_event import AuditAction
from property_kernel.models.property import Property

from tests.conftest import REQUESTER_ID


@pytest.fixture
def open_request(services, release_template, reference_data):
    """Factory: open a TO_EXTERNAL release and its request in the test session."""

    def _open(key: str = "main-1", requested_by_id=REQUESTER_ID):
        txn = services.synchronizer.open_entity(
            EntityType.PROPERTY_RELEASE,
            {"property_id": reference_data.properties[key], "release_type": "TO_EXTERNAL"},
            requested_by_id,
        )
        return services.approvals.create_request(
            release_template, txn.id, requested_by_id, property_id=txn.property_id
        )

    return _open


# =============================================================================
# Creation
# =============================================================================


class TestCreateRequest:

    def test_starts_pending_at_first_step(self, open_request, deterministic_clock):
        request = open_request()
        assert request.status == ApprovalStatus.PENDING
        assert request.current_step_order == 1
        assert request.created_at == deterministic_clock.now()
        assert request.completed_at is None
        assert request.responses == ()

    def test_creation_is_audited(self, services, open_request):
        request = open_request()
        trace = services.auditor.get_trace("ApprovalRequest", request.request_id)
        assert trace.actions == (AuditAction.APPROVAL_REQUESTED,)
        assert trace.entries[0].payload["step_count"] == 2

    def test_template_without_steps(self, services, release_template):
        from dataclasses import replace

        empty = replace(release_template, steps=())
        with pytest.raises(WorkflowHasNoStepsError):
            services.approvals.create_request(empty, uuid4(), REQUESTER_ID)

    def test_second_open_request_for_entity(self, services, open_request, release_template):
        request = open_request()
        with pytest.raises(EntityAlreadyInApprovalProcessError) as exc_info:
            services.approvals.create_request(release_template, request.entity_id, REQUESTER_ID)
        assert exc_info.value.code == "ENTITY_ALREADY_IN_APPROVAL_PROCESS"

    def test_find_open_request(self, services, open_request):
        request = open_request()
        found = services.approvals.find_open_request("PROPERTY_RELEASE", request.entity_id)
        assert found.request_id == request.request_id
        assert services.approvals.find_open_request("PROPERTY_RELEASE", uuid4()) is None

    def test_unknown_request(self, services):
        with pytest.raises(ApprovalRequestNotFoundError):
            services.approvals.get_request(uuid4())


# =============================================================================
# Transitions
# =============================================================================


class TestApplyOutcome:

    def test_advance_moves_to_next_step(self, services, open_request, deterministic_clock):
        request = open_request()
        deterministic_clock.advance(60)
        model = services.approvals.lock_request(request.request_id)

        advanced = services.approvals.apply_outcome(
            model, StepOutcome(ApprovalStatus.IN_PROGRESS, 2), uuid4(), expected_step_order=1
        )

        assert advanced.status == ApprovalStatus.IN_PROGRESS
        assert advanced.current_step_order == 2
        assert advanced.updated_at == deterministic_clock.now()
        assert advanced.completed_at is None

    def test_stale_expected_step_changes_nothing(self, services, open_request):
        request = open_request()
        model = services.approvals.lock_request(request.request_id)

        with pytest.raises(StepAlreadyAnsweredError):
            services.approvals.apply_outcome(
                model, StepOutcome(ApprovalStatus.IN_PROGRESS, 3), uuid4(), expected_step_order=2
            )

        reloaded = services.approvals.get_request(request.request_id)
        assert reloaded.status == ApprovalStatus.PENDING
        assert reloaded.current_step_order == 1

    def test_terminal_sets_completed_at(self, services, open_request, deterministic_clock):
        request = open_request()
        model = services.approvals.lock_request(request.request_id)

        done = services.approvals.apply_outcome(
            model, StepOutcome(ApprovalStatus.APPROVED, 1), uuid4(), expected_step_order=1
        )

        assert done.completed_at == deterministic_clock.now()

    def test_terminal_state_is_absorbing(self, services, open_request):
        request = open_request()
        model = services.approvals.lock_request(request.request_id)
        services.approvals.apply_outcome(
            model, StepOutcome(ApprovalStatus.REJECTED, 1), uuid4(), expected_step_order=1
        )

        with pytest.raises(InvalidApprovalTransitionError):
            services.approvals.apply_outcome(
                model, StepOutcome(ApprovalStatus.APPROVED, 1), uuid4(), expected_step_order=1
            )

    def test_override_marks_request(self, services, open_request):
        request = open_request()
        overrider = uuid4()
        model = services.approvals.lock_request(request.request_id)

        result = services.approvals.apply_outcome(
            model,
            StepOutcome(ApprovalStatus.IN_PROGRESS, 2),
            overrider,
            expected_step_order=1,
            override_by_id=overrider,
        )

        assert result.is_overridden
        assert result.overridden_by_id == overrider


# =============================================================================
# Cancellation
# =============================================================================


class TestCancelRequest:

    def test_requester_cancels(self, services, open_request, reference_data, session):
        request = open_request()

        cancelled = services.approvals.cancel_request(
            request.request_id, REQUESTER_ID, reason="Changed plans"
        )

        assert cancelled.status == ApprovalStatus.CANCELLED
        assert cancelled.completed_at is not None
        prop = session.get(Property, reference_data.properties["main-1"])
        assert prop.status == PropertyStatus.ACTIVE.value
        snapshot = services.synchronizer.get_snapshot(
            EntityType.PROPERTY_RELEASE, request.entity_id
        )
        assert snapshot.status == TransactionStatus.CANCELLED

    def test_other_user_cannot_cancel(self, services, open_request):
        request = open_request()
        with pytest.raises(CancellationNotAllowedError):
            services.approvals.cancel_request(request.request_id, uuid4())

    def test_administrator_may_cancel_for_requester(self, services, open_request):
        request = open_request()
        cancelled = services.approvals.cancel_request(
            request.request_id, uuid4(), is_administrator=True
        )
        assert cancelled.status == ApprovalStatus.CANCELLED

    def test_terminal_request_not_cancellable(self, services, open_request):
        request = open_request()
        services.approvals.cancel_request(request.request_id, REQUESTER_ID)

        with pytest.raises(RequestNotCancellableError) as exc_info:
            services.approvals.cancel_request(request.request_id, REQUESTER_ID)
        assert exc_info.value.code == "REQUEST_NOT_CANCELLABLE"

    def test_cancel_unknown_request(self, services):
        with pytest.raises(ApprovalRequestNotFoundError):
            services.approvals.cancel_request(uuid4(), REQUESTER_ID)

    def test_cancellation_is_audited(self, services, open_request):
        request = open_request()
        services.approvals.cancel_request(request.request_id, REQUESTER_ID, reason="Duplicate")
        trace = services.auditor.get_trace("ApprovalRequest", request.request_id)
        assert trace.last_action == AuditAction.APPROVAL_CANCELLED
        assert trace.entries[-1].payload["reason"] == "Duplicate"


# =============================================================================
# Expiry
# =============================================================================


class TestExpireStaleRequests:

    def test_expires_only_idle_requests(self, services, open_request, deterministic_clock, session):
        stale = open_request("main-1")
        deterministic_clock.advance_hours(50)
        fresh = open_request("main-2")
        deterministic_clock.advance_hours(30)

        expired = services.approvals.expire_stale_requests(
            deterministic_clock.now(), 72, uuid4()
        )

        assert [r.request_id for r in expired] == [stale.request_id]
        assert expired[0].status == ApprovalStatus.EXPIRED
        assert session.get(ApprovalRequestModel, fresh.request_id).status == "PENDING"

    def test_expiry_restores_property(
        self, services, open_request, deterministic_clock, reference_data, session
    ):
        request = open_request("main-1")
        deterministic_clock.advance_hours(100)

        services.approvals.expire_stale_requests(deterministic_clock.now(), 72, uuid4())

        prop = session.get(Property, reference_data.properties["main-1"])
        assert prop.status == PropertyStatus.ACTIVE.value
        snapshot = services.synchronizer.get_snapshot(
            EntityType.PROPERTY_RELEASE, request.entity_id
        )
        assert snapshot.status == TransactionStatus.EXPIRED

    def test_nothing_idle(self, services, open_request, deterministic_clock):
        open_request()
        assert services.approvals.expire_stale_requests(deterministic_clock.now(), 72, uuid4()) == []


# =============================================================================
# Lost races outside step answers
# =============================================================================


def _answer_behind_session(session, request_id):
    """Move the row to step 2 without touching the loaded ORM instance."""
    session.execute(
        update(ApprovalRequestModel)
        .where(ApprovalRequestModel.id == request_id)
        .values(status="IN_PROGRESS", current_step_order=2)
        .execution_options(synchronize_session=False)
    )


def _stored_status(session, request_id) -> str:
    return session.execute(
        select(ApprovalRequestModel.status).where(ApprovalRequestModel.id == request_id)
    ).scalar_one()


class TestConcurrentRowChange:

    def test_cancel_on_changed_row_raises_optimistic_lock(
        self, services, open_request, session, monkeypatch
    ):
        request = open_request()
        stale = services.approvals.lock_request(request.request_id)
        _answer_behind_session(session, request.request_id)
        monkeypatch.setattr(services.approvals, "lock_request", lambda request_id: stale)

        with pytest.raises(OptimisticLockError) as exc_info:
            services.approvals.cancel_request(request.request_id, REQUESTER_ID)

        assert exc_info.value.code == "OPTIMISTIC_LOCK_CONFLICT"
        assert exc_info.value.entity_id == str(request.request_id)
        assert _stored_status(session, request.request_id) == "IN_PROGRESS"

    def test_expiry_skips_changed_row(
        self, services, open_request, deterministic_clock, session, monkeypatch
    ):
        request = open_request()
        deterministic_clock.advance_hours(100)
        stale = services.approvals.lock_request(request.request_id)
        _answer_behind_session(session, request.request_id)
        monkeypatch.setattr(services.approvals, "lock_request", lambda request_id: stale)

        expired = services.approvals.expire_stale_requests(
            deterministic_clock.now(), 72, uuid4()
        )

        assert expired == []
        assert _stored_status(session, request.request_id) == "IN_PROGRESS"

"""
Module: property_kernel.selectors.approval_selector
Responsibility: Read-only queries over approval requests: single request
    with history, filtered and paginated listings, status statistics, and
    the "awaiting my role" queue.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - The pending-for-role queue uses the same authority check as the
      response processor, so a listed request is always answerable.
    - Listings are totally ordered (sort column, then ID) so pagination is
      stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from math import ceil
from uuid import UUID

from sqlalchemy import Select, func, or_, select

from property_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalRequest,
    ApprovalStatus,
    RequestHistory,
    RoleRef,
    build_step_progress,
)
from property_kernel.domain.authority import can_respond
from property_kernel.exceptions import ApprovalRequestNotFoundError
from property_kernel.models.approval import ApprovalRequestModel
from property_kernel.models.property import Property
from property_kernel.models.workflow import ApprovalWorkflowModel
from property_kernel.selectors.base import BaseSelector

_SORTABLE = {
    "created_at": ApprovalRequestModel.created_at,
    "updated_at": ApprovalRequestModel.updated_at,
    "completed_at": ApprovalRequestModel.completed_at,
    "status": ApprovalRequestModel.status,
    "current_step_order": ApprovalRequestModel.current_step_order,
}

MAX_PAGE_SIZE = 100
_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class RequestFilter:
    """Optional listing filters; unset fields do not constrain."""

    status: ApprovalStatus | None = None
    entity_type: str | None = None
    workflow_id: UUID | None = None
    requested_by_id: UUID | None = None
    property_id: UUID | None = None
    business_unit_id: UUID | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None
    open_only: bool = False

    @property
    def needs_property(self) -> bool:
        return self.business_unit_id is not None or bool(self.search)


@dataclass(frozen=True)
class Page:
    items: tuple[ApprovalRequest, ...]
    total_count: int
    current_page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages


@dataclass(frozen=True)
class RequestStats:
    total: int
    by_status: dict[str, int] = field(default_factory=dict)
    by_workflow: dict[str, int] = field(default_factory=dict)
    average_processing_days: float | None = None

    def count(self, status: ApprovalStatus) -> int:
        return self.by_status.get(status.value, 0)

    @property
    def open_count(self) -> int:
        return sum(self.count(s) for s in OPEN_APPROVAL_STATUSES)

    @property
    def pending(self) -> int:
        return self.count(ApprovalStatus.PENDING)

    @property
    def in_progress(self) -> int:
        return self.count(ApprovalStatus.IN_PROGRESS)

    @property
    def approved(self) -> int:
        return self.count(ApprovalStatus.APPROVED)

    @property
    def rejected(self) -> int:
        return self.count(ApprovalStatus.REJECTED)

    @property
    def overridden(self) -> int:
        return self.count(ApprovalStatus.OVERRIDDEN)

    @property
    def cancelled(self) -> int:
        return self.count(ApprovalStatus.CANCELLED)

    @property
    def expired(self) -> int:
        return self.count(ApprovalStatus.EXPIRED)


class ApprovalRequestSelector(BaseSelector[ApprovalRequestModel]):
    """Queries approval requests."""

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        model = self.session.get(ApprovalRequestModel, request_id)
        if model is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return model.to_dto()

    def get_request_with_history(self, request_id: UUID) -> RequestHistory:
        """
        Request, its template with ordered steps, and every response.

        Raises:
            ApprovalRequestNotFoundError: unknown request.
        """
        model = self.session.get(ApprovalRequestModel, request_id)
        if model is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        request = model.to_dto()
        workflow = model.workflow.to_dto()
        return RequestHistory(
            request=request,
            workflow=workflow,
            steps=build_step_progress(request, workflow),
        )

    def list_requests(
        self,
        filters: RequestFilter | None = None,
        sort_by: str = "created_at",
        descending: bool = True,
        page: int = 1,
        page_size: int = 20,
    ) -> Page:
        if sort_by not in _SORTABLE:
            raise ValueError(f"Cannot sort approval requests by {sort_by!r}")
        page = max(page, 1)
        page_size = max(1, min(page_size, MAX_PAGE_SIZE))

        total = self.session.execute(
            self._filtered(select(func.count(ApprovalRequestModel.id)), filters)
        ).scalar_one()

        column = _SORTABLE[sort_by]
        stmt = self._filtered(select(ApprovalRequestModel), filters).order_by(
            column.desc() if descending else column.asc(),
            ApprovalRequestModel.id,
        )
        models = self.session.execute(
            stmt.offset((page - 1) * page_size).limit(page_size)
        ).scalars().all()
        return Page(
            items=tuple(m.to_dto() for m in models),
            total_count=total,
            current_page=page,
            page_size=page_size,
        )

    def get_stats(self, filters: RequestFilter | None = None) -> RequestStats:
        """Counts by status and by workflow name, plus mean days to a decision."""
        status_rows = self.session.execute(
            self._filtered(
                select(ApprovalRequestModel.status, func.count(ApprovalRequestModel.id)),
                filters,
            ).group_by(ApprovalRequestModel.status)
        ).all()
        by_status = {status: count for status, count in status_rows}

        workflow_rows = self.session.execute(
            self._filtered(
                select(ApprovalWorkflowModel.name, func.count(ApprovalRequestModel.id))
                .select_from(ApprovalRequestModel)
                .join(ApprovalWorkflowModel, ApprovalRequestModel.workflow_id == ApprovalWorkflowModel.id),
                filters,
            ).group_by(ApprovalWorkflowModel.name)
        ).all()

        durations = self.session.execute(
            self._filtered(
                select(ApprovalRequestModel.created_at, ApprovalRequestModel.completed_at).where(
                    ApprovalRequestModel.completed_at.is_not(None),
                    ApprovalRequestModel.status.in_(
                        [s.value for s in TERMINAL_APPROVAL_STATUSES]
                    ),
                ),
                filters,
            )
        ).all()
        average = None
        if durations:
            seconds = sum((done - created).total_seconds() for created, done in durations)
            average = round(seconds / len(durations) / _SECONDS_PER_DAY, 2)

        return RequestStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_workflow={name: count for name, count in workflow_rows},
            average_processing_days=average,
        )

    def pending_for_role(
        self,
        role: RoleRef,
        administrator_role: str | None = None,
    ) -> list[ApprovalRequest]:
        """Open requests whose current step ``role`` may answer, oldest first."""
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status.in_([s.value for s in OPEN_APPROVAL_STATUSES]))
            .order_by(ApprovalRequestModel.created_at, ApprovalRequestModel.id)
        ).scalars().all()

        pending: list[ApprovalRequest] = []
        for model in models:
            step = next(
                (
                    s.to_dto()
                    for s in model.workflow.steps
                    if s.step_order == model.current_step_order
                ),
                None,
            )
            if can_respond(ApprovalStatus(model.status), role, step, administrator_role):
                pending.append(model.to_dto())
        return pending

    @staticmethod
    def _filtered(stmt: Select, filters: RequestFilter | None) -> Select:
        if filters is None:
            return stmt
        if filters.needs_property:
            stmt = stmt.join(Property, ApprovalRequestModel.property_id == Property.id)
            if filters.business_unit_id is not None:
                stmt = stmt.where(Property.business_unit_id == filters.business_unit_id)
            if filters.search:
                pattern = f"%{filters.search.strip().lower()}%"
                stmt = stmt.where(
                    or_(
                        func.lower(Property.title_number).like(pattern),
                        func.lower(func.coalesce(Property.lot_number, "")).like(pattern),
                        func.lower(func.coalesce(Property.registered_owner, "")).like(pattern),
                        func.lower(func.coalesce(Property.location, "")).like(pattern),
                    )
                )
        if filters.status is not None:
            stmt = stmt.where(ApprovalRequestModel.status == ApprovalStatus(filters.status).value)
        if filters.open_only:
            stmt = stmt.where(
                ApprovalRequestModel.status.in_([s.value for s in OPEN_APPROVAL_STATUSES])
            )
        if filters.entity_type is not None:
            stmt = stmt.where(ApprovalRequestModel.entity_type == filters.entity_type)
        if filters.workflow_id is not None:
            stmt = stmt.where(ApprovalRequestModel.workflow_id == filters.workflow_id)
        if filters.requested_by_id is not None:
            stmt = stmt.where(ApprovalRequestModel.requested_by_id == filters.requested_by_id)
        if filters.property_id is not None:
            stmt = stmt.where(ApprovalRequestModel.property_id == filters.property_id)
        if filters.created_from is not None:
            stmt = stmt.where(ApprovalRequestModel.created_at >= filters.created_from)
        if filters.created_to is not None:
            stmt = stmt.where(ApprovalRequestModel.created_at <= filters.created_to)
        return stmt

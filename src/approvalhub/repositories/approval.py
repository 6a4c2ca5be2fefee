"""Repository for service approval workflow operations."""

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import and_, asc, delete, desc, func, select, update
from sqlalchemy.sql import Select

from approvalhub.models.approval import ServiceApproval, ServiceApprovalDecision
from approvalhub.repositories.base import BaseRepository

SORTABLE_COLUMNS = ("created_at", "updated_at", "due_date", "priority", "title", "status")


class ServiceApprovalRepository(BaseRepository[ServiceApproval]):
    """Repository for ServiceApproval database operations.

    Handles approval queries including:
    - Ownership-scoped lookups (optionally row-locked)
    - Compare-and-set level advancement
    - Filtered listing with pagination
    - Aggregates for usage statistics
    """

    model = ServiceApproval

    async def get_owned(
        self, approval_id: str, service_id: str, *, for_update: bool = False
    ) -> ServiceApproval | None:
        """Get approval owned by a service.

        @param approval_id - Approval ID
        @param service_id - Owning service identity ID
        @param for_update - Lock the row until the transaction ends
        @returns ServiceApproval or None when absent or foreign
        """
        stmt = select(self.model).where(
            and_(self.model.id == approval_id, self.model.service_id == service_id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_owned_ids(self, service_id: str, approval_ids: list[str]) -> set[str]:
        """Return the subset of ids owned by a service.

        @param service_id - Owning service identity ID
        @param approval_ids - Candidate IDs
        @returns Set of owned IDs
        """
        if not approval_ids:
            return set()
        stmt = select(self.model.id).where(
            and_(
                self.model.service_id == service_id,
                self.model.id.in_(approval_ids),
            )
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def transition(
        self,
        approval_id: str,
        service_id: str,
        expected_level: int,
        values: dict[str, Any],
    ) -> bool:
        """Conditionally move a PENDING approval out of a given level.

        The UPDATE only matches while the row is still PENDING at
        ``expected_level``; a concurrent transition that committed first
        makes this a no-op.

        @param approval_id - Approval ID
        @param service_id - Owning service identity ID
        @param expected_level - Level the caller observed
        @param values - Column values to set
        @returns True if this call won the transition
        """
        stmt = (
            update(self.model)
            .where(
                and_(
                    self.model.id == approval_id,
                    self.model.service_id == service_id,
                    self.model.status == "PENDING",
                    self.model.current_level == expected_level,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    def _filtered(
        self,
        stmt: Select,
        service_id: str,
        *,
        approval_type: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        urgency: str | None = None,
        external_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> Select:
        stmt = stmt.where(self.model.service_id == service_id)
        if approval_type:
            stmt = stmt.where(self.model.approval_type == approval_type)
        if status:
            stmt = stmt.where(self.model.status == status)
        if priority:
            stmt = stmt.where(self.model.priority == priority)
        if urgency:
            stmt = stmt.where(self.model.urgency == urgency)
        if external_id:
            stmt = stmt.where(self.model.external_id == external_id)
        if date_from:
            stmt = stmt.where(self.model.created_at >= date_from)
        if date_to:
            stmt = stmt.where(self.model.created_at <= date_to)
        return stmt

    async def list_for_service(
        self,
        service_id: str,
        *,
        skip: int = 0,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        **filters: Any,
    ) -> tuple[Sequence[ServiceApproval], int]:
        """List a service's approvals with filters.

        @param service_id - Owning service identity ID
        @param skip - Pagination offset
        @param limit - Maximum results
        @param sort_by - Column name to order by
        @param sort_order - asc or desc
        @param filters - approval_type/status/priority/urgency/external_id/date_from/date_to
        @returns Tuple of (approvals, total count)
        """
        column = getattr(
            self.model, sort_by if sort_by in SORTABLE_COLUMNS else "created_at"
        )
        direction = asc if sort_order == "asc" else desc

        stmt = self._filtered(select(self.model), service_id, **filters)
        stmt = stmt.order_by(direction(column), desc(self.model.id))
        stmt = stmt.offset(skip).limit(limit)
        result = await self.session.execute(stmt)

        count_stmt = self._filtered(
            select(func.count()).select_from(self.model), service_id, **filters
        )
        total = (await self.session.execute(count_stmt)).scalar() or 0
        return result.scalars().all(), total

    async def count_grouped(
        self, column_name: str, service_id: str, **filters: Any
    ) -> dict[Any, int]:
        """Count approvals grouped by a column.

        @param column_name - Column to group by
        @param service_id - Owning service identity ID
        @param filters - date_from/date_to
        @returns Mapping of column value to count
        """
        column = getattr(self.model, column_name)
        stmt = self._filtered(
            select(column, func.count()).select_from(self.model), service_id, **filters
        ).group_by(column)
        result = await self.session.execute(stmt)
        return {value: count for value, count in result.all()}

    async def count_overdue(
        self, service_id: str, now: datetime, **filters: Any
    ) -> int:
        """Count pending approvals whose due date has passed.

        @param service_id - Owning service identity ID
        @param now - Reference time
        @returns Number of overdue approvals
        """
        stmt = self._filtered(
            select(func.count()).select_from(self.model), service_id, **filters
        ).where(
            and_(
                self.model.status == "PENDING",
                self.model.due_date.is_not(None),
                self.model.due_date < now,
            )
        )
        return (await self.session.execute(stmt)).scalar() or 0

    async def get_completion_spans(
        self, service_id: str, **filters: Any
    ) -> list[tuple[datetime, datetime]]:
        """Get (created_at, completed_at) of approved/rejected approvals.

        @param service_id - Owning service identity ID
        @returns List of timestamp pairs
        """
        stmt = self._filtered(
            select(self.model.created_at, self.model.completed_at), service_id, **filters
        ).where(
            and_(
                self.model.status.in_(["APPROVED", "REJECTED"]),
                self.model.completed_at.is_not(None),
            )
        )
        result = await self.session.execute(stmt)
        return [(created, completed) for created, completed in result.all()]

    async def average_levels(self, service_id: str, **filters: Any) -> float:
        """Average total_levels across matching approvals."""
        stmt = self._filtered(
            select(func.avg(self.model.total_levels)), service_id, **filters
        )
        value = (await self.session.execute(stmt)).scalar()
        return float(value or 0)

    async def get_recent(
        self, service_id: str, since: datetime, limit: int = 10
    ) -> Sequence[ServiceApproval]:
        """Get the newest approvals created after a point in time.

        @param service_id - Owning service identity ID
        @param since - Lower bound on created_at
        @param limit - Maximum results
        @returns List of approvals, newest first
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.service_id == service_id,
                    self.model.created_at >= since,
                )
            )
            .order_by(desc(self.model.created_at))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def delete_many(self, approval_ids: list[str]) -> int:
        """Delete approvals by id.

        @param approval_ids - Approval IDs
        @returns Number of deleted rows
        """
        if not approval_ids:
            return 0
        stmt = delete(self.model).where(self.model.id.in_(approval_ids))
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount


class ServiceApprovalDecisionRepository(BaseRepository[ServiceApprovalDecision]):
    """Repository for per-level decisions."""

    model = ServiceApprovalDecision

    async def get_for_level(
        self, approval_id: str, level: int
    ) -> ServiceApprovalDecision | None:
        """Get the decision slot of one level.

        @param approval_id - Approval ID
        @param level - Approval level (1-based)
        @returns Decision or None
        """
        return await self.get_one_by_filter(approval_id=approval_id, level=level)

    async def delete_for_approvals(self, approval_ids: list[str]) -> int:
        """Delete all decisions of the given approvals.

        @param approval_ids - Approval IDs
        @returns Number of deleted rows
        """
        if not approval_ids:
            return 0

        stmt = delete(self.model).where(self.model.approval_id.in_(approval_ids))
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount

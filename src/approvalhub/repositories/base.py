"""Base repository with common CRUD operations.

Provides a generic async repository pattern for SQLAlchemy models.
"""

from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from approvalhub.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic async repository with common CRUD operations.

    Provides standard database operations for SQLAlchemy models:
    - get_by_id: Retrieve single record by primary key
    - get_by_filter: Retrieve records matching filter criteria
    - create: Insert new record
    - update: Update existing record
    - delete: Remove record
    - count: Count records matching criteria

    Repositories never commit; the caller owns the unit of work.

    Example:
        repo = ServiceApprovalRepository(session)
        approval = await repo.get_owned(approval_id, service_id)
        pending = await repo.get_by_filter(service_id=sid, status="PENDING")
    """

    model: type[ModelType]

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with async session.

        @param session - SQLAlchemy async session
        """
        self.session = session

    async def get_by_id(self, id: Any) -> ModelType | None:
        """Get record by primary key.

        @param id - Primary key value
        @returns Model instance or None if not found
        """
        return await self.session.get(self.model, id)

    async def get_by_filter(
        self,
        *,
        skip: int = 0,
        limit: int = 100,
        order_by: Any | None = None,
        **filters: Any,
    ) -> Sequence[ModelType]:
        """Get records matching filter criteria.

        @param skip - Number of records to skip
        @param limit - Maximum records to return
        @param order_by - Column to order by
        @param filters - Key-value pairs for filtering (column=value)
        @returns List of matching model instances
        """
        stmt = self._apply_filters(self._build_query(), filters)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        stmt = stmt.offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_one_by_filter(self, **filters: Any) -> ModelType | None:
        """Get single record matching filter criteria.

        @param filters - Key-value pairs for filtering
        @returns Model instance or None if not found
        """
        stmt = self._apply_filters(self._build_query(), filters).limit(1)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create(self, obj_in: dict[str, Any] | ModelType) -> ModelType:
        """Create new record.

        @param obj_in - Dictionary or model instance with data
        @returns Created model instance
        """
        if isinstance(obj_in, dict):
            db_obj = self.model(**obj_in)
        else:
            db_obj = obj_in
        self.session.add(db_obj)
        await self.session.flush()
        return db_obj

    async def create_many(self, objects: list[dict[str, Any]]) -> list[ModelType]:
        """Create multiple records in batch.

        @param objects - List of dictionaries with data
        @returns List of created model instances
        """
        db_objs = [self.model(**obj) for obj in objects]
        self.session.add_all(db_objs)
        await self.session.flush()
        return db_objs

    async def update(
        self, db_obj: ModelType, obj_in: dict[str, Any]
    ) -> ModelType:
        """Apply field values to a loaded record.

        @param db_obj - Instance to modify
        @param obj_in - Dictionary with update data (only present keys)
        @returns Updated model instance
        """
        for key, value in obj_in.items():
            if hasattr(db_obj, key):
                setattr(db_obj, key, value)
        await self.session.flush()
        return db_obj

    async def update_by_filter(self, values: dict[str, Any], **filters: Any) -> int:
        """Update records matching filter criteria.

        @param values - Dictionary with update values
        @param filters - Key-value pairs for filtering
        @returns Number of updated records
        """
        stmt = self._apply_filters(update(self.model).values(**values), filters)
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete(self, db_obj: ModelType) -> None:
        """Delete a loaded record.

        @param db_obj - Instance to delete
        """
        await self.session.delete(db_obj)
        await self.session.flush()

    async def delete_by_filter(self, **filters: Any) -> int:
        """Delete records matching filter criteria.

        @param filters - Key-value pairs for filtering
        @returns Number of deleted records
        """
        stmt = self._apply_filters(delete(self.model), filters)
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count(self, **filters: Any) -> int:
        """Count records matching criteria.

        @param filters - Key-value pairs for filtering
        @returns Number of matching records
        """
        stmt = self._apply_filters(select(func.count()).select_from(self.model), filters)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    def _apply_filters(self, stmt: Any, filters: dict[str, Any]) -> Any:
        """Add equality predicates for non-None filter values."""
        for key, value in filters.items():
            if hasattr(self.model, key) and value is not None:
                stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    def _build_query(self) -> Select:
        """Build base select query. Override in subclass for joins.

        @returns SQLAlchemy Select statement
        """
        return select(self.model)

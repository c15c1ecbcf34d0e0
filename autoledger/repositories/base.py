"""
Generic async repository (data-access layer).

Concrete repositories inherit from ``BaseRepository[T]`` and add the
entity-specific queries and atomic updates the ledger needs.

- All repositories of one request share the request's ``AsyncSession``.
  Single-entity CRUD (``create``, ``delete``) commits on its own;
  multi-step ledger operations use ``add`` / ``flush`` and let the service
  close the unit of work with ``commit`` or ``rollback``.
- ``IntegrityError`` is not caught here.  Each service maps it to the
  right domain error (duplicate email, duplicate approval, …).
- ``OperationalError`` during a commit rolls the session back before being
  re-raised so a broken transaction never leaks into the next statement.
- Every round trip goes through ``db_circuit_breaker``.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from autoledger.core.resilience import db_circuit_breaker

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic CRUD repository for SQLModel entities.

    Parameters
    ----------
    model : Type[ModelType]
        The SQLModel class this repository manages.
    db : AsyncSession
        The request's async session.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ── Internal helpers ──

    async def _execute_with_circuit_breaker(
        self, func: Any, *args: Any, **kwargs: Any
    ) -> Any:
        return await db_circuit_breaker.call(func, *args, **kwargs)

    async def _commit_or_rollback(self, operation: str) -> None:
        try:
            await self.db.commit()
        except OperationalError:
            await self.db.rollback()
            logger.error("OperationalError during %s for %s", operation, self.model.__name__)
            raise

    # ── Reads ──

    async def get(self, id: Any) -> Optional[ModelType]:
        """Fetch by primary key from the identity map or the database."""

        async def _get() -> Optional[ModelType]:
            return await self.db.get(self.model, id)

        return await self._execute_with_circuit_breaker(_get)

    async def get_fresh(self, id: Any) -> Optional[ModelType]:
        """Fetch by primary key, overwriting any stale copy in the identity map.

        Needed after bulk ``UPDATE`` statements, which bypass the ORM.
        """

        async def _get_fresh() -> Optional[ModelType]:
            pk = self.model.__table__.primary_key.columns
            (pk_column,) = pk
            stmt = (
                select(self.model)
                .where(pk_column == id)
                .execution_options(populate_existing=True)
            )
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get_fresh)

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """Paginated list ordered by primary key so pages are stable."""

        async def _get_all() -> List[ModelType]:
            pk_columns = self.model.__table__.primary_key.columns
            stmt = select(self.model).order_by(*pk_columns).offset(skip).limit(limit)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get_all)

    async def count(self) -> int:
        async def _count() -> int:
            stmt = select(func.count()).select_from(self.model)
            result = await self.db.execute(stmt)
            return result.scalar_one()

        return await self._execute_with_circuit_breaker(_count)

    # ── Single-entity writes (commit immediately) ──

    async def create(self, obj_in: ModelType) -> ModelType:
        """Insert, commit and return the refreshed entity."""

        async def _create() -> ModelType:
            self.db.add(obj_in)
            await self._commit_or_rollback("create")
            await self.db.refresh(obj_in)
            return obj_in

        return await self._execute_with_circuit_breaker(_create)

    async def delete(self, id: Any) -> bool:
        """Delete by primary key.  ``False`` when nothing matched."""

        async def _delete() -> bool:
            entity = await self.db.get(self.model, id)
            if entity is None:
                return False
            await self.db.delete(entity)
            await self._commit_or_rollback("delete")
            return True

        return await self._execute_with_circuit_breaker(_delete)

    # ── Unit-of-work helpers for multi-step operations ──

    async def add(self, *entities: SQLModel) -> None:
        """Stage entities and flush so constraint violations surface now."""

        async def _add() -> None:
            self.db.add_all(entities)
            await self.db.flush()

        await self._execute_with_circuit_breaker(_add)

    async def commit(self) -> None:
        async def _commit() -> None:
            await self._commit_or_rollback("commit")

        await self._execute_with_circuit_breaker(_commit)

    async def rollback(self) -> None:
        await self.db.rollback()

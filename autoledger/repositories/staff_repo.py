"""
Admin and manager repositories.
"""

from typing import Iterable, Optional, Set
from uuid import UUID

from sqlalchemy import select

from autoledger.models.staff import Admin, Manager
from autoledger.repositories.base import BaseRepository


class AdminRepository(BaseRepository[Admin]):
    """Concrete repository for :class:`Admin` entities."""

    async def get_by_email(self, email: str) -> Optional[Admin]:
        stmt = select(self.model).where(self.model.email == email)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def existing_ids(self, ids: Iterable[UUID]) -> Set[UUID]:
        """Return the subset of ``ids`` that belong to an admin."""
        id_list = list(ids)
        if not id_list:
            return set()

        async def _existing() -> Set[UUID]:
            stmt = select(self.model.id).where(self.model.id.in_(id_list))
            result = await self.db.execute(stmt)
            return set(result.scalars().all())

        return await self._execute_with_circuit_breaker(_existing)


class ManagerRepository(BaseRepository[Manager]):
    """Concrete repository for :class:`Manager` entities."""

    async def get_by_email(self, email: str) -> Optional[Manager]:
        stmt = select(self.model).where(self.model.email == email)
        result = await self.db.execute(stmt)
        return result.scalars().first()

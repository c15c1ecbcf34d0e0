"""
Audit entry and sequence counter repositories.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update

from autoledger.models.audit import AuditCategory, AuditEntry, SequenceCounter
from autoledger.repositories.base import BaseRepository


class AuditRepository(BaseRepository[AuditEntry]):
    """Read side of the append-only audit table."""

    async def list_entries(
        self,
        category: Optional[AuditCategory] = None,
        target_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """Entries in ``sequence_id`` order, optionally filtered."""

        async def _list() -> List[AuditEntry]:
            stmt = select(AuditEntry)
            if category is not None:
                stmt = stmt.where(AuditEntry.category == category)
            if target_id is not None:
                stmt = stmt.where(AuditEntry.target_id == target_id)
            stmt = stmt.order_by(AuditEntry.sequence_id).offset(skip).limit(limit)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)


class SequenceRepository(BaseRepository[SequenceCounter]):
    """Atomic named counters."""

    async def increment(self, name: str) -> Optional[int]:
        """
        Advance counter ``name`` by one and return the new value.

        A single ``UPDATE … RETURNING`` statement; ``None`` means the counter
        row does not exist.  Does not commit.
        """

        async def _increment() -> Optional[int]:
            stmt = (
                update(SequenceCounter)
                .where(SequenceCounter.name == name)
                .values(value=SequenceCounter.value + 1)
                .returning(SequenceCounter.value)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            return result.scalar_one_or_none()

        return await self._execute_with_circuit_breaker(_increment)

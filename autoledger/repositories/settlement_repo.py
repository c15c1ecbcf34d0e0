"""
Settlement repository.  Settlements are insert-only.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from autoledger.models.settlement import Settlement, SettlementLine
from autoledger.repositories.base import BaseRepository


class SettlementRepository(BaseRepository[Settlement]):
    """Concrete repository for :class:`Settlement` entities."""

    async def get_by_asset(self, asset_id: UUID) -> Optional[Settlement]:
        async def _get() -> Optional[Settlement]:
            stmt = select(Settlement).where(Settlement.asset_id == asset_id)
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

    async def get_lines(self, settlement_id: UUID) -> List[SettlementLine]:
        async def _get() -> List[SettlementLine]:
            stmt = (
                select(SettlementLine)
                .where(SettlementLine.settlement_id == settlement_id)
                .order_by(SettlementLine.position)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get)

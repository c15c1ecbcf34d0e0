"""
Investor repository: data access for the ``investors`` table.

Besides look-ups it owns the two ledger mutations.  Both are a single
conditional ``UPDATE`` evaluated by the database, never read-modify-write
in Python, so concurrent reservations against one investor cannot
overcommit the credit limit.  Arithmetic is rounded to cents in SQL since
SQLite keeps Numeric columns as floats.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import Numeric, case, func, select, update

from autoledger.models.investor import Investor
from autoledger.repositories.base import BaseRepository

_MONEY = Numeric(20, 2)


def _cents(expr):
    """Round a money expression to cents inside the database."""
    return func.round(expr, 2, type_=_MONEY)


class InvestorRepository(BaseRepository[Investor]):
    """Concrete repository for :class:`Investor` entities."""

    async def get_by_email(self, email: str) -> Optional[Investor]:
        stmt = select(self.model).where(self.model.email == email)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_many(self, ids: Iterable[UUID]) -> List[Investor]:
        """Fetch several investors in one query (order not guaranteed)."""
        id_list = list(ids)
        if not id_list:
            return []

        async def _get_many() -> List[Investor]:
            stmt = select(self.model).where(self.model.id.in_(id_list))
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get_many)

    async def reserve_credit(self, investor_id: UUID, amount: Decimal) -> bool:
        """
        Add ``amount`` to ``utilized_amount`` if the remaining credit covers it.

        Returns ``False`` when no row matched: either the investor does not
        exist or the remaining credit is too small.  Does not commit.
        """

        async def _reserve() -> bool:
            stmt = (
                update(self.model)
                .where(
                    self.model.id == investor_id,
                    _cents(self.model.credit_limit - self.model.utilized_amount) >= amount,
                )
                .values(
                    utilized_amount=_cents(self.model.utilized_amount + amount),
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            return result.rowcount == 1

        return await self._execute_with_circuit_breaker(_reserve)

    async def release_credit(
        self, investor_id: UUID, amount: Decimal, drift_epsilon: Decimal
    ) -> bool:
        """
        Subtract ``amount`` from ``utilized_amount``, flooring at zero.

        The floor only absorbs rounding drift: the row is left untouched
        (``False``) when the result would fall below ``-drift_epsilon``.
        Does not commit.
        """

        async def _release() -> bool:
            remaining = _cents(self.model.utilized_amount - amount)
            stmt = (
                update(self.model)
                .where(self.model.id == investor_id, remaining >= -drift_epsilon)
                .values(
                    utilized_amount=case((remaining < 0, Decimal("0")), else_=remaining),
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            return result.rowcount == 1

        return await self._execute_with_circuit_breaker(_release)

    async def set_credit_limit(self, investor_id: UUID, new_limit: Decimal) -> bool:
        """Change the limit unless it would drop below the utilized amount."""

        async def _set_limit() -> bool:
            stmt = (
                update(self.model)
                .where(self.model.id == investor_id, self.model.utilized_amount <= new_limit)
                .values(credit_limit=new_limit, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            return result.rowcount == 1

        return await self._execute_with_circuit_breaker(_set_limit)

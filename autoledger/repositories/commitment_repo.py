"""
Capital commitment repository.

Every state change on a commitment goes through :meth:`compare_and_swap`,
an ``UPDATE … WHERE id = :id AND version = :expected``.  A ``False`` return
means another transaction changed the commitment first.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select, update

from autoledger.models.commitment import (
    CapitalCommitment,
    CommitmentAllocation,
    CommitmentApproval,
    CommitmentKind,
    FundingStatus,
)
from autoledger.repositories.base import BaseRepository


class CommitmentRepository(BaseRepository[CapitalCommitment]):
    """Concrete repository for :class:`CapitalCommitment` and its child rows."""

    async def list_commitments(
        self,
        kind: Optional[CommitmentKind] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[CapitalCommitment]:
        async def _list() -> List[CapitalCommitment]:
            stmt = select(CapitalCommitment)
            if kind is not None:
                stmt = stmt.where(CapitalCommitment.kind == kind)
            stmt = (
                stmt.order_by(CapitalCommitment.created_at.desc(), CapitalCommitment.reference)
                .offset(skip)
                .limit(limit)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def get_allocations(self, commitment_id: UUID) -> List[CommitmentAllocation]:
        """Allocations in the order they were submitted."""

        async def _get() -> List[CommitmentAllocation]:
            stmt = (
                select(CommitmentAllocation)
                .where(CommitmentAllocation.commitment_id == commitment_id)
                .order_by(CommitmentAllocation.position)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get)

    async def stage_allocations(
        self, commitment_id: UUID, allocations: Sequence[CommitmentAllocation]
    ) -> None:
        """Replace the split of ``commitment_id`` without committing."""

        async def _stage() -> None:
            await self.db.execute(
                delete(CommitmentAllocation).where(
                    CommitmentAllocation.commitment_id == commitment_id
                )
            )
            self.db.add_all(allocations)
            await self.db.flush()

        await self._execute_with_circuit_breaker(_stage)

    async def get_approvals(self, commitment_id: UUID) -> List[CommitmentApproval]:
        async def _get() -> List[CommitmentApproval]:
            stmt = (
                select(CommitmentApproval)
                .where(CommitmentApproval.commitment_id == commitment_id)
                .order_by(CommitmentApproval.approved_at, CommitmentApproval.id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get)

    async def clear_approvals(self, commitment_id: UUID) -> None:
        async def _clear() -> None:
            await self.db.execute(
                delete(CommitmentApproval).where(
                    CommitmentApproval.commitment_id == commitment_id
                )
            )

        await self._execute_with_circuit_breaker(_clear)

    async def compare_and_swap(
        self, commitment_id: UUID, expected_version: int, **values: Any
    ) -> bool:
        """
        Apply ``values`` and bump ``version`` iff it still equals
        ``expected_version``.  Does not commit.
        """

        async def _cas() -> bool:
            stmt = (
                update(CapitalCommitment)
                .where(
                    CapitalCommitment.id == commitment_id,
                    CapitalCommitment.version == expected_version,
                )
                .values(
                    version=expected_version + 1,
                    updated_at=datetime.now(timezone.utc),
                    **values,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            return result.rowcount == 1

        return await self._execute_with_circuit_breaker(_cas)

    async def get_open_sale(self, asset_id: UUID) -> Optional[CapitalCommitment]:
        """The unsettled sale commitment for ``asset_id``, if any."""

        async def _get() -> Optional[CapitalCommitment]:
            stmt = select(CapitalCommitment).where(
                CapitalCommitment.asset_id == asset_id,
                CapitalCommitment.kind == CommitmentKind.SALE,
                CapitalCommitment.funding_status != FundingStatus.SETTLED,
            )
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

"""
Approval group repository.

Groups and their membership are always read and replaced together.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import delete, select

from autoledger.models.approval_group import ApprovalGroup, ApprovalGroupMember
from autoledger.repositories.base import BaseRepository


class ApprovalGroupRepository(BaseRepository[ApprovalGroup]):
    """Concrete repository for :class:`ApprovalGroup` entities."""

    async def list_with_members(self) -> List[Tuple[ApprovalGroup, List[UUID]]]:
        """All groups ordered by name, each with its member admin ids."""

        async def _list() -> List[Tuple[ApprovalGroup, List[UUID]]]:
            groups = (
                await self.db.execute(select(ApprovalGroup).order_by(ApprovalGroup.name))
            ).scalars().all()
            members = (
                await self.db.execute(
                    select(ApprovalGroupMember).order_by(ApprovalGroupMember.admin_id)
                )
            ).scalars().all()

            by_group: Dict[UUID, List[UUID]] = {g.id: [] for g in groups}
            for member in members:
                by_group.setdefault(member.group_id, []).append(member.admin_id)
            return [(g, by_group[g.id]) for g in groups]

        return await self._execute_with_circuit_breaker(_list)

    async def group_name_for_admin(self, admin_id: UUID) -> Optional[str]:
        """Name of the group ``admin_id`` sits in, ``None`` if none."""

        async def _lookup() -> Optional[str]:
            stmt = (
                select(ApprovalGroup.name)
                .join(ApprovalGroupMember, ApprovalGroupMember.group_id == ApprovalGroup.id)
                .where(ApprovalGroupMember.admin_id == admin_id)
            )
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_lookup)

    async def stage_replacement(self, groups: Sequence[Tuple[str, Sequence[UUID]]]) -> None:
        """
        Replace every group and membership with ``groups``.

        Runs inside the caller's transaction and does not commit, so the old
        and new configuration are never visible half-and-half.
        """

        async def _replace() -> None:
            await self.db.execute(delete(ApprovalGroupMember))
            await self.db.execute(delete(ApprovalGroup))
            await self.db.flush()

            now = datetime.now(timezone.utc)
            new_groups = [ApprovalGroup(name=name, updated_at=now) for name, _ in groups]
            self.db.add_all(new_groups)
            await self.db.flush()

            self.db.add_all(
                ApprovalGroupMember(group_id=group.id, admin_id=admin_id)
                for group, (_, members) in zip(new_groups, groups)
                for admin_id in members
            )
            await self.db.flush()

        await self._execute_with_circuit_breaker(_replace)

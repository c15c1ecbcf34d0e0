"""
Group registry: the two disjoint approval groups.

Rules enforced by :meth:`GroupRegistry.set_groups` (first failure wins):

1. exactly two groups;
2. every name non-empty after trimming and at most 50 characters;
3. names unique across the pair (case-sensitive, after trimming);
4. at most two members per group, no member listed twice;
5. no admin in both groups;
6. every member is an existing admin.

The replacement happens in one transaction.  :meth:`get_groups` is a pure
read; the default "Group A" / "Group B" pair is created by
:meth:`bootstrap` at start-up, never as a side effect of reading.
"""

import logging
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.core.cache import cache
from autoledger.core.config import settings
from autoledger.core.exceptions import ValidationError
from autoledger.models.actor import Actor
from autoledger.models.approval_group import (
    GROUP_MAX_MEMBERS,
    GROUP_NAME_MAX_LENGTH,
    ApprovalGroup,
)
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.staff import Admin
from autoledger.repositories.group_repo import ApprovalGroupRepository
from autoledger.repositories.staff_repo import AdminRepository
from autoledger.schemas.group import ApprovalGroupIn, ApprovalGroupResponse
from autoledger.services.audit_trail import AuditTrail

logger = logging.getLogger(__name__)

REQUIRED_GROUP_COUNT = 2


class GroupRegistry:
    """Reads, replaces and bootstraps the approval groups."""

    CACHE_PREFIX = "groups:"

    def __init__(
        self,
        group_repo: ApprovalGroupRepository,
        admin_repo: AdminRepository,
        audit: AuditTrail,
    ):
        self._repo = group_repo
        self._admins = admin_repo
        self._audit = audit

    # ── Queries ──

    async def get_groups(self) -> List[ApprovalGroupResponse]:
        """Current groups ordered by name (cache-backed)."""
        return await cache.get_or_load(f"{self.CACHE_PREFIX}all", self._load_groups)

    async def group_for_admin(self, admin_id: UUID) -> Optional[str]:
        """Group name of ``admin_id``, read from the database every time."""
        return await self._repo.group_name_for_admin(admin_id)

    # ── Commands ──

    async def set_groups(
        self, groups: Sequence[ApprovalGroupIn], actor: Actor
    ) -> List[ApprovalGroupResponse]:
        """Validate and atomically replace both groups."""
        normalised = self._validate_shape(groups)

        all_members = [admin_id for _, members in normalised for admin_id in members]
        existing = await self._admins.existing_ids(all_members)
        missing = [str(admin_id) for admin_id in all_members if admin_id not in existing]
        if missing:
            raise ValidationError(
                "One or more admins not found", details={"missing_admin_ids": missing}
            )

        try:
            await self._repo.stage_replacement(normalised)
            await self._repo.commit()
        except IntegrityError as exc:
            await self._repo.rollback()
            logger.warning("IntegrityError replacing approval groups: %s", exc)
            raise ValidationError("Approval groups could not be saved: constraint violated")
        cache.invalidate(self.CACHE_PREFIX)

        summary = {name: [str(m) for m in members] for name, members in normalised}
        logger.info("Approval groups replaced by %s: %s", actor, summary)
        await self._audit.append(
            category=AuditCategory.APPROVAL,
            action="groups_updated",
            description=(
                "Approval groups set to "
                + " / ".join(f"{name} ({len(members)} members)" for name, members in normalised)
            ),
            actor=actor,
            severity=AuditSeverity.HIGH,
            target_type="approval_groups",
            details={"groups": summary},
        )
        return await self._load_groups()

    async def bootstrap(self) -> bool:
        """
        Create the default empty groups if none exist.

        Returns ``True`` when groups were created.  Idempotent, and safe when
        several replicas start at once.
        """
        if await self._repo.count() > 0:
            return False

        names = settings.default_group_names
        try:
            await self._repo.stage_replacement([(name, []) for name in names])
            await self._repo.commit()
        except IntegrityError:
            await self._repo.rollback()
            logger.info("Approval groups were initialised concurrently")
            return False
        cache.invalidate(self.CACHE_PREFIX)

        logger.info("Initialised default approval groups: %s", ", ".join(names))
        await self._audit.append(
            category=AuditCategory.SYSTEM,
            action="groups_initialized",
            description=f"Default approval groups created: {', '.join(names)}",
            actor=Actor.system(),
            severity=AuditSeverity.MEDIUM,
            target_type="approval_groups",
        )
        return True

    # ── Helpers ──

    async def _load_groups(self) -> List[ApprovalGroupResponse]:
        rows = await self._repo.list_with_members()
        return [
            ApprovalGroupResponse(
                id=group.id, name=group.name, members=members, updated_at=group.updated_at
            )
            for group, members in rows
        ]

    @staticmethod
    def _validate_shape(
        groups: Sequence[ApprovalGroupIn],
    ) -> List[Tuple[str, List[UUID]]]:
        """Checks that need no database access.  Returns trimmed (name, members)."""
        if len(groups) != REQUIRED_GROUP_COUNT:
            raise ValidationError(f"Exactly {REQUIRED_GROUP_COUNT} approval groups are required")

        names = [(group.name or "").strip() for group in groups]
        for name in names:
            if not name:
                raise ValidationError("Group name is required")
            if len(name) > GROUP_NAME_MAX_LENGTH:
                raise ValidationError(
                    f"Group name cannot exceed {GROUP_NAME_MAX_LENGTH} characters"
                )
        if len(set(names)) != len(names):
            raise ValidationError("Group names must be unique")

        normalised: List[Tuple[str, List[UUID]]] = []
        for name, group in zip(names, groups):
            members = list(group.members)
            if len(members) > GROUP_MAX_MEMBERS:
                raise ValidationError(
                    f"Each group can have at most {GROUP_MAX_MEMBERS} members"
                )
            if len(set(members)) != len(members):
                raise ValidationError(f"Group '{name}' lists the same admin twice")
            normalised.append((name, members))

        (_, first_members), (_, second_members) = normalised
        overlap = set(first_members) & set(second_members)
        if overlap:
            raise ValidationError(
                "An admin cannot be in both groups",
                details={"admin_ids": sorted(str(a) for a in overlap)},
            )
        return normalised


def build_group_registry(db: AsyncSession, audit: AuditTrail) -> GroupRegistry:
    return GroupRegistry(
        group_repo=ApprovalGroupRepository(ApprovalGroup, db),
        admin_repo=AdminRepository(Admin, db),
        audit=audit,
    )

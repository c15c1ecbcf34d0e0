"""
Approval group API endpoints.

- GET  /groups   Current approval groups
- PUT  /groups   Replace both groups in one go
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.api.deps import get_actor
from autoledger.db.session import get_db
from autoledger.models.actor import Actor
from autoledger.schemas.common import ValidationErrorResponse
from autoledger.schemas.group import ApprovalGroupResponse, ApprovalGroupsUpdate
from autoledger.services.audit_trail import build_audit_trail
from autoledger.services.group_registry import GroupRegistry, build_group_registry

router = APIRouter()


# ── Dependency injection ──


def _get_group_registry(db: AsyncSession = Depends(get_db)) -> GroupRegistry:
    return build_group_registry(db, build_audit_trail(db))


# ── Endpoints ──


@router.get(
    "",
    response_model=List[ApprovalGroupResponse],
    summary="List approval groups",
    description="Both approval groups with their member admin ids, ordered by name.",
)
async def get_groups(
    registry: GroupRegistry = Depends(_get_group_registry),
) -> List[ApprovalGroupResponse]:
    return await registry.get_groups()


@router.put(
    "",
    response_model=List[ApprovalGroupResponse],
    summary="Replace the approval groups",
    description=(
        "Exactly two groups with unique names, at most two admins each, and no "
        "admin in both.  Either the whole replacement applies or nothing does."
    ),
    responses={
        422: {"model": ValidationErrorResponse, "description": "Group rules violated"},
    },
)
async def set_groups(
    update: ApprovalGroupsUpdate,
    actor: Actor = Depends(get_actor),
    registry: GroupRegistry = Depends(_get_group_registry),
) -> List[ApprovalGroupResponse]:
    return await registry.set_groups(update.groups, actor)

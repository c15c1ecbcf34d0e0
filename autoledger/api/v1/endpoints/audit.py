"""
Audit API endpoints.

- GET  /audit   Audit stream in sequence order, filterable by category and target
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.db.session import get_db
from autoledger.models.audit import AuditCategory
from autoledger.schemas.audit import AuditEntryResponse
from autoledger.services.audit_trail import AuditTrail, build_audit_trail

router = APIRouter()


def _get_audit_trail(db: AsyncSession = Depends(get_db)) -> AuditTrail:
    return build_audit_trail(db)


@router.get(
    "",
    response_model=List[AuditEntryResponse],
    summary="Read the audit stream",
    description="Entries ordered by ``sequence_id`` ascending.  Read-only.",
)
async def list_audit_entries(
    category: Optional[AuditCategory] = Query(None, description="Filter by category"),
    target_id: Optional[UUID] = Query(None, description="Filter by target entity id"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    audit: AuditTrail = Depends(_get_audit_trail),
) -> List[AuditEntryResponse]:
    return await audit.list_entries(
        category=category, target_id=target_id, skip=skip, limit=limit
    )

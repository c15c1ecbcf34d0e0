"""
Capital commitment API endpoints.

- GET    /commitments                    List commitments
- POST   /commitments                    Open a purchase or a sale
- GET    /commitments/{id}               Commitment with split and approvals
- PUT    /commitments/{id}/allocations   Record the investor split of a purchase
- POST   /commitments/{id}/approvals     Submit an admin's approval
- DELETE /commitments/{id}/approvals     Reset pending approvals
- POST   /commitments/{id}/fund          Reserve the split on the ledger
- POST   /commitments/{id}/settle        Settle an approved sale
- GET    /commitments/{id}/settlement    Settlement of a purchased asset

All dependencies below share the request's session (``get_db`` is resolved
once per request), so every service works on the same unit of work.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.api.deps import get_actor
from autoledger.core.exceptions import ActorMismatchError
from autoledger.db.session import get_db
from autoledger.models.actor import Actor, ActorKind
from autoledger.models.commitment import CapitalCommitment, CommitmentKind
from autoledger.models.settlement import Settlement
from autoledger.repositories.commitment_repo import CommitmentRepository
from autoledger.repositories.settlement_repo import SettlementRepository
from autoledger.schemas.commitment import (
    AllocationsUpdate,
    ApprovalSubmit,
    CommitmentCreate,
    CommitmentResponse,
    CommitmentSummary,
)
from autoledger.schemas.common import ErrorResponse, ValidationErrorResponse
from autoledger.schemas.settlement import SettlementResponse
from autoledger.services.allocation_ledger import AllocationLedger, build_allocation_ledger
from autoledger.services.approval_coordinator import ApprovalCoordinator
from autoledger.services.audit_trail import build_audit_trail
from autoledger.services.commitment_service import CommitmentService
from autoledger.services.group_registry import build_group_registry
from autoledger.services.sequence_generator import build_sequence_generator
from autoledger.services.settlement_engine import SettlementEngine

router = APIRouter()


# ── Dependency injection ──


def _get_commitment_service(db: AsyncSession = Depends(get_db)) -> CommitmentService:
    return CommitmentService(
        commitment_repo=CommitmentRepository(CapitalCommitment, db),
        sequences=build_sequence_generator(db),
        audit=build_audit_trail(db),
    )


def _get_coordinator(db: AsyncSession = Depends(get_db)) -> ApprovalCoordinator:
    audit = build_audit_trail(db)
    return ApprovalCoordinator(
        commitment_repo=CommitmentRepository(CapitalCommitment, db),
        groups=build_group_registry(db, audit),
        audit=audit,
    )


def _get_ledger(db: AsyncSession = Depends(get_db)) -> AllocationLedger:
    return build_allocation_ledger(db, build_audit_trail(db))


def _get_settlement_engine(db: AsyncSession = Depends(get_db)) -> SettlementEngine:
    audit = build_audit_trail(db)
    return SettlementEngine(
        commitment_repo=CommitmentRepository(CapitalCommitment, db),
        settlement_repo=SettlementRepository(Settlement, db),
        ledger=build_allocation_ledger(db, audit),
        sequences=build_sequence_generator(db),
        audit=audit,
    )


_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Commitment not found"}}
_CONFLICT = {409: {"model": ErrorResponse, "description": "Commitment is in the wrong state"}}
_INVALID = {422: {"model": ValidationErrorResponse, "description": "Ledger rule violated"}}


# ── Endpoints ──


@router.get(
    "",
    response_model=List[CommitmentSummary],
    summary="List commitments",
    description="Newest first.  Filter by ``kind`` to see only purchases or sales.",
)
async def list_commitments(
    kind: Optional[CommitmentKind] = Query(None, description="purchase or sale"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: CommitmentService = Depends(_get_commitment_service),
) -> List[CommitmentSummary]:
    return await service.list_commitments(kind=kind, skip=skip, limit=limit)


@router.post(
    "",
    response_model=CommitmentResponse,
    status_code=201,
    summary="Open a purchase or a sale",
    responses={**_NOT_FOUND, **_CONFLICT, **_INVALID},
)
async def create_commitment(
    commitment: CommitmentCreate,
    actor: Actor = Depends(get_actor),
    service: CommitmentService = Depends(_get_commitment_service),
) -> CommitmentResponse:
    created = await service.create_commitment(commitment, actor)
    return await service.get_commitment(created.id)


@router.get(
    "/{commitment_id}",
    response_model=CommitmentResponse,
    summary="Fetch a commitment",
    responses=_NOT_FOUND,
)
async def get_commitment(
    commitment_id: UUID,
    service: CommitmentService = Depends(_get_commitment_service),
) -> CommitmentResponse:
    return await service.get_commitment(commitment_id)


@router.put(
    "/{commitment_id}/allocations",
    response_model=CommitmentResponse,
    summary="Record the allocation split",
    description=(
        "Replaces the investor split of a purchase.  Percentages must sum to 100 "
        "and amounts to the purchase total (both within 0.01).  Only allowed "
        "before the first approval."
    ),
    responses={**_NOT_FOUND, **_CONFLICT, **_INVALID},
)
async def record_allocation(
    commitment_id: UUID,
    update: AllocationsUpdate,
    actor: Actor = Depends(get_actor),
    ledger: AllocationLedger = Depends(_get_ledger),
    service: CommitmentService = Depends(_get_commitment_service),
) -> CommitmentResponse:
    await ledger.record_allocation(commitment_id, update.allocations, actor)
    return await service.get_commitment(commitment_id)


@router.post(
    "/{commitment_id}/approvals",
    response_model=CommitmentResponse,
    summary="Submit an approval",
    description=(
        "Records the admin's approval.  The commitment becomes *approved* once "
        "admins from both groups have signed."
    ),
    responses={
        **_NOT_FOUND,
        403: {
            "model": ErrorResponse,
            "description": "Admin is in no approval group, or the actor is another person",
        },
        409: {"model": ErrorResponse, "description": "Duplicate or already approved"},
    },
)
async def submit_approval(
    commitment_id: UUID,
    approval: ApprovalSubmit,
    actor: Actor = Depends(get_actor),
    coordinator: ApprovalCoordinator = Depends(_get_coordinator),
    service: CommitmentService = Depends(_get_commitment_service),
) -> CommitmentResponse:
    # Without actor headers the body admin is trusted as-is.
    if actor.kind != ActorKind.SYSTEM and actor != Actor.admin(approval.admin_id):
        raise ActorMismatchError(actor, approval.admin_id)
    await coordinator.submit_approval(commitment_id, approval.admin_id, approval.comment)
    return await service.get_commitment(commitment_id)


@router.delete(
    "/{commitment_id}/approvals",
    response_model=CommitmentResponse,
    summary="Reset pending approvals",
    responses={
        **_NOT_FOUND,
        **_CONFLICT,
        403: {"model": ErrorResponse, "description": "Actor is not a group admin"},
    },
)
async def reset_approval(
    commitment_id: UUID,
    actor: Actor = Depends(get_actor),
    coordinator: ApprovalCoordinator = Depends(_get_coordinator),
    service: CommitmentService = Depends(_get_commitment_service),
) -> CommitmentResponse:
    await coordinator.reset_approval(commitment_id, actor)
    return await service.get_commitment(commitment_id)


@router.post(
    "/{commitment_id}/fund",
    response_model=CommitmentResponse,
    summary="Fund an approved purchase",
    description="Reserves every allocation on the investors' credit, all or nothing.",
    responses={**_NOT_FOUND, **_CONFLICT, **_INVALID},
)
async def fund_commitment(
    commitment_id: UUID,
    actor: Actor = Depends(get_actor),
    ledger: AllocationLedger = Depends(_get_ledger),
    service: CommitmentService = Depends(_get_commitment_service),
) -> CommitmentResponse:
    await ledger.fund_commitment(commitment_id, actor)
    return await service.get_commitment(commitment_id)


@router.post(
    "/{commitment_id}/settle",
    response_model=SettlementResponse,
    status_code=201,
    summary="Settle an approved sale",
    description=(
        "Distributes the profit (or loss) of the resold asset across its "
        "investors and returns their capital."
    ),
    responses={
        **_NOT_FOUND,
        **_CONFLICT,
        **_INVALID,
        500: {"model": ErrorResponse, "description": "Ledger inconsistency"},
    },
)
async def settle_sale(
    commitment_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: SettlementEngine = Depends(_get_settlement_engine),
) -> SettlementResponse:
    settlement, lines = await engine.settle_sale(commitment_id, actor)
    return SettlementResponse.from_parts(settlement, lines)


@router.get(
    "/{commitment_id}/settlement",
    response_model=SettlementResponse,
    summary="Settlement of an asset",
    responses={404: {"model": ErrorResponse, "description": "Asset not settled"}},
)
async def get_settlement(
    commitment_id: UUID,
    engine: SettlementEngine = Depends(_get_settlement_engine),
) -> SettlementResponse:
    settlement, lines = await engine.get_settlement(commitment_id)
    return SettlementResponse.from_parts(settlement, lines)

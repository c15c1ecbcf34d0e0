"""
Investor API endpoints.

- GET    /investors                     List all investors
- POST   /investors                     Onboard a new investor
- GET    /investors/{id}                Fetch one investor
- DELETE /investors/{id}                Remove an investor with no capital deployed
- PUT    /investors/{id}/credit-limit   Change the credit limit
- GET    /investors/{id}/credit         Credit limit, utilized and remaining
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.api.deps import get_actor
from autoledger.core.config import settings
from autoledger.db.session import get_db
from autoledger.models.actor import Actor
from autoledger.models.investor import Investor
from autoledger.repositories.investor_repo import InvestorRepository
from autoledger.schemas.common import ErrorResponse, ValidationErrorResponse
from autoledger.schemas.investor import (
    CreditLimitUpdate,
    CreditResponse,
    InvestorCreate,
    InvestorResponse,
)
from autoledger.services.audit_trail import build_audit_trail
from autoledger.services.investor_service import InvestorService

router = APIRouter()


# ── Dependency injection ──


def _get_investor_service(db: AsyncSession = Depends(get_db)) -> InvestorService:
    """Build an InvestorService wired to the current request's DB session."""
    return InvestorService(InvestorRepository(Investor, db), build_audit_trail(db))


# ── Endpoints ──


@router.get(
    "",
    response_model=List[InvestorResponse],
    summary="List all investors",
    description=(
        "Returns a paginated list of investors with their credit position.  "
        "Use ``skip`` and ``limit`` to page through large result sets."
    ),
)
async def list_investors(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: InvestorService = Depends(_get_investor_service),
) -> List[InvestorResponse]:
    return await service.get_all_investors(skip=skip, limit=limit)


@router.post(
    "",
    response_model=InvestorResponse,
    status_code=201,
    summary="Onboard a new investor",
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_investor(
    investor: InvestorCreate,
    actor: Actor = Depends(get_actor),
    service: InvestorService = Depends(_get_investor_service),
) -> InvestorResponse:
    return await service.create_investor(investor, actor)


@router.get(
    "/{investor_id}",
    response_model=InvestorResponse,
    summary="Fetch an investor",
    responses={404: {"model": ErrorResponse, "description": "Investor not found"}},
)
async def get_investor(
    investor_id: UUID,
    service: InvestorService = Depends(_get_investor_service),
) -> InvestorResponse:
    return await service.get_investor(investor_id)


@router.delete(
    "/{investor_id}",
    status_code=204,
    summary="Remove an investor",
    description="Only investors with nothing utilized and no allocation history can be removed.",
    responses={
        404: {"model": ErrorResponse, "description": "Investor not found"},
        409: {"model": ErrorResponse, "description": "Investor still has capital deployed"},
    },
)
async def delete_investor(
    investor_id: UUID,
    actor: Actor = Depends(get_actor),
    service: InvestorService = Depends(_get_investor_service),
) -> Response:
    await service.delete_investor(investor_id, actor)
    return Response(status_code=204)


@router.put(
    "/{investor_id}/credit-limit",
    response_model=InvestorResponse,
    summary="Change an investor's credit limit",
    responses={
        404: {"model": ErrorResponse, "description": "Investor not found"},
        422: {
            "model": ValidationErrorResponse,
            "description": "New limit is below the utilized amount",
        },
    },
)
async def update_credit_limit(
    investor_id: UUID,
    update: CreditLimitUpdate,
    actor: Actor = Depends(get_actor),
    service: InvestorService = Depends(_get_investor_service),
) -> InvestorResponse:
    return await service.update_credit_limit(investor_id, update.credit_limit, actor)


@router.get(
    "/{investor_id}/credit",
    response_model=CreditResponse,
    summary="Remaining credit of an investor",
    responses={404: {"model": ErrorResponse, "description": "Investor not found"}},
)
async def get_credit(
    investor_id: UUID,
    service: InvestorService = Depends(_get_investor_service),
) -> CreditResponse:
    investor = await service.get_investor(investor_id)
    return CreditResponse(
        investor_id=investor.id,
        credit_limit=investor.credit_limit,
        utilized_amount=investor.utilized_amount,
        remaining_credit=investor.remaining_credit,
        currency=settings.CURRENCY,
    )

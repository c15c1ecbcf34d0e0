"""
Staff API endpoints.

- GET   /admins     List admins
- POST  /admins     Register an admin (approver)
- GET   /managers   List managers
- POST  /managers   Register a manager
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.api.deps import get_actor
from autoledger.db.session import get_db
from autoledger.models.actor import Actor
from autoledger.models.staff import Admin, Manager
from autoledger.repositories.staff_repo import AdminRepository, ManagerRepository
from autoledger.schemas.common import ErrorResponse, ValidationErrorResponse
from autoledger.schemas.staff import StaffCreate, StaffResponse
from autoledger.services.audit_trail import build_audit_trail
from autoledger.services.staff_service import StaffService

router = APIRouter()


# ── Dependency injection ──


def _get_staff_service(db: AsyncSession = Depends(get_db)) -> StaffService:
    return StaffService(
        admin_repo=AdminRepository(Admin, db),
        manager_repo=ManagerRepository(Manager, db),
        audit=build_audit_trail(db),
    )


# ── Endpoints ──


@router.get("/admins", response_model=List[StaffResponse], summary="List admins")
async def list_admins(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: StaffService = Depends(_get_staff_service),
) -> List[StaffResponse]:
    return await service.list_admins(skip=skip, limit=limit)


@router.post(
    "/admins",
    response_model=StaffResponse,
    status_code=201,
    summary="Register an admin",
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_admin(
    admin: StaffCreate,
    actor: Actor = Depends(get_actor),
    service: StaffService = Depends(_get_staff_service),
) -> StaffResponse:
    return await service.create_admin(admin, actor)


@router.get("/managers", response_model=List[StaffResponse], summary="List managers")
async def list_managers(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: StaffService = Depends(_get_staff_service),
) -> List[StaffResponse]:
    return await service.list_managers(skip=skip, limit=limit)


@router.post(
    "/managers",
    response_model=StaffResponse,
    status_code=201,
    summary="Register a manager",
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_manager(
    manager: StaffCreate,
    actor: Actor = Depends(get_actor),
    service: StaffService = Depends(_get_staff_service),
) -> StaffResponse:
    return await service.create_manager(manager, actor)

"""
Staff service: registry of admins (approvers) and managers.
"""

import logging
from typing import List

from sqlalchemy.exc import IntegrityError

from autoledger.core.exceptions import ConflictError
from autoledger.models.actor import Actor
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.staff import Admin, Manager
from autoledger.repositories.staff_repo import AdminRepository, ManagerRepository
from autoledger.schemas.staff import StaffCreate
from autoledger.services.audit_trail import AuditTrail

logger = logging.getLogger(__name__)


class StaffService:
    def __init__(
        self,
        admin_repo: AdminRepository,
        manager_repo: ManagerRepository,
        audit: AuditTrail,
    ):
        self._admins = admin_repo
        self._managers = manager_repo
        self._audit = audit

    # ── Queries ──

    async def list_admins(self, skip: int = 0, limit: int = 100) -> List[Admin]:
        return await self._admins.get_all(skip=skip, limit=limit)

    async def list_managers(self, skip: int = 0, limit: int = 100) -> List[Manager]:
        return await self._managers.get_all(skip=skip, limit=limit)

    # ── Commands ──

    async def create_admin(self, admin_in: StaffCreate, actor: Actor) -> Admin:
        email = str(admin_in.email)
        if await self._admins.get_by_email(email):
            raise ConflictError(f"An admin with email '{email}' already exists")
        try:
            admin = await self._admins.create(Admin(name=admin_in.name, email=email))
        except IntegrityError:
            await self._admins.rollback()
            raise ConflictError(f"An admin with email '{email}' already exists")

        logger.info("Created admin %s (%s)", admin.id, admin.name)
        await self._audit.append(
            category=AuditCategory.USER_MANAGEMENT,
            action="admin_created",
            description=f"Admin '{admin.name}' created",
            actor=actor,
            severity=AuditSeverity.MEDIUM,
            target_type="admin",
            target_id=admin.id,
            details={"email": email},
        )
        return admin

    async def create_manager(self, manager_in: StaffCreate, actor: Actor) -> Manager:
        email = str(manager_in.email)
        if await self._managers.get_by_email(email):
            raise ConflictError(f"A manager with email '{email}' already exists")
        try:
            manager = await self._managers.create(Manager(name=manager_in.name, email=email))
        except IntegrityError:
            await self._managers.rollback()
            raise ConflictError(f"A manager with email '{email}' already exists")

        logger.info("Created manager %s (%s)", manager.id, manager.name)
        await self._audit.append(
            category=AuditCategory.USER_MANAGEMENT,
            action="manager_created",
            description=f"Manager '{manager.name}' created",
            actor=actor,
            severity=AuditSeverity.MEDIUM,
            target_type="manager",
            target_id=manager.id,
            details={"email": email},
        )
        return manager

"""
Audit trail: append-only record of every state change.

Appends are *best-effort*.  A service first commits its own change, then
awaits :meth:`AuditTrail.append`.  The entry is written through a separate,
short-lived session: if that write fails, the error is logged with its
traceback and ``None`` is returned, while the primary change stays committed
and the request session is left untouched.

Each entry takes its ``sequence_id`` from the ``audit`` counter, so the
stream is totally ordered even when many requests write at once.  Every
entry is also mirrored to the application log as ``[AUDIT] …``.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoledger.core.exceptions import AppException
from autoledger.db.session import make_session_factory
from autoledger.models.actor import Actor, ActorKind
from autoledger.models.audit import AuditCategory, AuditEntry, AuditSeverity
from autoledger.models.investor import Investor
from autoledger.models.staff import Admin, Manager
from autoledger.repositories.audit_repo import AuditRepository
from autoledger.repositories.investor_repo import InvestorRepository
from autoledger.repositories.staff_repo import AdminRepository, ManagerRepository
from autoledger.services.sequence_generator import AUDIT_COUNTER, build_sequence_generator

logger = logging.getLogger(__name__)

_DETAILS_ADAPTER = TypeAdapter(Dict[str, Any])

SYSTEM_ACTOR_NAME = "System"


async def resolve_actor_name(session: AsyncSession, actor: Actor) -> Optional[str]:
    """Display name of ``actor``; ``None`` if the person no longer exists."""
    if actor.kind == ActorKind.SYSTEM:
        return SYSTEM_ACTOR_NAME
    if actor.kind == ActorKind.ADMIN:
        person: Optional[Admin | Manager | Investor] = await AdminRepository(
            Admin, session
        ).get(actor.id)
    elif actor.kind == ActorKind.MANAGER:
        person = await ManagerRepository(Manager, session).get(actor.id)
    elif actor.kind == ActorKind.INVESTOR:
        person = await InvestorRepository(Investor, session).get(actor.id)
    else:
        raise ValueError(f"Unknown actor kind: {actor.kind}")
    return person.name if person is not None else None


class AuditTrail:
    """
    Writes and reads audit entries.

    Parameters
    ----------
    session_factory : async_sessionmaker
        Opens the dedicated session used for each append.
    audit_repo : AuditRepository
        Request-scoped repository used for reads.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit_repo: AuditRepository,
    ):
        self._session_factory = session_factory
        self._repo = audit_repo

    # ── Queries ──

    async def list_entries(
        self,
        category: Optional[AuditCategory] = None,
        target_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditEntry]:
        return await self._repo.list_entries(
            category=category, target_id=target_id, skip=skip, limit=limit
        )

    # ── Commands ──

    async def append(
        self,
        *,
        category: AuditCategory,
        action: str,
        description: str,
        actor: Actor,
        severity: AuditSeverity = AuditSeverity.LOW,
        target_type: Optional[str] = None,
        target_id: Optional[UUID] = None,
        target_reference: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        """Record one entry.  Any failure is logged, never raised."""
        async with self._session_factory() as session:
            entries = AuditRepository(AuditEntry, session)
            try:
                actor_name = await resolve_actor_name(session, actor)
                sequence_id, reference = await build_sequence_generator(
                    session
                ).next_reference(AUDIT_COUNTER)
                entry = AuditEntry(
                    sequence_id=sequence_id,
                    reference=reference,
                    category=category,
                    action=action,
                    description=description,
                    actor_kind=actor.kind,
                    actor_id=actor.id,
                    actor_name=actor_name,
                    target_type=target_type,
                    target_id=target_id,
                    target_reference=target_reference,
                    details=_DETAILS_ADAPTER.dump_python(details or {}, mode="json"),
                    severity=severity,
                )
                await entries.add(entry)
                await entries.commit()
            except Exception:
                await entries.rollback()
                logger.exception(
                    "Audit append failed for %s/%s: %s", category.value, action, description
                )
                return None

        log = logger.warning if severity == AuditSeverity.CRITICAL else logger.info
        log("[AUDIT] %s %s: %s", reference, action, description, extra={"audit_ref": reference})
        return entry

    async def record_violation(
        self,
        exc: AppException,
        *,
        category: AuditCategory,
        actor: Actor,
        target_type: Optional[str] = None,
        target_id: Optional[UUID] = None,
        target_reference: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        """Critical entry for an invariant breach or an inconsistent ledger."""
        logger.error("%s: %s", type(exc).__name__, exc.message)
        return await self.append(
            category=category,
            action="invariant_violation",
            description=exc.message,
            actor=actor,
            severity=AuditSeverity.CRITICAL,
            target_type=target_type,
            target_id=target_id,
            target_reference=target_reference,
            details={"error": type(exc).__name__, "details": exc.details},
        )


def build_audit_trail(db: AsyncSession) -> AuditTrail:
    """Wire an :class:`AuditTrail` to the engine behind ``db``."""
    return AuditTrail(
        session_factory=make_session_factory(db.bind),
        audit_repo=AuditRepository(AuditEntry, db),
    )

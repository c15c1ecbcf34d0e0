"""
Investor service: onboarding, credit-limit edits and removal.

Duplicate emails are caught by a pre-check for a friendly message, and
again as ``IntegrityError`` for the race where two requests pass the
pre-check at once.  The unique constraint is the real guarantee.

Credit-limit edits go through one conditional ``UPDATE`` that refuses a
limit below the amount already utilized, so an edit racing a reservation
can never leave ``utilized_amount > credit_limit``.

Caching:
    ``get_all_investors`` reads through the TTL cache.  Every write here,
    and every ledger reservation or release, invalidates the
    ``investors:`` keys.
"""

import logging
from decimal import Decimal
from typing import List
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from autoledger.core.cache import cache
from autoledger.core.exceptions import ConflictError, NotFoundError, ValidationError
from autoledger.core.money import ZERO, to_money, to_percentage
from autoledger.models.actor import Actor
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.investor import Investor
from autoledger.repositories.investor_repo import InvestorRepository
from autoledger.schemas.investor import InvestorCreate
from autoledger.services.allocation_ledger import INVESTOR_CACHE_PREFIX
from autoledger.services.audit_trail import AuditTrail

logger = logging.getLogger(__name__)


class InvestorService:
    """Encapsulates CRUD + business rules for :class:`Investor`."""

    CACHE_PREFIX = INVESTOR_CACHE_PREFIX

    def __init__(self, investor_repo: InvestorRepository, audit: AuditTrail):
        self._repo = investor_repo
        self._audit = audit

    # ── Queries ──

    async def get_all_investors(self, skip: int = 0, limit: int = 100) -> List[Investor]:
        """Return a paginated list of investors (cache-backed)."""
        cache_key = f"{self.CACHE_PREFIX}list:{skip}:{limit}"
        cached = cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return cached

        investors = await self._repo.get_all(skip=skip, limit=limit)
        cache.set(cache_key, investors)
        return investors

    async def get_investor(self, investor_id: UUID) -> Investor:
        investor = await self._repo.get_fresh(investor_id)
        if investor is None:
            raise NotFoundError("Investor", investor_id)
        return investor

    # ── Commands ──

    async def create_investor(self, investor_in: InvestorCreate, actor: Actor) -> Investor:
        """
        Onboard a new investor with nothing utilized.

        Raises :class:`ConflictError` if an investor with the same email
        already exists.
        """
        email = str(investor_in.email)
        if await self._repo.get_by_email(email):
            raise ConflictError(f"An investor with email '{email}' already exists")

        investor = Investor(
            name=investor_in.name,
            email=email,
            status=investor_in.status,
            credit_limit=to_money(investor_in.credit_limit),
            utilized_amount=ZERO,
            decided_percentage_min=_opt_percentage(investor_in.decided_percentage_min),
            decided_percentage_max=_opt_percentage(investor_in.decided_percentage_max),
        )
        try:
            created = await self._repo.create(investor)
        except IntegrityError:
            await self._repo.rollback()
            logger.warning("IntegrityError caught for duplicate email '%s' (race)", email)
            raise ConflictError(f"An investor with email '{email}' already exists")

        cache.invalidate(self.CACHE_PREFIX)
        logger.info(
            "Created investor %s (%s)",
            created.id,
            created.name,
            extra={"investor_id": str(created.id)},
        )
        await self._audit.append(
            category=AuditCategory.INVESTOR,
            action="investor_created",
            description=f"Investor '{created.name}' onboarded",
            actor=actor,
            severity=AuditSeverity.MEDIUM,
            target_type="investor",
            target_id=created.id,
            details={
                "email": email,
                "credit_limit": created.credit_limit,
                "status": created.status.value,
            },
        )
        return created

    async def update_credit_limit(
        self, investor_id: UUID, new_limit: Decimal, actor: Actor
    ) -> Investor:
        """Raises :class:`ValidationError` if ``new_limit`` is below the utilized amount."""
        new_limit = to_money(new_limit)
        if new_limit < 0:
            raise ValidationError("Credit limit cannot be negative")

        current = await self.get_investor(investor_id)
        previous_limit = current.credit_limit

        if not await self._repo.set_credit_limit(investor_id, new_limit):
            await self._repo.rollback()
            investor = await self.get_investor(investor_id)
            logger.warning(
                "Rejected credit limit %s for investor %s (utilized %s)",
                new_limit,
                investor_id,
                investor.utilized_amount,
            )
            raise ValidationError(
                f"Credit limit cannot be set below the utilized amount "
                f"({investor.utilized_amount})",
                details={
                    "requested_limit": str(new_limit),
                    "utilized_amount": str(investor.utilized_amount),
                },
            )
        await self._repo.commit()
        cache.invalidate(self.CACHE_PREFIX)

        logger.info(
            "Credit limit of investor %s changed %s -> %s",
            investor_id,
            previous_limit,
            new_limit,
            extra={"investor_id": str(investor_id)},
        )
        await self._audit.append(
            category=AuditCategory.INVESTOR,
            action="credit_limit_updated",
            description=f"Credit limit changed from {previous_limit} to {new_limit}",
            actor=actor,
            severity=AuditSeverity.HIGH,
            target_type="investor",
            target_id=investor_id,
            details={"previous_limit": previous_limit, "new_limit": new_limit},
        )
        return await self.get_investor(investor_id)

    async def delete_investor(self, investor_id: UUID, actor: Actor) -> None:
        """
        Remove an investor with no capital deployed.

        Raises :class:`ConflictError` while ``utilized_amount > 0`` or while
        the investor still appears in an allocation or a settlement.
        """
        investor = await self.get_investor(investor_id)
        name = investor.name
        if investor.utilized_amount > 0:
            raise ConflictError(
                f"Investor '{name}' still has {investor.utilized_amount} utilized"
            )

        try:
            await self._repo.delete(investor_id)
        except IntegrityError:
            await self._repo.rollback()
            raise ConflictError(
                f"Investor '{name}' is referenced by allocations or settlements"
            )
        cache.invalidate(self.CACHE_PREFIX)

        logger.info("Deleted investor %s (%s)", investor_id, name)
        await self._audit.append(
            category=AuditCategory.INVESTOR,
            action="investor_deleted",
            description=f"Investor '{name}' removed",
            actor=actor,
            severity=AuditSeverity.HIGH,
            target_type="investor",
            target_id=investor_id,
        )


def _opt_percentage(value: Decimal | None) -> Decimal | None:
    return None if value is None else to_percentage(value)

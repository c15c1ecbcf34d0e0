"""
Allocation ledger: investor credit and the funding split of each asset.

Invariants:

- ``0 ≤ utilized_amount ≤ credit_limit`` for every investor at all times.
  Reservations are one conditional ``UPDATE`` (see
  :meth:`InvestorRepository.reserve_credit`), so two concurrent reservations
  can never jointly exceed the limit.
- A recorded split satisfies ``Σ percentage = 100`` and
  ``Σ amount = total_amount``, both within 0.01, and each investor's share
  lies inside their decided percentage range when one is set.
- Releases floor at zero only to absorb rounding drift of at most
  ``LEDGER_DRIFT_EPSILON``.  Anything larger is an
  :class:`InvariantViolationError`, never silently clamped.

``stage_reserve`` / ``stage_release`` run inside the caller's transaction
and are what :meth:`fund_commitment` and the settlement engine build on.
``reserve`` / ``release`` are the standalone, self-committing versions.
"""

import logging
from decimal import Decimal
from typing import List, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.core.cache import cache
from autoledger.core.config import settings
from autoledger.core.exceptions import (
    AlreadyApprovedError,
    AppException,
    ConflictError,
    InsufficientCreditError,
    InvariantViolationError,
    NotFoundError,
    OutOfRangeError,
    ValidationError,
)
from autoledger.core.money import HUNDRED, to_money, to_percentage, total, within
from autoledger.models.actor import Actor
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.commitment import (
    ApprovalStatus,
    CapitalCommitment,
    CommitmentAllocation,
    FundingStatus,
)
from autoledger.models.investor import Investor, InvestorStatus
from autoledger.repositories.commitment_repo import CommitmentRepository
from autoledger.repositories.investor_repo import InvestorRepository
from autoledger.schemas.commitment import AllocationIn
from autoledger.services.audit_trail import AuditTrail

logger = logging.getLogger(__name__)

INVESTOR_CACHE_PREFIX = "investors:"


class AllocationLedger:
    def __init__(
        self,
        investor_repo: InvestorRepository,
        commitment_repo: CommitmentRepository,
        audit: AuditTrail,
    ):
        self._investors = investor_repo
        self._commitments = commitment_repo
        self._audit = audit

    # ── Queries ──

    async def remaining_credit(self, investor_id: UUID) -> Decimal:
        """``credit_limit − utilized_amount``, read straight from the database."""
        investor = await self._investors.get_fresh(investor_id)
        if investor is None:
            raise NotFoundError("Investor", investor_id)
        return investor.remaining_credit

    # ── Staged ledger mutations (caller commits) ──

    async def stage_reserve(self, investor_id: UUID, amount: Decimal) -> None:
        """Reserve ``amount`` of the investor's credit in the open transaction."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Reservation amount must be positive")
        if await self._investors.reserve_credit(investor_id, amount):
            return

        investor = await self._investors.get_fresh(investor_id)
        if investor is None:
            raise NotFoundError("Investor", investor_id)
        raise InsufficientCreditError(investor_id, amount, investor.remaining_credit)

    async def stage_release(self, investor_id: UUID, amount: Decimal) -> None:
        """Release ``amount`` of the investor's utilized credit in the open transaction."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Release amount must be positive")
        if await self._investors.release_credit(
            investor_id, amount, settings.LEDGER_DRIFT_EPSILON
        ):
            return

        investor = await self._investors.get_fresh(investor_id)
        if investor is None:
            raise NotFoundError("Investor", investor_id)
        raise InvariantViolationError(
            f"Releasing {amount} from investor '{investor_id}' would drive its utilized "
            f"amount to {investor.utilized_amount - amount}",
            details={
                "investor_id": str(investor_id),
                "utilized_amount": str(investor.utilized_amount),
                "release_amount": str(amount),
            },
        )

    # ── Standalone ledger mutations ──

    async def reserve(
        self, investor_id: UUID, amount: Decimal, actor: Actor | None = None
    ) -> Investor:
        """Reserve credit and commit.  Raises ``InsufficientCreditError``."""
        actor = actor or Actor.system()
        try:
            await self.stage_reserve(investor_id, amount)
        except AppException:
            await self._investors.rollback()
            raise
        await self._investors.commit()
        cache.invalidate(INVESTOR_CACHE_PREFIX)

        logger.info(
            "Reserved %s for investor %s",
            to_money(amount),
            investor_id,
            extra={"investor_id": str(investor_id)},
        )
        await self._audit.append(
            category=AuditCategory.INVESTOR,
            action="credit_reserved",
            description=f"Reserved {to_money(amount)} {settings.CURRENCY} of credit",
            actor=actor,
            severity=AuditSeverity.MEDIUM,
            target_type="investor",
            target_id=investor_id,
            details={"amount": to_money(amount)},
        )
        return await self._investors.get_fresh(investor_id)

    async def release(
        self, investor_id: UUID, amount: Decimal, actor: Actor | None = None
    ) -> Investor:
        """Release credit and commit.  Raises ``InvariantViolationError`` on underflow."""
        actor = actor or Actor.system()
        try:
            await self.stage_release(investor_id, amount)
        except InvariantViolationError as exc:
            await self._investors.rollback()
            await self._audit.record_violation(
                exc,
                category=AuditCategory.INVESTOR,
                actor=actor,
                target_type="investor",
                target_id=investor_id,
            )
            raise
        except AppException:
            await self._investors.rollback()
            raise
        await self._investors.commit()
        cache.invalidate(INVESTOR_CACHE_PREFIX)

        logger.info(
            "Released %s for investor %s",
            to_money(amount),
            investor_id,
            extra={"investor_id": str(investor_id)},
        )
        await self._audit.append(
            category=AuditCategory.INVESTOR,
            action="credit_released",
            description=f"Released {to_money(amount)} {settings.CURRENCY} of credit",
            actor=actor,
            severity=AuditSeverity.MEDIUM,
            target_type="investor",
            target_id=investor_id,
            details={"amount": to_money(amount)},
        )
        return await self._investors.get_fresh(investor_id)

    # ── Allocation split ──

    async def record_allocation(
        self, asset_id: UUID, allocations: Sequence[AllocationIn], actor: Actor
    ) -> List[CommitmentAllocation]:
        """
        Record (or replace) how the purchase of ``asset_id`` is split.

        Only allowed on a purchase that has not been submitted for approval
        yet; once an approver has signed, the split is frozen until the
        approvals are reset.
        """
        commitment = await self._load_purchase(asset_id)
        reference, version = commitment.reference, commitment.version
        if commitment.funding_status in (FundingStatus.FUNDED, FundingStatus.SETTLED):
            raise ConflictError(
                f"Commitment {reference} is already {commitment.funding_status.value}"
            )
        if commitment.approval_status == ApprovalStatus.APPROVED:
            raise AlreadyApprovedError(reference)
        if commitment.approval_status == ApprovalStatus.PENDING:
            raise ConflictError(
                f"Commitment {reference} has approvals in progress; reset them before "
                f"changing the allocation"
            )

        rows = await self._validate_split(commitment, allocations)

        try:
            swapped = await self._commitments.compare_and_swap(
                asset_id, version, funding_status=FundingStatus.ALLOCATED
            )
            if not swapped:
                await self._commitments.rollback()
                raise ConflictError(f"Commitment {reference} was modified concurrently; retry")
            await self._commitments.stage_allocations(asset_id, rows)
            await self._commitments.commit()
        except IntegrityError as exc:
            await self._commitments.rollback()
            logger.warning("IntegrityError recording allocation for %s: %s", reference, exc)
            raise ValidationError(
                "Allocation could not be recorded: an investor may have been removed"
            )

        split = [
            {"investor_id": r.investor_id, "amount": r.amount, "percentage": r.percentage}
            for r in rows
        ]
        logger.info(
            "Recorded %d-way allocation on %s",
            len(rows),
            reference,
            extra={"commitment_id": str(asset_id)},
        )
        await self._audit.append(
            category=AuditCategory.PURCHASE_ORDER,
            action="allocation_recorded",
            description=f"Allocation split across {len(rows)} investor(s) on {reference}",
            actor=actor,
            severity=AuditSeverity.MEDIUM,
            target_type="commitment",
            target_id=asset_id,
            target_reference=reference,
            details={"allocations": split},
        )
        return rows

    async def fund_commitment(self, asset_id: UUID, actor: Actor) -> CapitalCommitment:
        """
        Reserve every allocation of an approved purchase, all or nothing.

        If any investor lacks credit the whole funding is rolled back and
        ``InsufficientCreditError`` names that investor.
        """
        commitment = await self._load_purchase(asset_id)
        reference, version = commitment.reference, commitment.version
        if commitment.approval_status != ApprovalStatus.APPROVED:
            raise ConflictError(f"Commitment {reference} must be approved before funding")
        if commitment.funding_status in (FundingStatus.FUNDED, FundingStatus.SETTLED):
            raise ConflictError(f"Commitment {reference} is already funded")
        if commitment.funding_status == FundingStatus.DRAFT:
            raise ValidationError(f"Commitment {reference} has no allocation recorded")

        allocations = await self._commitments.get_allocations(asset_id)
        split = [(a.investor_id, a.amount) for a in allocations]

        try:
            swapped = await self._commitments.compare_and_swap(
                asset_id, version, funding_status=FundingStatus.FUNDED
            )
            if not swapped:
                raise ConflictError(f"Commitment {reference} was modified concurrently; retry")
            for investor_id, amount in split:
                await self.stage_reserve(investor_id, amount)
            await self._commitments.commit()
        except AppException:
            await self._commitments.rollback()
            raise
        cache.invalidate(INVESTOR_CACHE_PREFIX)

        logger.info(
            "Funded %s: reserved %s across %d investor(s)",
            reference,
            total(amount for _, amount in split),
            len(split),
            extra={"commitment_id": str(asset_id)},
        )
        await self._audit.append(
            category=AuditCategory.PURCHASE_ORDER,
            action="commitment_funded",
            description=f"Capital reserved for {reference}",
            actor=actor,
            severity=AuditSeverity.HIGH,
            target_type="commitment",
            target_id=asset_id,
            target_reference=reference,
            details={
                "reservations": [
                    {"investor_id": investor_id, "amount": amount}
                    for investor_id, amount in split
                ]
            },
        )
        return await self._commitments.get_fresh(asset_id)

    # ── Helpers ──

    async def _load_purchase(self, asset_id: UUID) -> CapitalCommitment:
        commitment = await self._commitments.get_fresh(asset_id)
        if commitment is None:
            raise NotFoundError("Commitment", asset_id)
        if not commitment.is_purchase:
            raise ValidationError(
                f"Commitment {commitment.reference} is a {commitment.kind.value}, "
                f"not a purchase"
            )
        return commitment

    async def _validate_split(
        self, commitment: CapitalCommitment, allocations: Sequence[AllocationIn]
    ) -> List[CommitmentAllocation]:
        if not allocations:
            raise ValidationError("At least one allocation is required")

        investor_ids = [a.investor_id for a in allocations]
        if len(set(investor_ids)) != len(investor_ids):
            raise ValidationError("An investor may appear only once in an allocation")

        amounts = [to_money(a.amount) for a in allocations]
        percentages = [to_percentage(a.percentage) for a in allocations]
        if any(a <= 0 for a in amounts) or any(p <= 0 or p > HUNDRED for p in percentages):
            raise ValidationError(
                "Allocation amounts must be positive and percentages within (0, 100]"
            )

        percentage_sum = total(percentages)
        if not within(percentage_sum, HUNDRED, settings.PERCENTAGE_TOLERANCE):
            raise ValidationError(
                f"Allocation percentages must sum to 100 (got {percentage_sum})",
                details={"percentage_sum": str(percentage_sum)},
            )
        amount_sum = total(amounts)
        if not within(amount_sum, commitment.total_amount, settings.AMOUNT_TOLERANCE):
            raise ValidationError(
                f"Allocation amounts must sum to {commitment.total_amount} (got {amount_sum})",
                details={
                    "amount_sum": str(amount_sum),
                    "total_amount": str(commitment.total_amount),
                },
            )

        investors = {i.id: i for i in await self._investors.get_many(investor_ids)}
        for investor_id, percentage in zip(investor_ids, percentages):
            investor = investors.get(investor_id)
            if investor is None:
                raise NotFoundError("Investor", investor_id)
            if investor.status == InvestorStatus.INACTIVE:
                raise ValidationError(f"Investor '{investor.name}' is inactive")
            if not investor.accepts_percentage(percentage):
                raise OutOfRangeError(
                    f"Investor '{investor.name}' accepts between "
                    f"{investor.decided_percentage_min}% and "
                    f"{investor.decided_percentage_max}% (got {percentage}%)",
                    details={
                        "investor_id": str(investor_id),
                        "percentage": str(percentage),
                        "min": _opt_str(investor.decided_percentage_min),
                        "max": _opt_str(investor.decided_percentage_max),
                    },
                )

        return [
            CommitmentAllocation(
                commitment_id=commitment.id,
                investor_id=investor_id,
                position=position,
                amount=amount,
                percentage=percentage,
            )
            for position, (investor_id, amount, percentage) in enumerate(
                zip(investor_ids, amounts, percentages)
            )
        ]


def _opt_str(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def build_allocation_ledger(db: AsyncSession, audit: AuditTrail) -> AllocationLedger:
    return AllocationLedger(
        investor_repo=InvestorRepository(Investor, db),
        commitment_repo=CommitmentRepository(CapitalCommitment, db),
        audit=audit,
    )

"""
Settlement engine: profit distribution and capital return on resale.

``settle`` validates everything first and only then touches the ledger.
The state change on the asset (and on its sale, when there is one), every
capital release and the settlement rows are committed in one transaction,
so a failure at any step leaves no partial release behind.

Profit split
------------
Each investor's share is ``round(profit × percentage / 100, 2)``
(``ROUND_HALF_UP``).  Whatever the rounded shares miss of
``round(profit, 2)`` is added in full to the **largest** allocation:
highest percentage, then highest amount, ties broken by allocation order.
The shares therefore always sum to the rounded profit exactly, and the
result does not depend on processing order.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from autoledger.core.cache import cache
from autoledger.core.config import settings
from autoledger.core.exceptions import (
    AppException,
    ConflictError,
    InconsistentLedgerError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from autoledger.core.money import HUNDRED, ZERO, to_money, total, within
from autoledger.models.actor import Actor
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.commitment import (
    ApprovalStatus,
    CapitalCommitment,
    CommitmentAllocation,
    CommitmentKind,
    FundingStatus,
)
from autoledger.models.settlement import Settlement, SettlementLine
from autoledger.repositories.commitment_repo import CommitmentRepository
from autoledger.repositories.settlement_repo import SettlementRepository
from autoledger.services.allocation_ledger import INVESTOR_CACHE_PREFIX, AllocationLedger
from autoledger.services.audit_trail import AuditTrail
from autoledger.services.sequence_generator import SETTLEMENT_COUNTER, SequenceGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutLine:
    """Computed payout of one investor, before it is persisted."""

    investor_id: UUID
    investment_amount: Decimal
    investment_percentage: Decimal
    profit_amount: Decimal
    profit_percentage: Decimal
    total_payout: Decimal


def largest_allocation_index(allocations: Sequence[CommitmentAllocation]) -> int:
    """Index of the allocation that absorbs the rounding residual."""
    best = 0
    for index, allocation in enumerate(allocations):
        leader = allocations[best]
        if (allocation.percentage, allocation.amount) > (leader.percentage, leader.amount):
            best = index
    return best


def split_profit(
    profit: Decimal, allocations: Sequence[CommitmentAllocation]
) -> List[PayoutLine]:
    """
    Distribute ``profit`` (possibly negative) across ``allocations``.

    Parameters
    ----------
    profit : Decimal
        ``selling_price − purchase_price``.
    allocations : Sequence[CommitmentAllocation]
        The asset's split, in allocation order.

    Returns
    -------
    List[PayoutLine]
        One line per allocation, same order, with
        ``Σ profit_amount == round(profit, 2)``.
    """
    if not allocations:
        return []

    rounded_profit = to_money(profit)
    shares = [to_money(profit * a.percentage / HUNDRED) for a in allocations]
    residual = rounded_profit - total(shares)
    if residual != ZERO:
        shares[largest_allocation_index(allocations)] += residual

    lines = []
    for allocation, share in zip(allocations, shares):
        lines.append(
            PayoutLine(
                investor_id=allocation.investor_id,
                investment_amount=allocation.amount,
                investment_percentage=allocation.percentage,
                profit_amount=share,
                profit_percentage=to_money(share / allocation.amount * HUNDRED),
                total_payout=allocation.amount + share,
            )
        )
    return lines


class SettlementEngine:
    def __init__(
        self,
        commitment_repo: CommitmentRepository,
        settlement_repo: SettlementRepository,
        ledger: AllocationLedger,
        sequences: SequenceGenerator,
        audit: AuditTrail,
    ):
        self._commitments = commitment_repo
        self._settlements = settlement_repo
        self._ledger = ledger
        self._sequences = sequences
        self._audit = audit

    # ── Queries ──

    async def get_settlement(self, asset_id: UUID) -> Tuple[Settlement, List[SettlementLine]]:
        settlement = await self._settlements.get_by_asset(asset_id)
        if settlement is None:
            raise NotFoundError("Settlement for asset", asset_id)
        lines = await self._settlements.get_lines(settlement.id)
        return settlement, lines

    # ── Commands ──

    async def settle_sale(
        self, sale_id: UUID, actor: Actor
    ) -> Tuple[Settlement, List[SettlementLine]]:
        """Settle the asset of an approved sale at the sale's total amount."""
        sale = await self._commitments.get_fresh(sale_id)
        if sale is None:
            raise NotFoundError("Commitment", sale_id)
        if sale.kind != CommitmentKind.SALE:
            raise ValidationError(f"Commitment {sale.reference} is not a sale")
        if sale.funding_status == FundingStatus.SETTLED:
            raise ConflictError(f"Sale {sale.reference} is already settled")
        if sale.approval_status != ApprovalStatus.APPROVED:
            raise ConflictError(f"Sale {sale.reference} must be approved before settlement")

        return await self.settle(sale.asset_id, sale.total_amount, sale=sale, actor=actor)

    async def settle(
        self,
        asset_id: UUID,
        selling_price: Decimal,
        *,
        sale: Optional[CapitalCommitment] = None,
        actor: Optional[Actor] = None,
    ) -> Tuple[Settlement, List[SettlementLine]]:
        """
        Compute payouts for ``asset_id``, release every investor's capital
        and write the settlement.

        Raises ``InconsistentLedgerError`` (audited critical, nothing released)
        when the allocations are missing or do not reconcile with the
        purchase total.
        """
        actor = actor or Actor.system()
        selling_price = to_money(selling_price)
        if selling_price <= 0:
            raise ValidationError("Selling price must be positive")

        asset = await self._commitments.get_fresh(asset_id)
        if asset is None:
            raise NotFoundError("Commitment", asset_id)
        reference = asset.reference
        if not asset.is_purchase:
            raise ValidationError(f"Commitment {reference} is not a purchase")
        if asset.funding_status == FundingStatus.SETTLED:
            raise ConflictError(f"Asset {reference} is already settled")
        if asset.funding_status != FundingStatus.FUNDED:
            raise ConflictError(f"Asset {reference} must be funded before settlement")
        asset_version = asset.version
        purchase_price = asset.total_amount

        allocations = await self._commitments.get_allocations(asset_id)
        try:
            self._check_reconciles(reference, purchase_price, allocations)
        except InconsistentLedgerError as exc:
            await self._audit.record_violation(
                exc,
                category=AuditCategory.SALES,
                actor=actor,
                target_type="commitment",
                target_id=asset_id,
                target_reference=reference,
            )
            raise

        profit = selling_price - purchase_price
        lines = split_profit(profit, allocations)
        sale_id = sale.id if sale is not None else None
        sale_version = sale.version if sale is not None else None

        try:
            if not await self._commitments.compare_and_swap(
                asset_id, asset_version, funding_status=FundingStatus.SETTLED
            ):
                raise ConflictError(f"Asset {reference} was modified concurrently; retry")
            if sale_id is not None and not await self._commitments.compare_and_swap(
                sale_id, sale_version, funding_status=FundingStatus.SETTLED
            ):
                raise ConflictError("Sale was modified concurrently; retry")

            for line in lines:
                await self._ledger.stage_release(line.investor_id, line.investment_amount)

            _, settlement_ref = await self._sequences.next_reference(SETTLEMENT_COUNTER)
            settlement = Settlement(
                reference=settlement_ref,
                asset_id=asset_id,
                sale_id=sale_id,
                selling_price=selling_price,
                purchase_price=purchase_price,
                profit=to_money(profit),
                profit_percentage=to_money(profit / purchase_price * HUNDRED),
                settled_by_kind=actor.kind,
                settled_by_id=actor.id,
            )
            await self._settlements.add(settlement)
            await self._settlements.add(
                *[
                    SettlementLine(
                        settlement_id=settlement.id,
                        position=position,
                        investor_id=line.investor_id,
                        investment_amount=line.investment_amount,
                        investment_percentage=line.investment_percentage,
                        profit_amount=line.profit_amount,
                        profit_percentage=line.profit_percentage,
                        total_payout=line.total_payout,
                    )
                    for position, line in enumerate(lines)
                ]
            )
            settlement_id = settlement.id
            await self._settlements.commit()
        except InvariantViolationError as exc:
            await self._settlements.rollback()
            await self._audit.record_violation(
                exc,
                category=AuditCategory.SALES,
                actor=actor,
                target_type="commitment",
                target_id=asset_id,
                target_reference=reference,
            )
            raise
        except AppException:
            await self._settlements.rollback()
            raise
        cache.invalidate(INVESTOR_CACHE_PREFIX)

        logger.info(
            "Settled %s as %s: selling price %s, profit %s across %d investor(s)",
            reference,
            settlement_ref,
            selling_price,
            to_money(profit),
            len(lines),
            extra={"commitment_id": str(asset_id)},
        )
        await self._audit.append(
            category=AuditCategory.SALES,
            action="asset_settled",
            description=(
                f"Asset {reference} settled at {selling_price} {settings.CURRENCY} "
                f"({settlement_ref})"
            ),
            actor=actor,
            severity=AuditSeverity.CRITICAL,
            target_type="settlement",
            target_id=settlement_id,
            target_reference=settlement_ref,
            details={
                "asset_id": asset_id,
                "sale_id": sale_id,
                "selling_price": selling_price,
                "purchase_price": purchase_price,
                "profit": to_money(profit),
                "payouts": [
                    {
                        "investor_id": line.investor_id,
                        "profit_amount": line.profit_amount,
                        "total_payout": line.total_payout,
                    }
                    for line in lines
                ],
            },
        )
        return await self.get_settlement(asset_id)

    # ── Helpers ──

    @staticmethod
    def _check_reconciles(
        reference: str, purchase_price: Decimal, allocations: Sequence[CommitmentAllocation]
    ) -> None:
        if not allocations:
            raise InconsistentLedgerError(
                f"Asset {reference} is funded but has no allocations",
                details={"reference": reference},
            )
        amount_sum = total(a.amount for a in allocations)
        percentage_sum = total(a.percentage for a in allocations)
        if not within(amount_sum, purchase_price, settings.AMOUNT_TOLERANCE) or not within(
            percentage_sum, HUNDRED, settings.PERCENTAGE_TOLERANCE
        ):
            raise InconsistentLedgerError(
                f"Allocations of {reference} do not reconcile with its purchase price",
                details={
                    "reference": reference,
                    "purchase_price": str(purchase_price),
                    "amount_sum": str(amount_sum),
                    "percentage_sum": str(percentage_sum),
                },
            )

"""
Tests for the allocation ledger against a real SQLite database.

Covers:
- reserve / release and the ``0 ≤ utilized ≤ limit`` invariant (Scenario A)
- release drift floor vs. invariant violation
- record_allocation split rules
- fund_commitment all-or-nothing reservation
"""

import uuid
from decimal import Decimal

import pytest

from autoledger.core.config import settings
from autoledger.core.exceptions import (
    AlreadyApprovedError,
    ConflictError,
    InsufficientCreditError,
    InvariantViolationError,
    NotFoundError,
    OutOfRangeError,
    ValidationError,
)
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.commitment import FundingStatus
from autoledger.models.investor import InvestorStatus
from autoledger.schemas.commitment import AllocationIn

from .conftest import SYSTEM


def _alloc(investor_id, amount: str, pct: str) -> AllocationIn:
    return AllocationIn(investor_id=investor_id, amount=Decimal(amount), percentage=Decimal(pct))


# ────────────────────────────────────────────────────────────────────────────
# reserve / release
# ────────────────────────────────────────────────────────────────────────────


class TestReserve:
    @pytest.mark.asyncio
    async def test_scenario_a_second_reservation_rejected(self, svc):
        investor_id = await svc.add_investor("Investor X", "100000")

        investor = await svc.ledger.reserve(investor_id, Decimal("60000"))
        assert investor.utilized_amount == Decimal("60000.00")

        with pytest.raises(InsufficientCreditError) as exc_info:
            await svc.ledger.reserve(investor_id, Decimal("50000"))
        assert exc_info.value.status_code == 422
        assert exc_info.value.details["remaining"] == "40000.00"

        investor = await svc.investor(investor_id)
        assert investor.utilized_amount == Decimal("60000.00")

    @pytest.mark.asyncio
    async def test_reserve_exactly_remaining_succeeds(self, svc):
        investor_id = await svc.add_investor("Investor X", "1000")
        investor = await svc.ledger.reserve(investor_id, Decimal("1000"))
        assert investor.utilized_amount == investor.credit_limit
        assert await svc.ledger.remaining_credit(investor_id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_cents_add_up_to_exact_limit(self, svc):
        investor_id = await svc.add_investor("Investor X", "0.30")

        await svc.ledger.reserve(investor_id, Decimal("0.10"))
        investor = await svc.ledger.reserve(investor_id, Decimal("0.20"))

        assert investor.utilized_amount == Decimal("0.30")
        assert await svc.ledger.remaining_credit(investor_id) == Decimal("0")
        with pytest.raises(InsufficientCreditError):
            await svc.ledger.reserve(investor_id, Decimal("0.01"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5"])
    async def test_non_positive_amount_rejected(self, svc, amount):
        investor_id = await svc.add_investor("Investor X")
        with pytest.raises(ValidationError):
            await svc.ledger.reserve(investor_id, Decimal(amount))

    @pytest.mark.asyncio
    async def test_unknown_investor(self, svc):
        with pytest.raises(NotFoundError):
            await svc.ledger.reserve(uuid.uuid4(), Decimal("10"))

    @pytest.mark.asyncio
    async def test_reserve_is_audited(self, svc):
        investor_id = await svc.add_investor("Investor X")
        await svc.ledger.reserve(investor_id, Decimal("10"))

        entries = await svc.audit.list_entries(target_id=investor_id)
        assert [e.action for e in entries] == ["credit_reserved"]
        assert entries[0].category == AuditCategory.INVESTOR
        assert entries[0].details == {"amount": "10.00"}


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_returns_credit(self, svc):
        investor_id = await svc.add_investor("Investor X", "100000")
        await svc.ledger.reserve(investor_id, Decimal("60000"))

        investor = await svc.ledger.release(investor_id, Decimal("20000"))

        assert investor.utilized_amount == Decimal("40000.00")
        assert await svc.ledger.remaining_credit(investor_id) == Decimal("60000.00")

    @pytest.mark.asyncio
    async def test_release_in_cents_returns_to_zero(self, svc):
        investor_id = await svc.add_investor("Investor X", "0.30")
        await svc.ledger.reserve(investor_id, Decimal("0.30"))

        await svc.ledger.release(investor_id, Decimal("0.10"))
        investor = await svc.ledger.release(investor_id, Decimal("0.20"))

        assert investor.utilized_amount == Decimal("0")
        assert await svc.ledger.remaining_credit(investor_id) == Decimal("0.30")

    @pytest.mark.asyncio
    async def test_drift_within_epsilon_floors_at_zero(self, svc, monkeypatch):
        monkeypatch.setattr(settings, "LEDGER_DRIFT_EPSILON", Decimal("0.05"))
        investor_id = await svc.add_investor("Investor X")
        await svc.ledger.reserve(investor_id, Decimal("100.00"))

        investor = await svc.ledger.release(investor_id, Decimal("100.02"))

        assert investor.utilized_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_underflow_beyond_epsilon_is_invariant_violation(self, svc):
        investor_id = await svc.add_investor("Investor X")
        await svc.ledger.reserve(investor_id, Decimal("100.00"))

        with pytest.raises(InvariantViolationError) as exc_info:
            await svc.ledger.release(investor_id, Decimal("150.00"))
        assert exc_info.value.status_code == 500

        investor = await svc.investor(investor_id)
        assert investor.utilized_amount == Decimal("100.00")

        entries = await svc.audit.list_entries(target_id=investor_id)
        violation = entries[-1]
        assert violation.action == "invariant_violation"
        assert violation.severity == AuditSeverity.CRITICAL


# ────────────────────────────────────────────────────────────────────────────
# record_allocation
# ────────────────────────────────────────────────────────────────────────────


class TestRecordAllocation:
    @pytest.mark.asyncio
    async def test_records_split_and_marks_allocated(self, svc):
        x = await svc.add_investor("Investor X")
        y = await svc.add_investor("Investor Y")
        asset_id = await svc.open_purchase("58000")

        rows = await svc.ledger.record_allocation(
            asset_id, [_alloc(x, "40600", "70"), _alloc(y, "17400", "30")], SYSTEM
        )

        assert [r.investor_id for r in rows] == [x, y]
        view = await svc.commitments.get_commitment(asset_id)
        assert view.funding_status == FundingStatus.ALLOCATED
        assert [a.amount for a in view.allocations] == [Decimal("40600.00"), Decimal("17400.00")]

    @pytest.mark.asyncio
    async def test_replaces_previous_split(self, svc):
        x = await svc.add_investor("Investor X")
        y = await svc.add_investor("Investor Y")
        asset_id = await svc.open_purchase("1000")

        await svc.ledger.record_allocation(asset_id, [_alloc(x, "1000", "100")], SYSTEM)
        await svc.ledger.record_allocation(
            asset_id, [_alloc(x, "500", "50"), _alloc(y, "500", "50")], SYSTEM
        )

        view = await svc.commitments.get_commitment(asset_id)
        assert len(view.allocations) == 2

    @pytest.mark.asyncio
    async def test_percentages_within_tolerance_accepted(self, svc):
        x = await svc.add_investor("Investor X")
        y = await svc.add_investor("Investor Y")
        asset_id = await svc.open_purchase("1000")

        rows = await svc.ledger.record_allocation(
            asset_id, [_alloc(x, "333.33", "33.33"), _alloc(y, "666.67", "66.66")], SYSTEM
        )
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_percentages_not_summing_to_100(self, svc):
        x = await svc.add_investor("Investor X")
        y = await svc.add_investor("Investor Y")
        asset_id = await svc.open_purchase("1000")

        with pytest.raises(ValidationError, match="sum to 100"):
            await svc.ledger.record_allocation(
                asset_id, [_alloc(x, "500", "50"), _alloc(y, "500", "49.9")], SYSTEM
            )

    @pytest.mark.asyncio
    async def test_amounts_not_summing_to_total(self, svc):
        x = await svc.add_investor("Investor X")
        y = await svc.add_investor("Investor Y")
        asset_id = await svc.open_purchase("1000")

        with pytest.raises(ValidationError, match="sum to 1000.00"):
            await svc.ledger.record_allocation(
                asset_id, [_alloc(x, "500", "50"), _alloc(y, "400", "50")], SYSTEM
            )

    @pytest.mark.asyncio
    async def test_duplicate_investor(self, svc):
        x = await svc.add_investor("Investor X")
        asset_id = await svc.open_purchase("1000")

        with pytest.raises(ValidationError, match="only once"):
            await svc.ledger.record_allocation(
                asset_id, [_alloc(x, "500", "50"), _alloc(x, "500", "50")], SYSTEM
            )

    @pytest.mark.asyncio
    async def test_unknown_investor(self, svc):
        asset_id = await svc.open_purchase("1000")
        with pytest.raises(NotFoundError):
            await svc.ledger.record_allocation(
                asset_id, [_alloc(uuid.uuid4(), "1000", "100")], SYSTEM
            )

    @pytest.mark.asyncio
    async def test_inactive_investor(self, svc):
        x = await svc.add_investor("Investor X", status=InvestorStatus.INACTIVE)
        asset_id = await svc.open_purchase("1000")
        with pytest.raises(ValidationError, match="inactive"):
            await svc.ledger.record_allocation(asset_id, [_alloc(x, "1000", "100")], SYSTEM)

    @pytest.mark.asyncio
    async def test_percentage_outside_decided_range(self, svc):
        x = await svc.add_investor("Investor X", pct_min="10", pct_max="60")
        y = await svc.add_investor("Investor Y")
        asset_id = await svc.open_purchase("1000")

        with pytest.raises(OutOfRangeError) as exc_info:
            await svc.ledger.record_allocation(
                asset_id, [_alloc(x, "700", "70"), _alloc(y, "300", "30")], SYSTEM
            )
        assert exc_info.value.status_code == 422
        assert Decimal(exc_info.value.details["max"]) == Decimal("60")

    @pytest.mark.asyncio
    async def test_sale_cannot_be_allocated(self, svc, approvers):
        x = await svc.add_investor("Investor X")
        asset_id = await svc.funded_asset("1000", [(x, "1000", "100")], approvers)
        sale_id = await svc.open_sale(asset_id, "1200")

        with pytest.raises(ValidationError, match="not a purchase"):
            await svc.ledger.record_allocation(sale_id, [_alloc(x, "1200", "100")], SYSTEM)

    @pytest.mark.asyncio
    async def test_pending_commitment_is_frozen(self, svc, approvers):
        x = await svc.add_investor("Investor X")
        asset_id = await svc.open_purchase("1000")
        await svc.ledger.record_allocation(asset_id, [_alloc(x, "1000", "100")], SYSTEM)
        await svc.approve(asset_id, approvers[0])

        with pytest.raises(ConflictError, match="reset"):
            await svc.ledger.record_allocation(asset_id, [_alloc(x, "1000", "100")], SYSTEM)

    @pytest.mark.asyncio
    async def test_approved_commitment_is_frozen(self, svc, approvers):
        x = await svc.add_investor("Investor X")
        asset_id = await svc.open_purchase("1000")
        await svc.ledger.record_allocation(asset_id, [_alloc(x, "1000", "100")], SYSTEM)
        await svc.approve(asset_id, *approvers)

        with pytest.raises(AlreadyApprovedError):
            await svc.ledger.record_allocation(asset_id, [_alloc(x, "1000", "100")], SYSTEM)


# ────────────────────────────────────────────────────────────────────────────
# fund_commitment
# ────────────────────────────────────────────────────────────────────────────


class TestFundCommitment:
    @pytest.mark.asyncio
    async def test_reserves_every_allocation(self, svc, approvers):
        x = await svc.add_investor("Investor X", "100000")
        y = await svc.add_investor("Investor Y", "100000")

        asset_id = await svc.funded_asset(
            "58000", [(x, "40600", "70"), (y, "17400", "30")], approvers
        )

        assert (await svc.investor(x)).utilized_amount == Decimal("40600.00")
        assert (await svc.investor(y)).utilized_amount == Decimal("17400.00")
        view = await svc.commitments.get_commitment(asset_id)
        assert view.funding_status == FundingStatus.FUNDED

    @pytest.mark.asyncio
    async def test_all_or_nothing(self, svc, approvers):
        x = await svc.add_investor("Investor X", "100000")
        y = await svc.add_investor("Investor Y", "10000")
        asset_id = await svc.open_purchase("58000")
        await svc.ledger.record_allocation(
            asset_id, [_alloc(x, "40600", "70"), _alloc(y, "17400", "30")], SYSTEM
        )
        await svc.approve(asset_id, *approvers)

        with pytest.raises(InsufficientCreditError) as exc_info:
            await svc.ledger.fund_commitment(asset_id, SYSTEM)
        assert exc_info.value.details["investor_id"] == str(y)

        assert (await svc.investor(x)).utilized_amount == Decimal("0")
        view = await svc.commitments.get_commitment(asset_id)
        assert view.funding_status == FundingStatus.ALLOCATED

    @pytest.mark.asyncio
    async def test_requires_approval(self, svc):
        x = await svc.add_investor("Investor X")
        asset_id = await svc.open_purchase("1000")
        await svc.ledger.record_allocation(asset_id, [_alloc(x, "1000", "100")], SYSTEM)

        with pytest.raises(ConflictError, match="approved"):
            await svc.ledger.fund_commitment(asset_id, SYSTEM)

    @pytest.mark.asyncio
    async def test_requires_allocation(self, svc, approvers):
        asset_id = await svc.open_purchase("1000")
        with pytest.raises(ValidationError, match="no allocation"):
            await svc.approve(asset_id, *approvers)

        with pytest.raises(ConflictError, match="approved"):
            await svc.ledger.fund_commitment(asset_id, SYSTEM)

    @pytest.mark.asyncio
    async def test_cannot_fund_twice(self, svc, approvers):
        x = await svc.add_investor("Investor X")
        asset_id = await svc.funded_asset("1000", [(x, "1000", "100")], approvers)

        with pytest.raises(ConflictError, match="already funded"):
            await svc.ledger.fund_commitment(asset_id, SYSTEM)
        assert (await svc.investor(x)).utilized_amount == Decimal("1000.00")

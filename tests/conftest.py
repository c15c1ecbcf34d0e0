"""
Shared pytest fixtures.

All tests run with ``USE_SQLITE=true``.  Unit tests use mocked
repositories; the ledger, approval, settlement and audit tests run against
a fresh in-memory SQLite database (aiosqlite) per test so the atomic
``UPDATE`` statements and constraints are exercised for real.
"""

import os

os.environ.setdefault("USE_SQLITE", "true")

import uuid  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import List, Optional, Sequence, Tuple  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from autoledger.core.cache import TTLCache  # noqa: E402
from autoledger.core.resilience import CircuitState, db_circuit_breaker  # noqa: E402
from autoledger.db.base import create_schema  # noqa: E402
from autoledger.db.session import create_sqlite_engine, make_session_factory  # noqa: E402
from autoledger.models.actor import Actor  # noqa: E402
from autoledger.models.commitment import (  # noqa: E402
    ApprovalStatus,
    CapitalCommitment,
    CommitmentKind,
    FundingStatus,
)
from autoledger.models.investor import Investor, InvestorStatus  # noqa: E402
from autoledger.models.settlement import Settlement  # noqa: E402
from autoledger.models.staff import Admin, Manager  # noqa: E402
from autoledger.repositories.commitment_repo import CommitmentRepository  # noqa: E402
from autoledger.repositories.investor_repo import InvestorRepository  # noqa: E402
from autoledger.repositories.settlement_repo import SettlementRepository  # noqa: E402
from autoledger.repositories.staff_repo import AdminRepository, ManagerRepository  # noqa: E402
from autoledger.schemas.commitment import AllocationIn, CommitmentCreate  # noqa: E402
from autoledger.schemas.group import ApprovalGroupIn  # noqa: E402
from autoledger.services.allocation_ledger import (  # noqa: E402
    AllocationLedger,
    build_allocation_ledger,
)
from autoledger.services.approval_coordinator import ApprovalCoordinator  # noqa: E402
from autoledger.services.audit_trail import AuditTrail, build_audit_trail  # noqa: E402
from autoledger.services.bootstrap import initialize_ledger  # noqa: E402
from autoledger.services.commitment_service import CommitmentService  # noqa: E402
from autoledger.services.group_registry import GroupRegistry, build_group_registry  # noqa: E402
from autoledger.services.investor_service import InvestorService  # noqa: E402
from autoledger.services.sequence_generator import build_sequence_generator  # noqa: E402
from autoledger.services.settlement_engine import SettlementEngine  # noqa: E402
from autoledger.services.staff_service import StaffService  # noqa: E402

# ────────────────────────────────────────────────────────────────────────────
# Factory helpers: domain objects with sensible defaults
# ────────────────────────────────────────────────────────────────────────────

INVESTOR_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
INVESTOR_ID_2 = uuid.UUID("55555555-5555-5555-5555-555555555555")
ADMIN_ID = uuid.UUID("a1a1a1a1-0000-4000-8000-000000000001")
COMMITMENT_ID = uuid.UUID("c0c0c0c0-0000-4000-8000-000000000001")

SYSTEM = Actor.system()


def make_investor(
    *,
    id: uuid.UUID = INVESTOR_ID,
    name: str = "Test Investor",
    email: str = "test@example.com",
    credit_limit: Decimal = Decimal("100000.00"),
    utilized_amount: Decimal = Decimal("0.00"),
    decided_percentage_min: Optional[Decimal] = None,
    decided_percentage_max: Optional[Decimal] = None,
    status: InvestorStatus = InvestorStatus.ACTIVE,
) -> Investor:
    """Create an Investor domain object with sensible test defaults."""
    now = datetime.now(timezone.utc)
    return Investor(
        id=id,
        name=name,
        email=email,
        status=status,
        credit_limit=credit_limit,
        utilized_amount=utilized_amount,
        decided_percentage_min=decided_percentage_min,
        decided_percentage_max=decided_percentage_max,
        created_at=now,
        updated_at=now,
    )


def make_commitment(
    *,
    id: uuid.UUID = COMMITMENT_ID,
    reference: str = "PL0001",
    kind: CommitmentKind = CommitmentKind.PURCHASE,
    total_amount: Decimal = Decimal("58000.00"),
    asset_id: Optional[uuid.UUID] = None,
    approval_status: ApprovalStatus = ApprovalStatus.NOT_SUBMITTED,
    funding_status: FundingStatus = FundingStatus.DRAFT,
) -> CapitalCommitment:
    now = datetime.now(timezone.utc)
    return CapitalCommitment(
        id=id,
        reference=reference,
        kind=kind,
        total_amount=total_amount,
        asset_id=asset_id,
        approval_status=approval_status,
        funding_status=funding_status,
        created_at=now,
        updated_at=now,
    )


# ────────────────────────────────────────────────────────────────────────────
# Pytest fixtures
# ────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def mock_db():
    """A mocked AsyncSession that tracks add/commit/refresh/rollback calls."""
    session = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    session.delete = AsyncMock()
    return session


@pytest.fixture()
def mock_audit():
    """An AuditTrail stand-in whose appends always succeed."""
    audit = AsyncMock(spec=AuditTrail)
    audit.append.return_value = None
    audit.record_violation.return_value = None
    return audit


@pytest.fixture()
def test_cache():
    """A fresh TTL cache instance for test isolation."""
    return TTLCache(ttl=30.0, max_size=100, enabled=True)


@pytest.fixture()
def disabled_cache():
    """A disabled TTL cache; all operations are no-ops."""
    return TTLCache(ttl=30.0, max_size=100, enabled=False)


@pytest.fixture(autouse=True)
def _clear_global_state():
    """Reset the global cache and circuit breaker around every test."""
    from autoledger.core.cache import cache

    cache.clear()
    db_circuit_breaker._state = CircuitState.CLOSED
    db_circuit_breaker._failure_count = 0
    yield
    cache.clear()


# ────────────────────────────────────────────────────────────────────────────
# Real SQLite ledger
# ────────────────────────────────────────────────────────────────────────────


@dataclass
class LedgerServices:
    """Every service wired to one session, as a request would see them."""

    session: AsyncSession
    audit: AuditTrail
    groups: GroupRegistry
    coordinator: ApprovalCoordinator
    ledger: AllocationLedger
    settlements: SettlementEngine
    commitments: CommitmentService
    investors: InvestorService
    staff: StaffService

    # ── Builders for test data ──

    async def add_investor(
        self,
        name: str,
        credit_limit: str = "100000",
        *,
        pct_min: Optional[str] = None,
        pct_max: Optional[str] = None,
        status: InvestorStatus = InvestorStatus.ACTIVE,
    ) -> uuid.UUID:
        investor = Investor(
            name=name,
            email=f"{name.lower().replace(' ', '.')}@example.ae",
            status=status,
            credit_limit=Decimal(credit_limit),
            decided_percentage_min=Decimal(pct_min) if pct_min is not None else None,
            decided_percentage_max=Decimal(pct_max) if pct_max is not None else None,
        )
        self.session.add(investor)
        await self.session.commit()
        return investor.id

    async def add_admin(self, name: str) -> uuid.UUID:
        admin = Admin(name=name, email=f"{name.lower().replace(' ', '.')}@autotrade.ae")
        self.session.add(admin)
        await self.session.commit()
        return admin.id

    async def add_manager(self, name: str) -> uuid.UUID:
        manager = Manager(name=name, email=f"{name.lower().replace(' ', '.')}@autotrade.ae")
        self.session.add(manager)
        await self.session.commit()
        return manager.id

    async def setup_groups(
        self, group_a: Sequence[uuid.UUID], group_b: Sequence[uuid.UUID]
    ) -> None:
        await self.groups.set_groups(
            [
                ApprovalGroupIn(name="Group A", members=list(group_a)),
                ApprovalGroupIn(name="Group B", members=list(group_b)),
            ],
            SYSTEM,
        )

    async def open_purchase(self, total_amount: str) -> uuid.UUID:
        commitment = await self.commitments.create_commitment(
            CommitmentCreate(kind=CommitmentKind.PURCHASE, total_amount=Decimal(total_amount)),
            SYSTEM,
        )
        return commitment.id

    async def allocated_purchase(self, total_amount: str) -> uuid.UUID:
        """Purchase with a single investor taking 100%, ready for approval."""
        investor_id = await self.add_investor("Lead Investor", credit_limit=total_amount)
        asset_id = await self.open_purchase(total_amount)
        await self.ledger.record_allocation(
            asset_id,
            [
                AllocationIn(
                    investor_id=investor_id,
                    amount=Decimal(total_amount),
                    percentage=Decimal("100"),
                )
            ],
            SYSTEM,
        )
        return asset_id

    async def open_sale(self, asset_id: uuid.UUID, selling_price: str) -> uuid.UUID:
        commitment = await self.commitments.create_commitment(
            CommitmentCreate(
                kind=CommitmentKind.SALE,
                total_amount=Decimal(selling_price),
                asset_id=asset_id,
            ),
            SYSTEM,
        )
        return commitment.id

    async def approve(self, commitment_id: uuid.UUID, *admin_ids: uuid.UUID) -> None:
        for admin_id in admin_ids:
            await self.coordinator.submit_approval(commitment_id, admin_id)

    async def funded_asset(
        self,
        total_amount: str,
        split: List[Tuple[uuid.UUID, str, str]],
        approvers: Tuple[uuid.UUID, uuid.UUID],
    ) -> uuid.UUID:
        """Purchase → allocation → dual approval → funding."""
        asset_id = await self.open_purchase(total_amount)
        await self.ledger.record_allocation(
            asset_id,
            [
                AllocationIn(
                    investor_id=investor_id, amount=Decimal(amount), percentage=Decimal(pct)
                )
                for investor_id, amount, pct in split
            ],
            SYSTEM,
        )
        await self.approve(asset_id, *approvers)
        await self.ledger.fund_commitment(asset_id, SYSTEM)
        return asset_id

    async def investor(self, investor_id: uuid.UUID) -> Investor:
        return await self.investors.get_investor(investor_id)


def build_services(session: AsyncSession) -> LedgerServices:
    audit = build_audit_trail(session)
    groups = build_group_registry(session, audit)
    ledger = build_allocation_ledger(session, audit)
    commitment_repo = CommitmentRepository(CapitalCommitment, session)
    sequences = build_sequence_generator(session)
    return LedgerServices(
        session=session,
        audit=audit,
        groups=groups,
        coordinator=ApprovalCoordinator(commitment_repo, groups, audit),
        ledger=ledger,
        settlements=SettlementEngine(
            commitment_repo=commitment_repo,
            settlement_repo=SettlementRepository(Settlement, session),
            ledger=ledger,
            sequences=sequences,
            audit=audit,
        ),
        commitments=CommitmentService(commitment_repo, sequences, audit),
        investors=InvestorService(InvestorRepository(Investor, session), audit),
        staff=StaffService(
            AdminRepository(Admin, session), ManagerRepository(Manager, session), audit
        ),
    )


@pytest_asyncio.fixture()
async def sqlite_engine():
    engine = create_sqlite_engine()
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session(sqlite_engine):
    async with make_session_factory(sqlite_engine)() as db:
        await initialize_ledger(db)
        yield db


@pytest_asyncio.fixture()
async def svc(session) -> LedgerServices:
    return build_services(session)


@pytest_asyncio.fixture()
async def approvers(svc) -> Tuple[uuid.UUID, uuid.UUID]:
    """One admin in each group: (Group A admin, Group B admin)."""
    admin_a = await svc.add_admin("Alice Admin")
    admin_b = await svc.add_admin("Bob Admin")
    await svc.setup_groups([admin_a], [admin_b])
    return admin_a, admin_b

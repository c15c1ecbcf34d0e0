"""
Seed script: populates the database with sample data for development / demo.

Usage:
    python -m autoledger.seed

Creates two admins per approval group, one manager and three investors,
then assigns the admins to the groups.  The script is idempotent: existing
rows (matched by id) are left alone, and the groups are only filled while
they have no members.
"""

import asyncio
import logging
import uuid
from decimal import Decimal

from autoledger.db.base import create_schema
from autoledger.db.session import AsyncSessionLocal, engine
from autoledger.models.actor import Actor
from autoledger.models.investor import Investor, InvestorStatus
from autoledger.models.staff import Admin, Manager
from autoledger.schemas.group import ApprovalGroupIn
from autoledger.services.audit_trail import build_audit_trail
from autoledger.services.bootstrap import initialize_ledger
from autoledger.services.group_registry import build_group_registry

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

# ── Sample data ──

ADMINS = [
    Admin(
        id=uuid.UUID("a1000000-0000-4000-8000-000000000001"),
        name="Fatima Hassan",
        email="fatima.hassan@autotrade.ae",
    ),
    Admin(
        id=uuid.UUID("a1000000-0000-4000-8000-000000000002"),
        name="Omar Siddiqui",
        email="omar.siddiqui@autotrade.ae",
    ),
    Admin(
        id=uuid.UUID("a2000000-0000-4000-8000-000000000001"),
        name="Priya Nair",
        email="priya.nair@autotrade.ae",
    ),
    Admin(
        id=uuid.UUID("a2000000-0000-4000-8000-000000000002"),
        name="Daniel Weber",
        email="daniel.weber@autotrade.ae",
    ),
]

MANAGERS = [
    Manager(
        id=uuid.UUID("b0000000-0000-4000-8000-000000000001"),
        name="Layla Karim",
        email="layla.karim@autotrade.ae",
    ),
]

INVESTORS = [
    Investor(
        id=uuid.UUID("c0000000-0000-4000-8000-000000000001"),
        name="Khalid Al Mansoori",
        email="khalid@example.ae",
        status=InvestorStatus.ACTIVE,
        credit_limit=Decimal("250000.00"),
        decided_percentage_min=Decimal("20"),
        decided_percentage_max=Decimal("80"),
    ),
    Investor(
        id=uuid.UUID("c0000000-0000-4000-8000-000000000002"),
        name="Sara Rahman",
        email="sara.rahman@example.ae",
        status=InvestorStatus.ACTIVE,
        credit_limit=Decimal("100000.00"),
    ),
    Investor(
        id=uuid.UUID("c0000000-0000-4000-8000-000000000003"),
        name="Gulf Motors Holding",
        email="treasury@gulfmotors.example",
        status=InvestorStatus.ACTIVE,
        credit_limit=Decimal("500000.00"),
        decided_percentage_min=Decimal("10"),
        decided_percentage_max=Decimal("50"),
    ),
]

GROUPS = [
    ApprovalGroupIn(name="Group A", members=[ADMINS[0].id, ADMINS[1].id]),
    ApprovalGroupIn(name="Group B", members=[ADMINS[2].id, ADMINS[3].id]),
]


async def seed() -> None:
    """Create tables, initialise the ledger and insert missing sample rows."""
    await create_schema(engine)

    async with AsyncSessionLocal() as session:
        await initialize_ledger(session)

        inserted = 0
        for row in [*ADMINS, *MANAGERS, *INVESTORS]:
            if await session.get(type(row), row.id) is None:
                session.add(row)
                inserted += 1
        await session.commit()
        logger.info("Inserted %d sample people", inserted)

        registry = build_group_registry(session, build_audit_trail(session))
        current = await registry.get_groups()
        if any(group.members for group in current):
            logger.info("Approval groups already have members, leaving them unchanged")
            return
        await registry.set_groups(GROUPS, Actor.system())
        logger.info("Assigned %d admins to the approval groups", len(ADMINS))


if __name__ == "__main__":
    asyncio.run(seed())

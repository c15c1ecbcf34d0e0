"""
One-time initialisation run at start-up and by the seed script.

Creates the sequence counters and the default approval groups when they do
not exist yet.  Both steps are idempotent, so every replica may run them.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.services.audit_trail import build_audit_trail
from autoledger.services.group_registry import build_group_registry
from autoledger.services.sequence_generator import build_sequence_generator

logger = logging.getLogger(__name__)


async def initialize_ledger(session: AsyncSession) -> None:
    created = await build_sequence_generator(session).ensure_counters()
    groups_created = await build_group_registry(session, build_audit_trail(session)).bootstrap()
    logger.info(
        "Ledger initialised (new counters: %s, default groups created: %s)",
        ", ".join(created) or "none",
        groups_created,
    )

"""
Human-readable, gap-free references (``PL0001``, ``S0001``, ``LOG000001``).

Values come from :meth:`SequenceRepository.increment`, an atomic
``UPDATE … RETURNING`` executed in the caller's transaction: if the caller
rolls back, the number is handed out again.  Counter rows are created once
by :meth:`SequenceGenerator.ensure_counters` during start-up.
"""

import logging
from typing import Dict, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autoledger.core.exceptions import InvariantViolationError
from autoledger.models.audit import SequenceCounter
from autoledger.repositories.audit_repo import SequenceRepository

logger = logging.getLogger(__name__)

PURCHASE_COUNTER = "purchase"
SALE_COUNTER = "sale"
SETTLEMENT_COUNTER = "settlement"
AUDIT_COUNTER = "audit"

# counter name -> (prefix, zero-padded width)
REFERENCE_FORMATS: Dict[str, Tuple[str, int]] = {
    PURCHASE_COUNTER: ("PL", 4),
    SALE_COUNTER: ("S", 4),
    SETTLEMENT_COUNTER: ("STL", 4),
    AUDIT_COUNTER: ("LOG", 6),
}


def format_reference(name: str, value: int) -> str:
    prefix, width = REFERENCE_FORMATS[name]
    return f"{prefix}{value:0{width}d}"


class SequenceGenerator:
    def __init__(self, repo: SequenceRepository):
        self._repo = repo

    async def next_value(self, name: str) -> int:
        value = await self._repo.increment(name)
        if value is None:
            raise InvariantViolationError(
                f"Sequence counter '{name}' has not been initialised",
                details={"counter": name},
            )
        return value

    async def next_reference(self, name: str) -> Tuple[int, str]:
        """Return ``(value, formatted reference)`` for counter ``name``."""
        value = await self.next_value(name)
        return value, format_reference(name, value)

    async def ensure_counters(self) -> List[str]:
        """
        Create any missing counter row at value 0.

        Safe to run from several replicas at once: a concurrent insert of the
        same counter surfaces as ``IntegrityError`` and is treated as done.
        Returns the names created by this call.
        """
        created: List[str] = []
        for name in REFERENCE_FORMATS:
            if await self._repo.get(name) is not None:
                continue
            try:
                await self._repo.add(SequenceCounter(name=name, value=0))
                await self._repo.commit()
            except IntegrityError:
                await self._repo.rollback()
                logger.info("Sequence counter '%s' created concurrently", name)
                continue
            created.append(name)

        if created:
            logger.info("Initialised sequence counters: %s", ", ".join(created))
        return created


def build_sequence_generator(db: AsyncSession) -> SequenceGenerator:
    return SequenceGenerator(SequenceRepository(SequenceCounter, db))

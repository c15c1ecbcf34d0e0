"""
Schema management.

Importing :mod:`autoledger.models` registers every table with
``SQLModel.metadata``; :func:`create_schema` then creates whatever is
missing.  Used by the application lifespan, the seed script and the test
fixtures.
"""

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import SQLModel

import autoledger.models  # noqa: F401


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

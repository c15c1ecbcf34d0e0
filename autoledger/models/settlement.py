"""
Settlement models.

A settlement is written exactly once per asset when its sale closes, and is
never modified afterwards.  ``profit`` may be negative: a loss is shared
pro-rata like a gain.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from autoledger.models.actor import ActorKind


class Settlement(SQLModel, table=True):
    __tablename__ = "settlements"  # type: ignore[assignment]

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    reference: str = Field(unique=True, index=True, max_length=20)
    asset_id: uuid.UUID = Field(
        foreign_key="capital_commitments.id", unique=True, ondelete="RESTRICT"
    )
    sale_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="capital_commitments.id", ondelete="RESTRICT"
    )
    selling_price: Decimal = Field(max_digits=20, decimal_places=2)
    purchase_price: Decimal = Field(max_digits=20, decimal_places=2)
    profit: Decimal = Field(max_digits=20, decimal_places=2)
    profit_percentage: Decimal = Field(max_digits=12, decimal_places=2)
    settled_by_kind: ActorKind = Field(default=ActorKind.SYSTEM)
    settled_by_id: Optional[uuid.UUID] = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return f"<Settlement {self.reference} asset={self.asset_id} profit={self.profit}>"


class SettlementLine(SQLModel, table=True):
    """One investor's payout in a settlement."""

    __tablename__ = "settlement_lines"  # type: ignore[assignment]

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    settlement_id: uuid.UUID = Field(
        foreign_key="settlements.id", index=True, ondelete="CASCADE"
    )
    investor_id: uuid.UUID = Field(foreign_key="investors.id", index=True, ondelete="RESTRICT")
    position: int = Field(default=0)
    investment_amount: Decimal = Field(max_digits=20, decimal_places=2)
    investment_percentage: Decimal = Field(max_digits=7, decimal_places=4)
    profit_amount: Decimal = Field(max_digits=20, decimal_places=2)
    profit_percentage: Decimal = Field(max_digits=12, decimal_places=2)
    total_payout: Decimal = Field(max_digits=20, decimal_places=2)

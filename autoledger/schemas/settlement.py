"""
Pydantic schemas for settlements.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from autoledger.models.actor import ActorKind
from autoledger.models.settlement import Settlement, SettlementLine


class SettlementLineResponse(BaseModel):
    """One investor's payout: capital back plus their share of the profit."""

    investor_id: UUID
    investment_amount: Decimal
    investment_percentage: Decimal
    profit_amount: Decimal
    profit_percentage: Decimal
    total_payout: Decimal

    model_config = ConfigDict(from_attributes=True)

    @field_serializer(
        "investment_amount",
        "investment_percentage",
        "profit_amount",
        "profit_percentage",
        "total_payout",
    )
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)


class SettlementResponse(BaseModel):
    """Schema for ``POST /commitments/{id}/settle`` and ``GET …/settlement``."""

    id: UUID
    reference: str
    asset_id: UUID
    sale_id: Optional[UUID]
    selling_price: Decimal
    purchase_price: Decimal
    profit: Decimal = Field(..., description="Negative for a loss")
    profit_percentage: Decimal
    settled_by_kind: ActorKind
    settled_by_id: Optional[UUID]
    created_at: datetime
    lines: List[SettlementLineResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("selling_price", "purchase_price", "profit", "profit_percentage")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)

    @classmethod
    def from_parts(
        cls, settlement: Settlement, lines: Sequence[SettlementLine]
    ) -> "SettlementResponse":
        return cls(
            id=settlement.id,
            reference=settlement.reference,
            asset_id=settlement.asset_id,
            sale_id=settlement.sale_id,
            selling_price=settlement.selling_price,
            purchase_price=settlement.purchase_price,
            profit=settlement.profit,
            profit_percentage=settlement.profit_percentage,
            settled_by_kind=settlement.settled_by_kind,
            settled_by_id=settlement.settled_by_id,
            created_at=settlement.created_at,
            lines=[SettlementLineResponse.model_validate(line) for line in lines],
        )

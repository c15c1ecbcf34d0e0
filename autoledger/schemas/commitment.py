"""
Pydantic schemas for capital commitments, their allocation split and
their approvals.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from autoledger.models.actor import ActorKind
from autoledger.models.commitment import (
    ApprovalStatus,
    CapitalCommitment,
    CommitmentAllocation,
    CommitmentApproval,
    CommitmentKind,
    FundingStatus,
)


class CommitmentCreate(BaseModel):
    """
    Schema for ``POST /commitments``.

    A sale must name the funded purchase (``asset_id``) it resells; a
    purchase must not.
    """

    kind: CommitmentKind = Field(..., description="``purchase`` or ``sale``")
    total_amount: Decimal = Field(
        ...,
        gt=0,
        max_digits=20,
        decimal_places=2,
        description="Purchase price or selling price (AED)",
        examples=[58000.00],
    )
    asset_id: Optional[UUID] = Field(
        default=None, description="Purchase commitment being resold (sales only)"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Free-text label, e.g. the vehicle",
        examples=["2021 Toyota Land Cruiser GXR"],
    )

    @model_validator(mode="after")
    def validate_asset_reference(self) -> "CommitmentCreate":
        if self.kind == CommitmentKind.SALE and self.asset_id is None:
            raise ValueError("asset_id is required for a sale")
        if self.kind == CommitmentKind.PURCHASE and self.asset_id is not None:
            raise ValueError("asset_id is only allowed on a sale")
        return self


class AllocationIn(BaseModel):
    investor_id: UUID
    amount: Decimal = Field(..., gt=0, description="Capital contributed (AED)", examples=[40600])
    percentage: Decimal = Field(
        ..., gt=0, le=100, description="Share of the asset, 0-100", examples=[70]
    )


class AllocationsUpdate(BaseModel):
    """Schema for ``PUT /commitments/{id}/allocations``."""

    allocations: List[AllocationIn] = Field(..., min_length=1)


class ApprovalSubmit(BaseModel):
    """Schema for ``POST /commitments/{id}/approvals``."""

    admin_id: UUID = Field(..., description="Approving admin; must sit in an approval group")
    comment: Optional[str] = Field(default=None, max_length=500)


class AllocationResponse(BaseModel):
    investor_id: UUID
    amount: Decimal
    percentage: Decimal

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("amount", "percentage")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)


class ApprovalResponse(BaseModel):
    admin_id: UUID
    group_name: str
    comment: Optional[str]
    approved_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommitmentSummary(BaseModel):
    """Commitment without its child rows, used by list endpoints."""

    id: UUID
    reference: str
    kind: CommitmentKind
    total_amount: Decimal
    asset_id: Optional[UUID]
    description: Optional[str]
    approval_status: ApprovalStatus
    funding_status: FundingStatus
    created_by_kind: ActorKind
    created_by_id: Optional[UUID]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("total_amount")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)


class CommitmentResponse(CommitmentSummary):
    """Full commitment view: split, approvals and the groups they cover."""

    allocations: List[AllocationResponse] = Field(default_factory=list)
    approvals: List[ApprovalResponse] = Field(default_factory=list)
    groups_covered: List[str] = Field(default_factory=list)

    @classmethod
    def from_parts(
        cls,
        commitment: CapitalCommitment,
        allocations: Sequence[CommitmentAllocation],
        approvals: Sequence[CommitmentApproval],
    ) -> "CommitmentResponse":
        return cls.model_validate(commitment).model_copy(
            update={
                "allocations": [AllocationResponse.model_validate(a) for a in allocations],
                "approvals": [ApprovalResponse.model_validate(a) for a in approvals],
                "groups_covered": sorted({a.group_name for a in approvals}),
            }
        )

"""
Pydantic schemas for Investor API request / response serialisation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from autoledger.models.investor import InvestorStatus


class InvestorBase(BaseModel):
    """Fields common to investor creation payloads."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Full name of the investor",
        examples=["Khalid Al Mansoori"],
    )
    email: EmailStr = Field(
        ...,
        description="Contact email address (must be unique across investors)",
        examples=["khalid@example.ae"],
    )
    credit_limit: Decimal = Field(
        ...,
        ge=0,
        max_digits=20,
        decimal_places=2,
        description="Maximum capital the investor commits to the pool (AED)",
        examples=[100000.00],
    )
    decided_percentage_min: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        decimal_places=4,
        description="Lowest share (0-100) the investor accepts in a single allocation",
        examples=[10],
    )
    decided_percentage_max: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        decimal_places=4,
        description="Highest share (0-100) the investor accepts in a single allocation",
        examples=[70],
    )

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()

    @model_validator(mode="after")
    def validate_percentage_range(self) -> "InvestorBase":
        low, high = self.decided_percentage_min, self.decided_percentage_max
        if low is not None and high is not None and low > high:
            raise ValueError("decided_percentage_min must not exceed decided_percentage_max")
        return self


class InvestorCreate(InvestorBase):
    """
    Schema for ``POST /investors``.

    New investors start with nothing utilized.
    """

    status: InvestorStatus = Field(
        default=InvestorStatus.ACTIVE,
        description="Onboarding state; inactive investors cannot receive allocations",
    )


class CreditLimitUpdate(BaseModel):
    """Schema for ``PUT /investors/{id}/credit-limit``."""

    credit_limit: Decimal = Field(
        ...,
        ge=0,
        max_digits=20,
        decimal_places=2,
        description="New limit; must not be below the amount already utilized",
        examples=[150000.00],
    )


class InvestorResponse(InvestorBase):
    """Schema returned by all investor endpoints."""

    id: UUID
    status: InvestorStatus
    utilized_amount: Decimal
    remaining_credit: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer(
        "credit_limit",
        "utilized_amount",
        "remaining_credit",
        "decided_percentage_min",
        "decided_percentage_max",
    )
    @classmethod
    def serialize_decimal_as_number(cls, v: Optional[Decimal]) -> Optional[float]:
        """Decimals go out as JSON numbers, not strings."""
        return None if v is None else float(v)


class CreditResponse(BaseModel):
    """Schema for ``GET /investors/{id}/credit``."""

    investor_id: UUID
    credit_limit: Decimal
    utilized_amount: Decimal
    remaining_credit: Decimal
    currency: str

    @field_serializer("credit_limit", "utilized_amount", "remaining_credit")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)

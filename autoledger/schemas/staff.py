"""
Pydantic schemas for admins and managers.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class StaffCreate(BaseModel):
    """Schema for ``POST /admins`` and ``POST /managers``."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Display name, shown in the audit trail",
        examples=["Fatima Hassan"],
    )
    email: EmailStr = Field(
        ...,
        description="Work email (unique per staff type)",
        examples=["fatima@autotrade.ae"],
    )

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class StaffResponse(BaseModel):
    id: UUID
    name: str
    email: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

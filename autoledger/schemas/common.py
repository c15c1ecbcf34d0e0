"""
Common / shared Pydantic schemas used across multiple endpoints.

Error envelopes are declared here so the OpenAPI documentation shows the
error contract next to the happy path.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error envelope returned by all non-validation error handlers.

    Ledger errors (insufficient credit, duplicate approval, …) add a
    ``details`` object with the values that caused the rejection.
    """

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        ...,
        description="Human-readable error description",
        examples=["Commitment with id '…' not found"],
    )
    details: Optional[Any] = Field(
        default=None, description="Structured context, present for ledger errors"
    )


class ValidationErrorDetail(BaseModel):
    """Single field-level validation failure."""

    field: str = Field(
        ...,
        description="Dot-separated path to the invalid field",
        examples=["body -> allocations -> 0 -> percentage"],
    )
    message: str = Field(
        ...,
        description="Explanation of the validation failure",
        examples=["Input should be greater than 0"],
    )


class ValidationErrorResponse(BaseModel):
    """
    Response body for 422 Unprocessable Entity.

    Request-shape failures carry a ``details`` array of
    :class:`ValidationErrorDetail`; ledger rule violations (split does not
    sum to 100, insufficient credit, …) carry a ``details`` object instead.
    """

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        default="Validation failed",
        description="Summary message",
    )
    details: Optional[List[ValidationErrorDetail] | dict] = Field(
        default=None, description="Per-field failures or rule context"
    )

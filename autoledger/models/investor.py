"""
Investor domain model.

An investor funds vehicle purchases against a personal credit limit.  The
``utilized_amount`` column is the running total of capital currently
reserved for funded, not-yet-settled purchases.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


class InvestorStatus(str, Enum):
    """Onboarding state of an investor account."""

    INVITED = "invited"
    ACTIVE = "active"
    INACTIVE = "inactive"


class Investor(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for investors.

    Constraints:
    - ``email`` is unique.
    - ``0 ≤ utilized_amount ≤ credit_limit`` holds at the database level as
      well, so even a bypassed service check cannot overcommit an investor.
    - The optional decided-percentage range must be ordered.
    """

    __tablename__ = "investors"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_investors_name_not_empty"),
        CheckConstraint("credit_limit >= 0", name="ck_investors_credit_limit_non_negative"),
        CheckConstraint("utilized_amount >= 0", name="ck_investors_utilized_non_negative"),
        CheckConstraint(
            "utilized_amount <= credit_limit", name="ck_investors_utilized_within_limit"
        ),
        CheckConstraint(
            "decided_percentage_min IS NULL OR decided_percentage_max IS NULL "
            "OR decided_percentage_min <= decided_percentage_max",
            name="ck_investors_percentage_range_ordered",
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, max_length=255)
    email: str = Field(unique=True, index=True, max_length=320)
    status: InvestorStatus = Field(default=InvestorStatus.ACTIVE)
    credit_limit: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=2)
    utilized_amount: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=2)
    decided_percentage_min: Optional[Decimal] = Field(
        default=None, max_digits=7, decimal_places=4
    )
    decided_percentage_max: Optional[Decimal] = Field(
        default=None, max_digits=7, decimal_places=4
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
        index=True,
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    @property
    def remaining_credit(self) -> Decimal:
        return self.credit_limit - self.utilized_amount

    def accepts_percentage(self, percentage: Decimal) -> bool:
        """Whether ``percentage`` lies inside the decided range (if one is set)."""
        if self.decided_percentage_min is not None and percentage < self.decided_percentage_min:
            return False
        if self.decided_percentage_max is not None and percentage > self.decided_percentage_max:
            return False
        return True

    def __repr__(self) -> str:
        return (
            f"<Investor id={self.id} name='{self.name}' "
            f"utilized={self.utilized_amount}/{self.credit_limit}>"
        )

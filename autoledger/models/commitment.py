"""
Capital commitment models.

A *capital commitment* is any action that puts investor money at stake:

- a **purchase**: buying a vehicle (the *asset*) with capital split across
  investors, and
- a **sale**: finalising the resale of a funded asset, which triggers the
  settlement of its investors.

Both kinds move through the same dual-approval state machine
``not_submitted → pending → approved``.  Funding progress is tracked
separately in ``funding_status``.

The ``version`` column backs optimistic concurrency: every state change on
a commitment is a compare-and-swap on ``version``, so concurrent approvals
or allocation edits cannot silently overwrite each other.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from autoledger.models.actor import ActorKind


class CommitmentKind(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


class ApprovalStatus(str, Enum):
    """Dual-approval state.  ``approved`` is terminal."""

    NOT_SUBMITTED = "not_submitted"
    PENDING = "pending"
    APPROVED = "approved"


class FundingStatus(str, Enum):
    """
    Ledger progress of a commitment.

    Purchases go ``draft → allocated → funded → settled``; sales go
    ``draft → settled``.
    """

    DRAFT = "draft"
    ALLOCATED = "allocated"
    FUNDED = "funded"
    SETTLED = "settled"


class CapitalCommitment(SQLModel, table=True):
    __tablename__ = "capital_commitments"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_commitments_total_positive"),
        CheckConstraint("version >= 0", name="ck_commitments_version_non_negative"),
        Index("ix_commitments_asset_kind", "asset_id", "kind"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    reference: str = Field(unique=True, index=True, max_length=20)
    kind: CommitmentKind
    total_amount: Decimal = Field(max_digits=20, decimal_places=2)
    # Sales point at the purchase (asset) they resell.
    asset_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="capital_commitments.id",
        ondelete="RESTRICT",
    )
    description: Optional[str] = Field(default=None, max_length=500)
    approval_status: ApprovalStatus = Field(default=ApprovalStatus.NOT_SUBMITTED)
    funding_status: FundingStatus = Field(default=FundingStatus.DRAFT)
    version: int = Field(default=0)
    created_by_kind: ActorKind = Field(default=ActorKind.SYSTEM)
    created_by_id: Optional[uuid.UUID] = Field(default=None)
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
    def is_purchase(self) -> bool:
        return self.kind == CommitmentKind.PURCHASE

    def __repr__(self) -> str:
        return (
            f"<CapitalCommitment {self.reference} kind={self.kind.value} "
            f"approval={self.approval_status.value} funding={self.funding_status.value}>"
        )


class CommitmentAllocation(SQLModel, table=True):
    """One investor's share of a purchase."""

    __tablename__ = "commitment_allocations"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("commitment_id", "investor_id", name="uq_allocations_investor"),
        CheckConstraint("amount > 0", name="ck_allocations_amount_positive"),
        CheckConstraint(
            "percentage > 0 AND percentage <= 100", name="ck_allocations_percentage_range"
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    commitment_id: uuid.UUID = Field(
        foreign_key="capital_commitments.id", index=True, ondelete="CASCADE"
    )
    investor_id: uuid.UUID = Field(foreign_key="investors.id", index=True, ondelete="RESTRICT")
    # Order in which the split was submitted; breaks residual ties.
    position: int = Field(default=0)
    amount: Decimal = Field(max_digits=20, decimal_places=2)
    percentage: Decimal = Field(max_digits=7, decimal_places=4)


class CommitmentApproval(SQLModel, table=True):
    """One admin's approval of a commitment, tagged with their group."""

    __tablename__ = "commitment_approvals"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("commitment_id", "admin_id", name="uq_approvals_admin"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    commitment_id: uuid.UUID = Field(
        foreign_key="capital_commitments.id", index=True, ondelete="CASCADE"
    )
    admin_id: uuid.UUID = Field(foreign_key="admins.id", ondelete="RESTRICT")
    group_name: str = Field(max_length=50)
    comment: Optional[str] = Field(default=None, max_length=500)
    approved_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

"""
Audit trail and sequence counter models.

``audit_entries`` is append-only.  Its primary key is taken from the
``audit`` row of ``sequence_counters``, which is only ever advanced by an
atomic ``UPDATE … SET value = value + 1 … RETURNING value``; ids are
therefore unique and strictly increasing across concurrent writers.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, Index
from sqlmodel import Field, SQLModel

from autoledger.models.actor import ActorKind


class AuditCategory(str, Enum):
    AUTHENTICATION = "authentication"
    USER_MANAGEMENT = "user_management"
    LEAD_MANAGEMENT = "lead_management"
    PURCHASE_ORDER = "purchase_order"
    SALES = "sales"
    INVENTORY = "inventory"
    INVESTOR = "investor"
    APPROVAL = "approval"
    SYSTEM = "system"


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditEntry(SQLModel, table=True):
    __tablename__ = "audit_entries"  # type: ignore[assignment]

    __table_args__ = (
        Index("ix_audit_entries_category_sequence", "category", "sequence_id"),
    )

    sequence_id: int = Field(
        primary_key=True, sa_column_kwargs={"autoincrement": False}
    )
    reference: str = Field(unique=True, max_length=20)
    category: AuditCategory
    action: str = Field(max_length=100)
    description: str = Field(max_length=1000)
    actor_kind: ActorKind
    actor_id: Optional[uuid.UUID] = Field(default=None)
    actor_name: Optional[str] = Field(default=None, max_length=255)
    target_type: Optional[str] = Field(default=None, max_length=50)
    target_id: Optional[uuid.UUID] = Field(default=None, index=True)
    target_reference: Optional[str] = Field(default=None, max_length=50)
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    severity: AuditSeverity = Field(default=AuditSeverity.LOW)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return f"<AuditEntry {self.reference} {self.category.value}/{self.action}>"


class SequenceCounter(SQLModel, table=True):
    """Named monotonically increasing counter (commitment refs, audit ids)."""

    __tablename__ = "sequence_counters"  # type: ignore[assignment]

    name: str = Field(primary_key=True, max_length=50)
    value: int = Field(default=0)

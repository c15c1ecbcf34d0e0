"""
Approval group models.

Exactly two groups exist at any time.  Membership lives in its own table
with a unique ``admin_id`` column, so the database itself guarantees that an
admin belongs to at most one group and the two member sets stay disjoint.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel

GROUP_NAME_MAX_LENGTH = 50
GROUP_MAX_MEMBERS = 2


class ApprovalGroup(SQLModel, table=True):
    __tablename__ = "approval_groups"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_approval_groups_name_not_empty"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(unique=True, max_length=GROUP_NAME_MAX_LENGTH)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return f"<ApprovalGroup id={self.id} name='{self.name}'>"


class ApprovalGroupMember(SQLModel, table=True):
    """One admin's seat in one approval group."""

    __tablename__ = "approval_group_members"  # type: ignore[assignment]

    group_id: uuid.UUID = Field(
        foreign_key="approval_groups.id",
        primary_key=True,
        ondelete="CASCADE",
    )
    admin_id: uuid.UUID = Field(
        foreign_key="admins.id",
        primary_key=True,
        unique=True,  # an admin sits in at most one group
        ondelete="RESTRICT",
    )

"""
Pydantic schemas for the approval groups.

Only the payload shape is checked here.  The group rules (exactly two
groups, disjoint members, existing admins, …) are enforced by the
group registry so that the same checks apply to every caller.
"""

from datetime import datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel, Field


class ApprovalGroupIn(BaseModel):
    name: str = Field(..., description="Group name, unique across the pair", examples=["Group A"])
    members: List[UUID] = Field(
        default_factory=list, description="Admin ids in this group (at most two)"
    )


class ApprovalGroupsUpdate(BaseModel):
    """Schema for ``PUT /groups``: the full replacement of both groups."""

    groups: List[ApprovalGroupIn] = Field(
        ...,
        description="Exactly two groups",
        examples=[
            [
                {"name": "Group A", "members": ["2b1c…"]},
                {"name": "Group B", "members": ["7e4d…"]},
            ]
        ],
    )


class ApprovalGroupResponse(BaseModel):
    id: UUID
    name: str
    members: List[UUID]
    updated_at: datetime

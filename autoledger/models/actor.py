"""
Actor references.

Every state change is attributed to an :class:`Actor`, a tagged reference
``(kind, id)``.  Code that needs more than the id (the audit trail's display
name, for instance) dispatches explicitly on ``kind``.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ActorKind(str, Enum):
    """Who performed an operation."""

    ADMIN = "admin"
    MANAGER = "manager"
    INVESTOR = "investor"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    kind: ActorKind
    id: Optional[uuid.UUID] = None

    def __post_init__(self) -> None:
        if self.kind != ActorKind.SYSTEM and self.id is None:
            raise ValueError(f"{self.kind.value} actor requires an id")

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorKind.SYSTEM)

    @classmethod
    def admin(cls, admin_id: uuid.UUID) -> "Actor":
        return cls(ActorKind.ADMIN, admin_id)

    def __str__(self) -> str:
        if self.id is None:
            return self.kind.value
        return f"{self.kind.value}:{self.id}"

"""
Shared request dependencies.

Authentication is handled upstream; callers identify the acting person with
two optional headers:

- ``X-Actor-Kind``: ``admin``, ``manager``, ``investor`` or ``system``
- ``X-Actor-Id``: that person's UUID (required unless the kind is ``system``)

Requests without the headers are attributed to the system actor.
"""

from typing import Optional
from uuid import UUID

from fastapi import Header

from autoledger.core.exceptions import ValidationError
from autoledger.models.actor import Actor, ActorKind


def get_actor(
    x_actor_kind: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
) -> Actor:
    if x_actor_kind is None and x_actor_id is None:
        return Actor.system()
    try:
        kind = ActorKind((x_actor_kind or "").lower())
    except ValueError:
        raise ValidationError(
            f"Unknown actor kind '{x_actor_kind}'",
            details={"allowed": [k.value for k in ActorKind]},
        )
    if kind == ActorKind.SYSTEM:
        return Actor.system()
    if not x_actor_id:
        raise ValidationError(f"X-Actor-Id is required for a {kind.value} actor")
    try:
        actor_id = UUID(x_actor_id)
    except ValueError:
        raise ValidationError(f"X-Actor-Id '{x_actor_id}' is not a valid UUID")
    return Actor(kind, actor_id)

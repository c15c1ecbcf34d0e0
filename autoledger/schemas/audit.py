"""
Pydantic schemas for the audit stream.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from autoledger.models.actor import ActorKind
from autoledger.models.audit import AuditCategory, AuditSeverity


class AuditEntryResponse(BaseModel):
    sequence_id: int
    reference: str
    category: AuditCategory
    action: str
    description: str
    actor_kind: ActorKind
    actor_id: Optional[UUID]
    actor_name: Optional[str]
    target_type: Optional[str]
    target_id: Optional[UUID]
    target_reference: Optional[str]
    details: Dict[str, Any]
    severity: AuditSeverity
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

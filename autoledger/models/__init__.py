"""SQLModel table models, imported here so the metadata is populated."""

from autoledger.models.approval_group import ApprovalGroup, ApprovalGroupMember  # noqa: F401
from autoledger.models.audit import AuditEntry, SequenceCounter  # noqa: F401
from autoledger.models.commitment import (  # noqa: F401
    CapitalCommitment,
    CommitmentAllocation,
    CommitmentApproval,
)
from autoledger.models.investor import Investor  # noqa: F401
from autoledger.models.settlement import Settlement, SettlementLine  # noqa: F401
from autoledger.models.staff import Admin, Manager  # noqa: F401

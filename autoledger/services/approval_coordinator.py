"""
Approval coordinator: the dual-group approval state machine.

    not_submitted ──(first approval)──▶ pending ──(second group)──▶ approved

A commitment is approved once approvals from **two distinct groups** exist.
Two approvals from the same group never approve it, and ``approved`` is
terminal.

``submit_approval`` checks, in order:

1. the commitment exists (``NotFoundError``) and is not yet approved
   (``AlreadyApprovedError``); a purchase must already carry an allocation
   (``ValidationError``);
2. the admin sits in an approval group (``UnauthorizedGroupError``);
3. the admin has not approved this commitment before
   (``DuplicateApprovalError``).

Concurrency: the approval row insert and a compare-and-swap on the
commitment's ``version`` commit together.  If another writer got there
first the CAS matches no row, the transaction is rolled back and the whole
check is re-run against fresh state (bounded by ``APPROVAL_MAX_RETRIES``).
Two racing submissions by the *same* admin collide on the
``(commitment_id, admin_id)`` unique constraint instead.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Set
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from autoledger.core.config import settings
from autoledger.core.exceptions import (
    AlreadyApprovedError,
    ConflictError,
    DuplicateApprovalError,
    NotFoundError,
    UnauthorizedGroupError,
    ValidationError,
)
from autoledger.core.resilience import retry_with_backoff
from autoledger.models.actor import Actor, ActorKind
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.commitment import (
    ApprovalStatus,
    CapitalCommitment,
    CommitmentApproval,
    CommitmentKind,
    FundingStatus,
)
from autoledger.repositories.commitment_repo import CommitmentRepository
from autoledger.services.audit_trail import AuditTrail
from autoledger.services.group_registry import GroupRegistry

logger = logging.getLogger(__name__)

REQUIRED_DISTINCT_GROUPS = 2


class StaleCommitmentError(Exception):
    """The commitment changed between read and compare-and-swap."""


@dataclass
class _Recorded:
    reference: str
    kind: CommitmentKind
    group_name: str
    groups_covered: List[str]
    status: ApprovalStatus


def resolve_status(groups_covered: Set[str]) -> ApprovalStatus:
    """Approval status implied by the set of distinct approving groups."""
    if len(groups_covered) >= REQUIRED_DISTINCT_GROUPS:
        return ApprovalStatus.APPROVED
    if groups_covered:
        return ApprovalStatus.PENDING
    return ApprovalStatus.NOT_SUBMITTED


class ApprovalCoordinator:
    def __init__(
        self,
        commitment_repo: CommitmentRepository,
        groups: GroupRegistry,
        audit: AuditTrail,
    ):
        self._repo = commitment_repo
        self._groups = groups
        self._audit = audit

    # ── Commands ──

    async def submit_approval(
        self, commitment_id: UUID, admin_id: UUID, comment: Optional[str] = None
    ) -> CapitalCommitment:
        """Record ``admin_id``'s approval and return the updated commitment."""
        try:
            recorded = await self._record(commitment_id, admin_id, comment)
        except StaleCommitmentError:
            raise ConflictError(
                "Commitment is being modified concurrently; retry the approval"
            )

        actor = Actor.admin(admin_id)
        logger.info(
            "Approval by admin %s (%s) on %s → %s (groups: %s)",
            admin_id,
            recorded.group_name,
            recorded.reference,
            recorded.status.value,
            ", ".join(recorded.groups_covered),
            extra={"commitment_id": str(commitment_id)},
        )
        category = (
            AuditCategory.PURCHASE_ORDER
            if recorded.kind == CommitmentKind.PURCHASE
            else AuditCategory.SALES
        )
        await self._audit.append(
            category=AuditCategory.APPROVAL,
            action="approval_recorded",
            description=(
                f"{recorded.group_name} approved {recorded.kind.value} "
                f"{recorded.reference}"
            ),
            actor=actor,
            severity=AuditSeverity.HIGH,
            target_type="commitment",
            target_id=commitment_id,
            target_reference=recorded.reference,
            details={
                "group_name": recorded.group_name,
                "groups_covered": recorded.groups_covered,
                "status": recorded.status.value,
                "comment": comment,
            },
        )
        if recorded.status == ApprovalStatus.APPROVED:
            await self._audit.append(
                category=category,
                action="commitment_approved",
                description=(
                    f"{recorded.kind.value.capitalize()} {recorded.reference} approved by "
                    f"{' and '.join(recorded.groups_covered)}"
                ),
                actor=actor,
                severity=AuditSeverity.CRITICAL,
                target_type="commitment",
                target_id=commitment_id,
                target_reference=recorded.reference,
                details={"groups_covered": recorded.groups_covered},
            )

        return await self._repo.get_fresh(commitment_id)

    async def reset_approval(self, commitment_id: UUID, actor: Actor) -> CapitalCommitment:
        """
        Return a ``pending`` commitment to ``not_submitted``, clearing its
        approvals so the split can be edited and resubmitted.

        Only an admin who sits in an approval group may reset.
        """
        if actor.kind != ActorKind.ADMIN or await self._groups.group_for_admin(actor.id) is None:
            raise UnauthorizedGroupError(actor.id or actor.kind.value)

        commitment = await self._repo.get_fresh(commitment_id)
        if commitment is None:
            raise NotFoundError("Commitment", commitment_id)
        reference = commitment.reference
        if commitment.approval_status == ApprovalStatus.APPROVED:
            raise AlreadyApprovedError(reference)
        if commitment.approval_status == ApprovalStatus.NOT_SUBMITTED:
            raise ConflictError(f"Commitment {reference} has no approvals to reset")

        await self._repo.clear_approvals(commitment_id)
        swapped = await self._repo.compare_and_swap(
            commitment_id,
            commitment.version,
            approval_status=ApprovalStatus.NOT_SUBMITTED,
        )
        if not swapped:
            await self._repo.rollback()
            raise ConflictError(f"Commitment {reference} was modified concurrently; retry")
        await self._repo.commit()

        logger.info("Approvals on %s reset by %s", reference, actor)
        await self._audit.append(
            category=AuditCategory.APPROVAL,
            action="approval_reset",
            description=f"Approvals on {reference} cleared",
            actor=actor,
            severity=AuditSeverity.HIGH,
            target_type="commitment",
            target_id=commitment_id,
            target_reference=reference,
        )
        return await self._repo.get_fresh(commitment_id)

    # ── Internals ──

    @retry_with_backoff(
        max_retries=settings.APPROVAL_MAX_RETRIES,
        base_delay=0.02,
        max_delay=0.2,
        retryable_exceptions=(StaleCommitmentError,),
    )
    async def _record(
        self, commitment_id: UUID, admin_id: UUID, comment: Optional[str]
    ) -> _Recorded:
        commitment = await self._repo.get_fresh(commitment_id)
        if commitment is None:
            raise NotFoundError("Commitment", commitment_id)
        reference, kind, version = commitment.reference, commitment.kind, commitment.version
        if commitment.approval_status == ApprovalStatus.APPROVED:
            raise AlreadyApprovedError(reference)
        if kind == CommitmentKind.PURCHASE and commitment.funding_status == FundingStatus.DRAFT:
            raise ValidationError(
                f"Purchase {reference} has no allocation recorded; allocate before approving"
            )

        group_name = await self._groups.group_for_admin(admin_id)
        if group_name is None:
            raise UnauthorizedGroupError(admin_id)

        approvals = await self._repo.get_approvals(commitment_id)
        if any(a.admin_id == admin_id for a in approvals):
            raise DuplicateApprovalError(reference, admin_id)

        groups_covered = {a.group_name for a in approvals} | {group_name}
        status = resolve_status(groups_covered)

        try:
            swapped = await self._repo.compare_and_swap(
                commitment_id, version, approval_status=status
            )
            if not swapped:
                await self._repo.rollback()
                raise StaleCommitmentError(reference)
            await self._repo.add(
                CommitmentApproval(
                    commitment_id=commitment_id,
                    admin_id=admin_id,
                    group_name=group_name,
                    comment=comment,
                )
            )
            await self._repo.commit()
        except IntegrityError:
            await self._repo.rollback()
            raise DuplicateApprovalError(reference, admin_id)

        return _Recorded(
            reference=reference,
            kind=kind,
            group_name=group_name,
            groups_covered=sorted(groups_covered),
            status=status,
        )

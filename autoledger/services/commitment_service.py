"""
Commitment service: creating and reading purchase and sale commitments.

State changes after creation belong to the approval coordinator, the
allocation ledger and the settlement engine; this service only opens new
commitments and assembles the detailed view.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from autoledger.core.config import settings
from autoledger.core.exceptions import AppException, ConflictError, NotFoundError, ValidationError
from autoledger.core.money import to_money
from autoledger.models.actor import Actor
from autoledger.models.audit import AuditCategory, AuditSeverity
from autoledger.models.commitment import CapitalCommitment, CommitmentKind, FundingStatus
from autoledger.repositories.commitment_repo import CommitmentRepository
from autoledger.schemas.commitment import CommitmentCreate, CommitmentResponse
from autoledger.services.audit_trail import AuditTrail
from autoledger.services.sequence_generator import (
    PURCHASE_COUNTER,
    SALE_COUNTER,
    SequenceGenerator,
)

logger = logging.getLogger(__name__)


class CommitmentService:
    def __init__(
        self,
        commitment_repo: CommitmentRepository,
        sequences: SequenceGenerator,
        audit: AuditTrail,
    ):
        self._repo = commitment_repo
        self._sequences = sequences
        self._audit = audit

    # ── Queries ──

    async def list_commitments(
        self, kind: Optional[CommitmentKind] = None, skip: int = 0, limit: int = 100
    ) -> List[CapitalCommitment]:
        return await self._repo.list_commitments(kind=kind, skip=skip, limit=limit)

    async def get_commitment(self, commitment_id: UUID) -> CommitmentResponse:
        commitment = await self._repo.get_fresh(commitment_id)
        if commitment is None:
            raise NotFoundError("Commitment", commitment_id)
        allocations = await self._repo.get_allocations(commitment_id)
        approvals = await self._repo.get_approvals(commitment_id)
        return CommitmentResponse.from_parts(commitment, allocations, approvals)

    # ── Commands ──

    async def create_commitment(
        self, commitment_in: CommitmentCreate, actor: Actor
    ) -> CapitalCommitment:
        """
        Open a purchase or a sale in ``not_submitted`` / ``draft``.

        A sale must reference a funded purchase with no other open sale.
        """
        if commitment_in.kind == CommitmentKind.SALE:
            await self._check_resellable(commitment_in.asset_id)
            counter = SALE_COUNTER
            category = AuditCategory.SALES
        else:
            counter = PURCHASE_COUNTER
            category = AuditCategory.PURCHASE_ORDER

        try:
            _, reference = await self._sequences.next_reference(counter)
            commitment = CapitalCommitment(
                reference=reference,
                kind=commitment_in.kind,
                total_amount=to_money(commitment_in.total_amount),
                asset_id=commitment_in.asset_id,
                description=commitment_in.description,
                created_by_kind=actor.kind,
                created_by_id=actor.id,
            )
            await self._repo.add(commitment)
            commitment_id = commitment.id
            await self._repo.commit()
        except IntegrityError as exc:
            await self._repo.rollback()
            logger.warning("IntegrityError creating %s commitment: %s", commitment_in.kind, exc)
            raise ConflictError("Commitment could not be created; retry")
        except AppException:
            await self._repo.rollback()
            raise

        logger.info(
            "Created %s commitment %s for %s",
            commitment_in.kind.value,
            reference,
            to_money(commitment_in.total_amount),
            extra={"commitment_id": str(commitment_id)},
        )
        await self._audit.append(
            category=category,
            action=f"{commitment_in.kind.value}_created",
            description=(
                f"{commitment_in.kind.value.capitalize()} {reference} opened for "
                f"{to_money(commitment_in.total_amount)} {settings.CURRENCY}"
            ),
            actor=actor,
            severity=AuditSeverity.MEDIUM,
            target_type="commitment",
            target_id=commitment_id,
            target_reference=reference,
            details={
                "total_amount": to_money(commitment_in.total_amount),
                "asset_id": commitment_in.asset_id,
                "description": commitment_in.description,
            },
        )
        return await self._repo.get_fresh(commitment_id)

    async def _check_resellable(self, asset_id: Optional[UUID]) -> None:
        if asset_id is None:
            raise ValidationError("A sale must reference the purchased asset")
        asset = await self._repo.get_fresh(asset_id)
        if asset is None:
            raise NotFoundError("Commitment", asset_id)
        if not asset.is_purchase:
            raise ValidationError(f"Commitment {asset.reference} is not a purchase")
        if asset.funding_status != FundingStatus.FUNDED:
            raise ConflictError(
                f"Asset {asset.reference} is {asset.funding_status.value}; only funded "
                f"assets can be sold"
            )
        open_sale = await self._repo.get_open_sale(asset_id)
        if open_sale is not None:
            raise ConflictError(
                f"Asset {asset.reference} already has an open sale ({open_sale.reference})"
            )

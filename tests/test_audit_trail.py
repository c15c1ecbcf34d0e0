"""
Tests for the audit trail: ordering, actor names and best-effort appends.
"""

import logging
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from autoledger.core.exceptions import InvariantViolationError
from autoledger.models.actor import Actor, ActorKind
from autoledger.models.audit import AuditCategory, AuditSeverity, SequenceCounter
from autoledger.repositories.audit_repo import AuditRepository
from autoledger.services import audit_trail
from autoledger.services.sequence_generator import AUDIT_COUNTER

from .conftest import SYSTEM


async def _append(svc, action="note", **kwargs):
    kwargs.setdefault("category", AuditCategory.SYSTEM)
    kwargs.setdefault("actor", SYSTEM)
    return await svc.audit.append(action=action, description=f"{action} happened", **kwargs)


class TestAppend:
    @pytest.mark.asyncio
    async def test_entries_are_sequenced(self, svc):
        # LOG000001 is the bootstrap entry for the default groups.
        first = await _append(svc, "first")
        second = await _append(svc, "second")

        assert (first.sequence_id, first.reference) == (2, "LOG000002")
        assert (second.sequence_id, second.reference) == (3, "LOG000003")

        entries = await svc.audit.list_entries()
        assert [e.action for e in entries] == ["groups_initialized", "first", "second"]

    @pytest.mark.asyncio
    async def test_details_stored_as_json(self, svc):
        target = uuid.uuid4()
        entry = await _append(
            svc,
            target_id=target,
            details={"amount": Decimal("10.50"), "investor_id": target},
        )

        assert entry.details == {"amount": "10.50", "investor_id": str(target)}

    @pytest.mark.asyncio
    async def test_default_severity_is_low(self, svc):
        entry = await _append(svc)
        assert entry.severity == AuditSeverity.LOW

    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self, svc, monkeypatch):
        async def _broken_add(self, *entities):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(AuditRepository, "add", _broken_add)
        assert await _append(svc, "lost") is None

        monkeypatch.undo()
        # The failed append rolled its sequence number back.
        entry = await _append(svc, "kept")
        assert entry.reference == "LOG000002"

    @pytest.mark.asyncio
    async def test_unserializable_details_are_swallowed(self, svc, caplog):
        with caplog.at_level(logging.ERROR, logger="autoledger.services.audit_trail"):
            assert await _append(svc, "odd", details={"blob": object()}) is None

        assert any("Audit append failed" in r.getMessage() for r in caplog.records)
        entry = await _append(svc, "kept")
        assert entry.reference == "LOG000002"

    @pytest.mark.asyncio
    async def test_failed_append_keeps_committed_change(self, svc, monkeypatch):
        class _BrokenAdapter:
            def dump_python(self, *args, **kwargs):
                raise TypeError("not serializable")

        investor_id = await svc.add_investor("Investor X", "1000")
        monkeypatch.setattr(audit_trail, "_DETAILS_ADAPTER", _BrokenAdapter())

        investor = await svc.ledger.reserve(investor_id, Decimal("250"))

        assert investor.utilized_amount == Decimal("250.00")
        assert (await svc.investor(investor_id)).utilized_amount == Decimal("250.00")
        assert await svc.audit.list_entries(target_id=investor_id) == []

    @pytest.mark.asyncio
    async def test_missing_counter_is_swallowed(self, svc):
        await svc.session.execute(
            delete(SequenceCounter).where(SequenceCounter.name == AUDIT_COUNTER)
        )
        await svc.session.commit()

        assert await _append(svc) is None

    @pytest.mark.asyncio
    async def test_record_violation_is_critical(self, svc):
        exc = InvariantViolationError("Release would underflow", details={"amount": "5.00"})

        entry = await svc.audit.record_violation(
            exc, category=AuditCategory.INVESTOR, actor=SYSTEM
        )

        assert entry.action == "invariant_violation"
        assert entry.severity == AuditSeverity.CRITICAL
        assert entry.details == {
            "error": "InvariantViolationError",
            "details": {"amount": "5.00"},
        }


class TestActorName:
    @pytest.mark.asyncio
    async def test_admin(self, svc):
        admin_id = await svc.add_admin("Alice Admin")
        entry = await _append(svc, actor=Actor.admin(admin_id))
        assert entry.actor_kind == ActorKind.ADMIN
        assert entry.actor_name == "Alice Admin"

    @pytest.mark.asyncio
    async def test_manager(self, svc):
        manager_id = await svc.add_manager("Mona Manager")
        entry = await _append(svc, actor=Actor(ActorKind.MANAGER, manager_id))
        assert entry.actor_name == "Mona Manager"

    @pytest.mark.asyncio
    async def test_investor(self, svc):
        investor_id = await svc.add_investor("Investor X")
        entry = await _append(svc, actor=Actor(ActorKind.INVESTOR, investor_id))
        assert entry.actor_name == "Investor X"

    @pytest.mark.asyncio
    async def test_unknown_person_has_no_name(self, svc):
        entry = await _append(svc, actor=Actor.admin(uuid.uuid4()))
        assert entry is not None
        assert entry.actor_name is None


class TestListEntries:
    @pytest.mark.asyncio
    async def test_filters(self, svc):
        target = uuid.uuid4()
        await _append(svc, "a", category=AuditCategory.INVESTOR, target_id=target)
        await _append(svc, "b", category=AuditCategory.INVESTOR)
        await _append(svc, "c", category=AuditCategory.SALES, target_id=target)

        by_category = await svc.audit.list_entries(category=AuditCategory.INVESTOR)
        by_target = await svc.audit.list_entries(target_id=target)
        both = await svc.audit.list_entries(category=AuditCategory.SALES, target_id=target)

        assert [e.action for e in by_category] == ["a", "b"]
        assert [e.action for e in by_target] == ["a", "c"]
        assert [e.action for e in both] == ["c"]

    @pytest.mark.asyncio
    async def test_pagination(self, svc):
        for action in ("a", "b", "c"):
            await _append(svc, action)

        page = await svc.audit.list_entries(skip=1, limit=2)

        assert [e.action for e in page] == ["a", "b"]

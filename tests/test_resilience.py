"""
Unit tests for the circuit breaker and retry decorator.

Tests cover:
- Which failures the database breaker counts (connection-level only)
- CLOSED → OPEN → HALF_OPEN → CLOSED, and the single half-open probe
- Repositories routing every round trip through ``db_circuit_breaker``
- retry_with_backoff as used for lost approval races
"""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from autoledger.core.exceptions import ConflictError
from autoledger.core.resilience import (
    TRANSIENT_DB_ERRORS,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    db_circuit_breaker,
    retry_with_backoff,
)
from autoledger.models.investor import Investor
from autoledger.repositories.investor_repo import InvestorRepository
from autoledger.services.approval_coordinator import StaleCommitmentError

from .conftest import INVESTOR_ID


def _operational_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("database is locked"))


@pytest.fixture()
def breaker():
    return CircuitBreaker(
        name="ledger-db",
        failure_threshold=2,
        recovery_timeout=5.0,
        expected_exceptions=TRANSIENT_DB_ERRORS,
    )


def _trip(breaker: CircuitBreaker) -> None:
    """Put the breaker into OPEN with its recovery window already elapsed."""
    breaker._state = CircuitState.OPEN
    breaker._failure_count = breaker.failure_threshold
    breaker._last_failure_time = time.monotonic() - breaker.recovery_timeout - 1


# ────────────────────────────────────────────────────────────────────────────
# Circuit breaker
# ────────────────────────────────────────────────────────────────────────────


class TestFailureClassification:
    @pytest.mark.asyncio
    async def test_operational_errors_open_the_circuit(self, breaker):
        failing = AsyncMock(side_effect=_operational_error())

        for _ in range(2):
            with pytest.raises(OperationalError):
                await breaker.call(failing)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.call(failing)
        assert failing.await_count == 2
        assert 0 < exc_info.value.retry_after <= 5.0

    @pytest.mark.asyncio
    async def test_constraint_violations_are_not_counted(self, breaker):
        duplicate = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("UNIQUE")))

        for _ in range(3):
            with pytest.raises(IntegrityError):
                await breaker.call(duplicate)

        assert breaker.state == CircuitState.CLOSED
        assert breaker._failure_count == 0

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_counted(self, breaker):
        rejected = AsyncMock(side_effect=ConflictError("already settled"))

        with pytest.raises(ConflictError):
            await breaker.call(rejected)

        assert breaker._failure_count == 0

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        flaky = AsyncMock(side_effect=[_operational_error(), "ok"])

        with pytest.raises(OperationalError):
            await breaker.call(flaky)
        assert await breaker.call(flaky) == "ok"

        assert breaker.get_status()["failure_count"] == 0
        assert breaker.get_status()["success_count"] == 1


class TestRecovery:
    def test_open_moves_to_half_open_after_timeout(self, breaker):
        _trip(breaker)
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_successful_probe_closes(self, breaker):
        _trip(breaker)

        assert await breaker.call(AsyncMock(return_value=1)) == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_probe_reopens(self, breaker):
        _trip(breaker)

        with pytest.raises(OperationalError):
            await breaker.call(AsyncMock(side_effect=_operational_error()))

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_only_one_probe_in_flight(self, breaker):
        _trip(breaker)
        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probe"

        probe = asyncio.create_task(breaker.call(slow_probe))
        await asyncio.sleep(0)

        with pytest.raises(CircuitBreakerError):
            await breaker.call(AsyncMock(return_value="second"))

        release.set()
        assert await probe == "probe"
        assert breaker.state == CircuitState.CLOSED


class TestRepositoryIntegration:
    @pytest.mark.asyncio
    async def test_repository_failure_is_counted(self, mock_db):
        mock_db.get.side_effect = _operational_error()
        repo = InvestorRepository(Investor, mock_db)

        with pytest.raises(OperationalError):
            await repo.get(INVESTOR_ID)

        assert db_circuit_breaker._failure_count == 1

    @pytest.mark.asyncio
    async def test_open_breaker_skips_the_database(self, mock_db):
        db_circuit_breaker._state = CircuitState.OPEN
        db_circuit_breaker._last_failure_time = time.monotonic()
        repo = InvestorRepository(Investor, mock_db)

        with pytest.raises(CircuitBreakerError):
            await repo.get(INVESTOR_ID)

        mock_db.get.assert_not_called()


# ────────────────────────────────────────────────────────────────────────────
# retry_with_backoff
# ────────────────────────────────────────────────────────────────────────────


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_lost_race_is_retried(self):
        attempts = AsyncMock(side_effect=[StaleCommitmentError("PL0001"), "recorded"])

        @retry_with_backoff(
            max_retries=2,
            base_delay=0.1,
            jitter=False,
            retryable_exceptions=(StaleCommitmentError,),
        )
        async def record():
            return await attempts()

        with patch("autoledger.core.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await record() == "recorded"

        sleep.assert_awaited_once_with(0.1)

    @pytest.mark.asyncio
    async def test_delay_doubles_and_is_capped(self):
        attempts = AsyncMock(side_effect=StaleCommitmentError("PL0001"))

        @retry_with_backoff(
            max_retries=3,
            base_delay=0.1,
            max_delay=0.3,
            jitter=False,
            retryable_exceptions=(StaleCommitmentError,),
        )
        async def record():
            return await attempts()

        with patch("autoledger.core.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(StaleCommitmentError):
                await record()

        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2, 0.3]
        assert attempts.await_count == 4

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_retried(self):
        attempts = AsyncMock(side_effect=ConflictError("already approved"))

        @retry_with_backoff(max_retries=3, retryable_exceptions=(StaleCommitmentError,))
        async def record():
            return await attempts()

        with pytest.raises(ConflictError):
            await record()

        attempts.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_transient_db_errors_retried_by_default(self):
        attempts = AsyncMock(side_effect=[_operational_error(), "ok"])

        @retry_with_backoff(max_retries=1, base_delay=0.2)
        async def load():
            return await attempts()

        with patch("autoledger.core.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await load() == "ok"

        assert 0.2 <= sleep.await_args.args[0] <= 0.3

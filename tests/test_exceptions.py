"""
Unit tests for domain exceptions and exception handler registration.

Tests cover:
- AppException and the ledger error hierarchy
- Default attributes (status_code, message, details)
- add_exception_handlers registration
"""

from decimal import Decimal

import pytest

from autoledger.core.exceptions import (
    AlreadyApprovedError,
    AppException,
    ConflictError,
    DuplicateApprovalError,
    InconsistentLedgerError,
    InsufficientCreditError,
    InvariantViolationError,
    NotFoundError,
    OutOfRangeError,
    UnauthorizedGroupError,
    ValidationError,
)


class TestAppException:
    """Tests for the base AppException."""

    def test_attributes(self):
        exc = AppException(status_code=400, message="bad request", details={"key": "v"})
        assert exc.status_code == 400
        assert exc.message == "bad request"
        assert exc.details == {"key": "v"}

    def test_is_exception(self):
        exc = AppException(status_code=500, message="err")
        assert isinstance(exc, Exception)

    def test_str_representation(self):
        exc = AppException(status_code=418, message="I'm a teapot")
        assert str(exc) == "I'm a teapot"


class TestNotFoundError:
    """Tests for NotFoundError (404)."""

    def test_status_code(self):
        exc = NotFoundError("Investor", "abc-123")
        assert exc.status_code == 404

    def test_message_format(self):
        exc = NotFoundError("Commitment", "abc-123")
        assert "Commitment" in exc.message
        assert "abc-123" in exc.message

    def test_inherits_app_exception(self):
        exc = NotFoundError("Investor", "x")
        assert isinstance(exc, AppException)


class TestConflictErrors:
    """ConflictError (409) and its approval-specific subclasses."""

    def test_status_code(self):
        exc = ConflictError("Duplicate email")
        assert exc.status_code == 409

    def test_duplicate_approval(self):
        exc = DuplicateApprovalError("PL0001", "admin-1")
        assert isinstance(exc, ConflictError)
        assert "admin-1" in exc.message
        assert "PL0001" in exc.message

    def test_already_approved(self):
        exc = AlreadyApprovedError("S0003")
        assert exc.status_code == 409
        assert exc.message == "Commitment S0003 is already approved"


class TestValidationErrors:
    """ValidationError (422) and friends."""

    def test_status_code(self):
        exc = ValidationError("Percentages must sum to 100")
        assert exc.status_code == 422
        assert exc.details is None

    def test_out_of_range_is_validation(self):
        exc = OutOfRangeError("too high", details={"max": "60"})
        assert isinstance(exc, ValidationError)
        assert exc.status_code == 422

    def test_insufficient_credit_details(self):
        exc = InsufficientCreditError("inv-1", Decimal("1000.00"), Decimal("400.00"))
        assert exc.status_code == 422
        assert exc.details == {
            "investor_id": "inv-1",
            "requested": "1000.00",
            "remaining": "400.00",
        }


class TestOtherErrors:
    def test_unauthorized_group_is_403(self):
        exc = UnauthorizedGroupError("admin-9")
        assert exc.status_code == 403
        assert "admin-9" in exc.message

    @pytest.mark.parametrize("cls", [InconsistentLedgerError, InvariantViolationError])
    def test_ledger_faults_are_500(self, cls):
        exc = cls("broken", details={"reference": "PL0001"})
        assert exc.status_code == 500
        assert exc.details == {"reference": "PL0001"}


class TestAddExceptionHandlers:
    """Tests that add_exception_handlers registers handlers on the FastAPI app."""

    def test_handlers_registered(self):
        from unittest.mock import MagicMock

        from autoledger.core.exceptions import add_exception_handlers

        mock_app = MagicMock()
        # exception_handler is used as a decorator, so we need it to return
        # a callable that accepts the handler function
        mock_app.exception_handler = MagicMock(return_value=lambda fn: fn)
        add_exception_handlers(mock_app)
        # Should have been called 5 times (AppException, CircuitBreakerError,
        # StarletteHTTPException, RequestValidationError, Exception)
        assert mock_app.exception_handler.call_count == 5


class TestExceptionHandlersIntegration:
    """Invoke the actual exception handlers to cover their response logic."""

    @pytest.mark.asyncio
    async def test_circuit_breaker_handler_returns_503(self):
        """CircuitBreakerError → 503 with Retry-After header."""
        from fastapi import FastAPI
        from httpx import ASGITransport, AsyncClient

        from autoledger.core.exceptions import add_exception_handlers
        from autoledger.core.resilience import CircuitBreakerError

        app = FastAPI()
        add_exception_handlers(app)

        @app.get("/boom")
        async def boom():
            raise CircuitBreakerError(name="db", retry_after=10.0)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/boom")
        assert resp.status_code == 503
        assert "Retry-After" in resp.headers
        body = resp.json()
        assert body["error"] is True
        assert "circuit is open" in body["message"]

    @pytest.mark.asyncio
    async def test_global_500_handler(self):
        """Unhandled exception → 500 with generic message."""
        from fastapi import FastAPI
        from httpx import ASGITransport, AsyncClient

        from autoledger.core.exceptions import add_exception_handlers

        # debug=False prevents Starlette's ServerErrorMiddleware from
        # re-raising the exception before our catch-all handler runs.
        app = FastAPI(debug=False)
        add_exception_handlers(app)

        @app.get("/crash")
        async def crash():
            raise RuntimeError("unexpected")

        async with AsyncClient(
            transport=ASGITransport(app=app, raise_app_exceptions=False),
            base_url="http://test",
        ) as client:
            resp = await client.get("/crash")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] is True
        assert "Internal Server Error" in body["message"]

    @pytest.mark.asyncio
    async def test_validation_handler_returns_422(self):
        """Pydantic validation error → 422 with field details."""
        from fastapi import FastAPI
        from httpx import ASGITransport, AsyncClient
        from pydantic import BaseModel

        from autoledger.core.exceptions import add_exception_handlers

        app = FastAPI()
        add_exception_handlers(app)

        class Body(BaseModel):
            name: str

        @app.post("/validate")
        async def validate(body: Body):
            return {"ok": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/validate", json={})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] is True
        assert "details" in body

    @pytest.mark.asyncio
    async def test_http_exception_handler(self):
        """StarletteHTTPException (e.g. 404 from unknown route) → proper JSON."""
        from fastapi import FastAPI
        from httpx import ASGITransport, AsyncClient

        from autoledger.core.exceptions import add_exception_handlers

        app = FastAPI()
        add_exception_handlers(app)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/nonexistent")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] is True

    @pytest.mark.asyncio
    async def test_app_exception_includes_details(self):
        """Domain errors keep their status code and carry ``details`` when set."""
        from fastapi import FastAPI
        from httpx import ASGITransport, AsyncClient

        from autoledger.core.exceptions import add_exception_handlers

        app = FastAPI()
        add_exception_handlers(app)

        @app.post("/reserve")
        async def reserve():
            raise InsufficientCreditError("inv-1", Decimal("10.00"), Decimal("5.00"))

        @app.post("/approve")
        async def approve():
            raise AlreadyApprovedError("PL0001")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            reserve_resp = await client.post("/reserve")
            approve_resp = await client.post("/approve")

        assert reserve_resp.status_code == 422
        assert reserve_resp.json()["details"]["remaining"] == "5.00"
        assert approve_resp.status_code == 409
        assert "details" not in approve_resp.json()

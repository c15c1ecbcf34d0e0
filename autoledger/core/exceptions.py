"""
Domain exceptions and the global FastAPI exception handlers.

Every error response follows the same JSON envelope::

    {
        "error": true,
        "message": "<human-readable description>",
        "details": {...}            # only when the error carries details
    }

Services raise the domain exceptions below and never import FastAPI;
the handlers translate them to HTTP responses.

=========================  ======
Exception                  Status
=========================  ======
ValidationError            422
OutOfRangeError            422
InsufficientCreditError    422
NotFoundError              404
UnauthorizedGroupError     403
ConflictError              409
DuplicateApprovalError     409
AlreadyApprovedError       409
InconsistentLedgerError    500
InvariantViolationError    500
=========================  ======
"""

import logging
from decimal import Decimal
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from autoledger.core.resilience import CircuitBreakerError

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Domain exceptions  (raised by service layer, caught by handlers below)
# ────────────────────────────────────────────────────────────────────────────


class AppException(Exception):
    """Base exception for all application-level errors."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(AppException):
    """Referenced entity does not exist (404)."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=404,
            message=f"{resource} with id '{identifier}' not found",
        )


class ValidationError(AppException):
    """Input violates a ledger rule that the request schema cannot express (422)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(status_code=422, message=message, details=details)


class OutOfRangeError(ValidationError):
    """Allocation percentage falls outside the investor's decided range."""


class ConflictError(AppException):
    """Operation collides with the current state of the entity (409)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(status_code=409, message=message, details=details)


class DuplicateApprovalError(ConflictError):
    """The admin has already approved this commitment."""

    def __init__(self, commitment_ref: str, admin_id: Any):
        super().__init__(
            f"Admin '{admin_id}' has already approved commitment {commitment_ref}"
        )


class AlreadyApprovedError(ConflictError):
    """The commitment reached the terminal ``approved`` state."""

    def __init__(self, commitment_ref: str):
        super().__init__(f"Commitment {commitment_ref} is already approved")


class UnauthorizedGroupError(AppException):
    """The acting admin belongs to no approval group (403)."""

    def __init__(self, admin_id: Any):
        super().__init__(
            status_code=403,
            message=f"Admin '{admin_id}' is not a member of any approval group",
        )


class ActorMismatchError(AppException):
    """The acting person is not the admin the approval is recorded for (403)."""

    def __init__(self, actor: Any, admin_id: Any):
        super().__init__(
            status_code=403,
            message=f"Actor '{actor}' may not approve on behalf of admin '{admin_id}'",
        )


class InsufficientCreditError(AppException):
    """A reservation exceeds the investor's remaining credit (422)."""

    def __init__(self, investor_id: Any, requested: Decimal, remaining: Decimal):
        super().__init__(
            status_code=422,
            message=(
                f"Investor '{investor_id}' has insufficient credit: "
                f"requested {requested}, remaining {remaining}"
            ),
            details={
                "investor_id": str(investor_id),
                "requested": str(requested),
                "remaining": str(remaining),
            },
        )


class InconsistentLedgerError(AppException):
    """Stored allocations do not reconcile with the asset they fund (500)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(status_code=500, message=message, details=details)


class InvariantViolationError(AppException):
    """A ledger invariant would be broken by the operation (500)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(status_code=500, message=message, details=details)


# ────────────────────────────────────────────────────────────────────────────
# FastAPI exception handler registration
# ────────────────────────────────────────────────────────────────────────────


def add_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI application instance."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        """Handle domain-specific exceptions raised by the service layer."""
        if exc.status_code >= 500:
            logger.error(
                "%s on %s %s: %s",
                type(exc).__name__,
                request.method,
                request.url.path,
                exc.message,
            )
        content: dict[str, Any] = {"error": True, "message": exc.message}
        if exc.details is not None:
            content["details"] = jsonable_encoder(exc.details)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(CircuitBreakerError)
    async def circuit_breaker_handler(
        request: Request, exc: CircuitBreakerError
    ) -> JSONResponse:
        """Translate a fast-failed database call into 503 + ``Retry-After``."""
        retry_after = max(int(exc.retry_after) + 1, 1)
        return JSONResponse(
            status_code=503,
            headers={"Retry-After": str(retry_after)},
            content={
                "error": True,
                "message": (
                    f"Service temporarily unavailable: circuit is open for "
                    f"'{exc.name}'. Retry in {retry_after}s."
                ),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle standard HTTP exceptions (e.g. 404 from path-not-found)."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Return a 422 listing every field that failed request validation."""
        errors = []
        for err in exc.errors():
            loc = " -> ".join(str(part) for part in err["loc"])
            errors.append({"field": loc, "message": err["msg"]})
        return JSONResponse(
            status_code=422,
            content={"error": True, "message": "Validation failed", "details": errors},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected exceptions: log the traceback, return 500."""
        logger.exception(
            "Unhandled exception on %s %s", request.method, request.url.path
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": True,
                "message": "Internal Server Error. Please contact support.",
            },
        )

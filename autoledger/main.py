"""
AutoTrade Capital Ledger API: application entry-point.

Initializes the FastAPI application, registers middleware, exception handlers
and routers, and manages the application lifecycle (schema creation and
ledger initialisation on startup).
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.docs import get_redoc_html
from sqlalchemy import text

from autoledger.api.v1.api import api_router
from autoledger.core.cache import cache
from autoledger.core.config import settings
from autoledger.core.exceptions import add_exception_handlers
from autoledger.core.logging import setup_logging
from autoledger.core.resilience import db_circuit_breaker
from autoledger.db.base import create_schema
from autoledger.db.session import AsyncSessionLocal, engine
from autoledger.middleware import RequestIDMiddleware, RequestTimingMiddleware
from autoledger.services.bootstrap import initialize_ledger

setup_logging()
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


# ────────────────────────────────────────────────────────────────────────────
# Application lifespan
# ────────────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
      - Creates the tables, retrying while the database comes up.
      - Creates the sequence counters and the default approval groups.
      - If the database stays unreachable the app starts in degraded mode
        (``/health`` reports ``database: false``).

    Shutdown:
      - Disposes of the connection pool.
    """
    max_retries = 5
    retry_delay = 2  # seconds, doubled each attempt

    for attempt in range(1, max_retries + 1):
        try:
            logger.info("Connecting to database (attempt %d/%d)…", attempt, max_retries)
            await create_schema(engine)
            async with AsyncSessionLocal() as session:
                await initialize_ledger(session)
            logger.info("Database ready")
            break
        except Exception as exc:
            if attempt < max_retries:
                logger.warning(
                    "Database start-up failed (attempt %d/%d): %s; retrying in %ds…",
                    attempt,
                    max_retries,
                    exc,
                    retry_delay,
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logger.error(
                    "Could not initialise the database after %d attempts. The "
                    "application starts in DEGRADED mode and ledger endpoints will "
                    "fail until the database is available. Last error: %s",
                    max_retries,
                    exc,
                )

    yield

    logger.info("Shutting down, disposing connection pool")
    await engine.dispose()


# ────────────────────────────────────────────────────────────────────────────
# FastAPI application instance
# ────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=APP_VERSION,
    description=(
        "Capital allocation and dual-approval ledger for vehicle trading: "
        "investor credit, approval groups, allocation splits, settlements and "
        "the audit trail."
    ),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    redoc_url=None,
    lifespan=lifespan,
)


@app.get("/redoc", include_in_schema=False)
async def custom_redoc_html():
    """Serve ReDoc from the unpkg CDN."""
    return get_redoc_html(
        openapi_url=app.openapi_url or f"{settings.API_V1_STR}/openapi.json",
        title=f"{settings.PROJECT_NAME} ReDoc",
        redoc_js_url="https://unpkg.com/redoc@latest/bundles/redoc.standalone.js",
    )


# ── Middleware (last added = outermost) ──
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Global error handlers ──
add_exception_handlers(app)

# ── API routers ──
app.include_router(api_router, prefix=settings.API_V1_STR)


# ── Health check ──


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness / readiness probe.

    Runs ``SELECT 1`` against the database and reports circuit breaker
    state and cache statistics.
    """
    db_healthy = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_healthy = False

    status = "ok" if db_healthy else "degraded"
    return {
        "status": status,
        "version": APP_VERSION,
        "database": db_healthy,
        "circuit_breaker": db_circuit_breaker.get_status(),
        "cache": cache.get_stats(),
    }

"""
Application configuration module.

Loads settings from environment variables (or a ``.env`` file) using
pydantic-settings.  Database credentials and ledger tolerances are never
hardcoded in the services; everything tunable lives here.
"""

from decimal import Decimal
from typing import List

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the AutoTrade Capital Ledger API.

    Environment variables are loaded automatically from ``.env`` if present.
    In a deployed environment they are injected by the container runtime.
    """

    PROJECT_NAME: str = "AutoTrade Capital Ledger API"
    API_V1_STR: str = "/api/v1"

    # ── SQLite mode (no external DB required) ──
    USE_SQLITE: bool = False

    # ── PostgreSQL connection parameters ──
    # Empty defaults keep USE_SQLITE=true usable without dummy PG variables;
    # the validator below still refuses to start PostgreSQL mode without them.
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SERVER: str = ""
    POSTGRES_DB: str = ""
    POSTGRES_PORT: int = 5432

    @model_validator(mode="after")
    def _require_pg_credentials_unless_sqlite(self) -> "Settings":
        """Fail fast if PostgreSQL credentials are missing in production mode."""
        if not self.USE_SQLITE:
            missing = [
                name
                for name in (
                    "POSTGRES_USER",
                    "POSTGRES_PASSWORD",
                    "POSTGRES_SERVER",
                    "POSTGRES_DB",
                )
                if not getattr(self, name)
            ]
            if missing:
                vars_list = ", ".join(missing)
                raise ValueError(
                    f"PostgreSQL mode requires these environment variables: "
                    f"{vars_list}.\n\n"
                    f"Either provide them (e.g. in a .env file next to "
                    f"pyproject.toml):\n"
                    f"       POSTGRES_USER=autoledger\n"
                    f"       POSTGRES_PASSWORD=autoledger\n"
                    f"       POSTGRES_SERVER=127.0.0.1\n"
                    f"       POSTGRES_DB=autoledger\n\n"
                    f"or run against in-memory SQLite instead:\n"
                    f"       USE_SQLITE=true uvicorn autoledger.main:app"
                )
        return self

    # ── Connection pool tuning ──
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30  # seconds to wait for a pooled connection
    DB_POOL_RECYCLE: int = 1800  # seconds before a connection is recycled

    # ── CORS ──
    # Comma-separated list of allowed origins.
    CORS_ORIGINS: str = "*"

    # ── Logging ──
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: int = 5

    # ── Read cache (investor and group listings only) ──
    CACHE_ENABLED: bool = True
    CACHE_TTL: float = 30.0
    CACHE_MAX_SIZE: int = 1000

    # ── Circuit breaker guarding database calls ──
    CB_FAILURE_THRESHOLD: int = 5
    CB_RECOVERY_TIMEOUT: float = 30.0

    # ── Ledger rules ──
    CURRENCY: str = "AED"
    # Allowed deviation of Σ percentage from 100 and of Σ amount from the
    # commitment total when an allocation split is recorded.
    PERCENTAGE_TOLERANCE: Decimal = Decimal("0.01")
    AMOUNT_TOLERANCE: Decimal = Decimal("0.01")
    # Largest rounding drift a release may absorb by flooring at zero.
    LEDGER_DRIFT_EPSILON: Decimal = Decimal("0.01")
    # Optimistic-concurrency retries for a single approval submission.
    APPROVAL_MAX_RETRIES: int = 3
    # Names of the two approval groups created on first start-up.
    DEFAULT_GROUP_NAMES: str = "Group A,Group B"

    @property
    def default_group_names(self) -> List[str]:
        """``DEFAULT_GROUP_NAMES`` split into a clean list."""
        return [name.strip() for name in self.DEFAULT_GROUP_NAMES.split(",") if name.strip()]

    @property
    def DATABASE_URL(self) -> str:
        """Construct the async database DSN.

        Returns an in-memory SQLite URL when ``USE_SQLITE`` is enabled,
        otherwise a PostgreSQL DSN for asyncpg.
        """
        if self.USE_SQLITE:
            return "sqlite+aiosqlite://"
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()

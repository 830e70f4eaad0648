"""Engine settings loaded from environment variables."""

from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ────────────────────────────────────────────────
    # Run and event persistence.  Defaults to a local SQLite file.
    FLOW_DB_URL: str = "sqlite+aiosqlite:///./flowengine.db"

    # Dialect is auto-detected from the URL.
    FLOW_DB_DIALECT: str = "sqlite"  # sqlite | postgres

    # When false, events only travel through the in-process bus.
    PERSIST_EVENTS: bool = True

    # ── Server ──────────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # ── CORS (workflow editor) ──────────────────────────────────
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # ── Logging ─────────────────────────────────────────────────
    LOG_FORMAT: str = "text"  # text | json
    LOG_LEVEL: str = "INFO"

    # Per-node trace logging for runs that do not ask explicitly.
    TRACE_LOGS_DEFAULT: bool = False

    # ── Execution ───────────────────────────────────────────────
    # Safety cap for repeat-until loops that do not set maxIterations.
    LOOP_MAX_ITERATIONS: int = 1000

    # Events retained per run for SSE replay.
    EVENT_HISTORY_LIMIT: int = 1000

    # Finished runs stay in memory this long before only the DB has them.
    RUN_RETENTION_SECONDS: float = 300.0

    # Default timeout for apiRequest nodes.
    API_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ── Artifacts ───────────────────────────────────────────────
    # Reports are written to OUTPUT_DIR/<run_id>/.
    OUTPUT_DIR: str = "./output"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _auto_configure(self) -> "Settings":
        """Auto-detect dialect from the DB URL."""
        url = self.FLOW_DB_URL
        if url.startswith(("postgresql", "postgres")):
            object.__setattr__(self, "FLOW_DB_DIALECT", "postgres")
        elif url.startswith("sqlite"):
            object.__setattr__(self, "FLOW_DB_DIALECT", "sqlite")
        if self.LOOP_MAX_ITERATIONS < 1:
            object.__setattr__(self, "LOOP_MAX_ITERATIONS", 1)
        return self

    @property
    def is_postgres(self) -> bool:
        return self.FLOW_DB_DIALECT == "postgres"

    @property
    def is_sqlite(self) -> bool:
        return self.FLOW_DB_DIALECT == "sqlite"


settings = Settings()

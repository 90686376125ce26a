"""
Gateway configuration.

Frozen dataclass loaded from environment variables.
Loads ~/.rpa/shared.env first (worker URL, shared API key),
then ~/.rpa/gateway.env (component-specific overrides).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_REQUIRED_FIELDS = (
    "RPA_WORKER_URL",
)


@dataclass(frozen=True)
class Config:
    """Immutable gateway configuration."""

    # Worker connection
    worker_url: str
    worker_api_key: str

    # HTTP server
    host: str
    port: int

    # Storage
    db_path: str

    # Timeout budgets (seconds)
    register_timeout_seconds: float
    execute_timeout_seconds: float

    # Logging
    log_level: str

    @classmethod
    def load(cls) -> Config:
        """Load configuration from environment variables.

        Reads ~/.rpa/shared.env and ~/.rpa/gateway.env when present.
        Raises ValueError if any required field is missing or empty.
        """
        rpa_dir = Path.home() / ".rpa"
        shared_env = rpa_dir / "shared.env"
        component_env = rpa_dir / "gateway.env"
        if shared_env.exists():
            load_dotenv(shared_env)
        if component_env.exists():
            load_dotenv(component_env, override=True)

        missing = [
            name for name in _REQUIRED_FIELDS
            if not os.environ.get(name, "").strip()
        ]
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        register_timeout = float(os.environ.get("REGISTER_TIMEOUT_SECONDS", "10"))
        execute_timeout = float(os.environ.get("EXECUTE_TIMEOUT_SECONDS", "330"))
        if register_timeout <= 0 or execute_timeout <= 0:
            raise ValueError("Worker timeouts must be positive")

        return cls(
            worker_url=os.environ["RPA_WORKER_URL"].strip().rstrip("/"),
            worker_api_key=os.environ.get("RPA_WORKER_API_KEY", "").strip(),
            host=os.environ.get("GATEWAY_HOST", "0.0.0.0").strip(),
            port=int(os.environ.get("GATEWAY_PORT", "8080")),
            db_path=os.environ.get(
                "DB_PATH", str(Path.home() / ".rpa" / "gateway.db")
            ).strip(),
            register_timeout_seconds=register_timeout,
            execute_timeout_seconds=execute_timeout,
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper(),
        )

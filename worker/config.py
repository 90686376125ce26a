"""
Worker configuration.

Frozen dataclass loaded once at process start from environment variables and
passed by reference into the job queue, executor and HTTP server.
Loads ~/.rpa/shared.env first (common URLs, keys), then ~/.rpa/worker.env
(component-specific overrides).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class WorkerConfig:
    """Immutable worker configuration."""

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3001
    api_key: str = ""

    # Job queue
    max_concurrent_jobs: int = 1
    job_timeout_seconds: float = 300.0
    job_retention_seconds: float = 3600.0
    retrieved_grace_seconds: float = 300.0
    prune_interval_seconds: float = 60.0

    # Browser
    headless: bool = True
    navigation_timeout_ms: int = 60000
    element_timeout_ms: int = 15000
    screenshot_dir: str = "/tmp/rpa-screenshots"

    # OCR
    tesseract_cmd: str = ""

    # Behavior
    human_profile: str = "normal"

    # Logging
    log_level: str = "INFO"

    @classmethod
    def load(cls) -> WorkerConfig:
        """Load configuration from environment variables.

        Reads ~/.rpa/shared.env and ~/.rpa/worker.env when present.
        Raises ValueError on invalid numeric limits.
        """
        rpa_dir = Path.home() / ".rpa"
        shared_env = rpa_dir / "shared.env"
        component_env = rpa_dir / "worker.env"
        if shared_env.exists():
            load_dotenv(shared_env)
        if component_env.exists():
            load_dotenv(component_env, override=True)

        config = cls(
            host=os.environ.get("WORKER_HOST", "0.0.0.0").strip(),
            port=int(os.environ.get("WORKER_PORT", "3001")),
            api_key=os.environ.get("WORKER_API_KEY", "").strip(),
            max_concurrent_jobs=int(os.environ.get("MAX_CONCURRENT_JOBS", "1")),
            job_timeout_seconds=float(os.environ.get("JOB_TIMEOUT_SECONDS", "300")),
            job_retention_seconds=float(
                os.environ.get("JOB_RETENTION_SECONDS", "3600")
            ),
            retrieved_grace_seconds=float(
                os.environ.get("JOB_RETRIEVED_GRACE_SECONDS", "300")
            ),
            prune_interval_seconds=float(
                os.environ.get("JOB_PRUNE_INTERVAL_SECONDS", "60")
            ),
            headless=_bool(os.environ.get("BROWSER_HEADLESS", "true")),
            navigation_timeout_ms=int(
                os.environ.get("NAVIGATION_TIMEOUT_MS", "60000")
            ),
            element_timeout_ms=int(os.environ.get("ELEMENT_TIMEOUT_MS", "15000")),
            screenshot_dir=os.environ.get(
                "SCREENSHOT_DIR", "/tmp/rpa-screenshots"
            ).strip(),
            tesseract_cmd=os.environ.get("TESSERACT_CMD", "").strip(),
            human_profile=os.environ.get("HUMAN_PROFILE", "normal").strip().lower(),
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper(),
        )

        if config.max_concurrent_jobs < 1:
            raise ValueError("MAX_CONCURRENT_JOBS must be at least 1")
        if config.job_timeout_seconds <= 0:
            raise ValueError("JOB_TIMEOUT_SECONDS must be positive")
        return config

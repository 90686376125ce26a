"""Shared pytest configuration for worker tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# worker/ is a namespace package (no __init__.py). Modules inside use
# `from worker.xxx import ...`, so the PROJECT ROOT (parent of worker/) must
# be on sys.path, and worker/ itself must NOT be (it would shadow the package).
_PROJECT_ROOT = str(Path(__file__).resolve().parent.parent.parent)
_WORKER_DIR = str(Path(__file__).resolve().parent.parent)

sys.path[:] = [p for p in sys.path if p != _WORKER_DIR]

if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from worker.config import WorkerConfig  # noqa: E402


@pytest.fixture
def config(tmp_path) -> WorkerConfig:
    """Fast, auth-free config with screenshots under tmp_path."""
    return WorkerConfig(
        api_key="",
        max_concurrent_jobs=1,
        job_timeout_seconds=5.0,
        navigation_timeout_ms=1000,
        element_timeout_ms=1000,
        screenshot_dir=str(tmp_path / "shots"),
        human_profile="fast",
    )

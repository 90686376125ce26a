"""Shared pytest configuration for gateway tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest_asyncio

# Project root on sys.path so `from gateway.xxx import ...` resolves.
_PROJECT_ROOT = str(Path(__file__).resolve().parent.parent.parent)
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from gateway.db import Database  # noqa: E402


@pytest_asyncio.fixture
async def db():
    """In-memory database, connected and ready."""
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()

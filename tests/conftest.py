"""
Pytest configuration and shared fixtures for dbmend tests.

The database is replaced by a MagicMock with AsyncMock query helpers; the
transaction it hands out records whether it was committed or rolled back.
"""

import logging
import os
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from dbmend.database.connection import Database


# ============================================================================
# Database Fixtures
# ============================================================================

class FakeTransaction:
    """Stand-in for asyncpg's Transaction supporting both usage styles."""

    def __init__(self):
        self.started = False
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self):
        self.started = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.committed = True
        else:
            self.rolled_back = True
        return False

    async def start(self):
        self.started = True

    async def commit(self):
        self.committed = True

    async def rollback(self):
        self.rolled_back = True


@pytest.fixture
def transaction() -> FakeTransaction:
    """The transaction handed out by mock_db."""
    return FakeTransaction()


@pytest.fixture
def mock_db(transaction) -> MagicMock:
    """Mock Database with async query helpers."""
    db = MagicMock(spec=Database)
    db.connect = AsyncMock()
    db.close = AsyncMock()
    db.execute = AsyncMock(return_value="OK")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    db.transaction = MagicMock(return_value=transaction)
    return db


def _column_row(
    name: str,
    data_type: str = "integer",
    nullable: bool = True,
    default: Optional[str] = None,
    max_length: Optional[int] = None,
    position: int = 1,
    identity: bool = False,
) -> Dict[str, Any]:
    """Row shaped like information_schema.columns as returned by get_columns' query."""
    return {
        "column_name": name,
        "data_type": data_type,
        "is_nullable": "YES" if nullable else "NO",
        "column_default": default,
        "character_maximum_length": max_length,
        "ordinal_position": position,
        "is_identity": "YES" if identity else "NO",
    }


@pytest.fixture
def column_row():
    """Factory for information_schema.columns rows."""
    return _column_row


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Isolate tests from the caller's DATABASE_URL, DBMEND_* variables and .env file."""
    for name in ("DATABASE_URL", "DBMEND_DATABASE_URL", "DBMEND_APPLICATION_NAME"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("DBMEND_RECONCILE__") or name.startswith("DBMEND_LOGGING__"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    dbmend_logger = logging.getLogger("dbmend")
    for handler in list(dbmend_logger.handlers):
        dbmend_logger.removeHandler(handler)
        handler.close()

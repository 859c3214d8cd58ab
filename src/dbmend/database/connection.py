"""
Database connection management for dbmend.

Every run uses exactly one short-lived asyncpg connection. There is no
pool: statements are issued one after another and the connection is
closed when the run ends.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlparse

import asyncpg
from asyncpg.transaction import Transaction
from pydantic import BaseModel, Field, field_validator

from ..exceptions import DatabaseConfigurationError, DatabaseConnectionError


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")

    ssl_mode: Optional[str] = Field(None, description="SSL mode")
    command_timeout: Optional[float] = Field(
        None, description="Command timeout in seconds"
    )
    application_name: str = Field("dbmend", description="Reported application_name")

    @field_validator("database")
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> "ConnectionConfig":
        """Create configuration from a postgres:// or postgresql:// URL.

        Only ``sslmode`` is read from the query string; provider specific
        parameters (``channel_binding`` and the like) are ignored because
        asyncpg would forward them to the server as settings.
        """
        parsed = urlparse(url)

        if parsed.scheme not in ("postgresql", "postgres"):
            raise DatabaseConfigurationError(f"Invalid database URL scheme: {parsed.scheme}")

        if not parsed.path or parsed.path == "/":
            raise DatabaseConfigurationError("Database name is required")

        query_params = parse_qs(parsed.query) if parsed.query else {}

        config_data = {
            "host": parsed.hostname or "localhost",
            "port": parsed.port or 5432,
            "database": unquote(parsed.path.lstrip("/")),
            "user": unquote(parsed.username or ""),
            "password": unquote(parsed.password or ""),
            "ssl_mode": query_params.get("sslmode", ["prefer"])[0],
        }
        config_data.update(overrides)

        return cls(**config_data)

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncpg.connect() kwargs."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "command_timeout": self.command_timeout,
            "server_settings": {"application_name": self.application_name},
        }

        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode

        return kwargs

    @property
    def display_name(self) -> str:
        """host:port/database without credentials, for log lines."""
        return f"{self.host}:{self.port}/{self.database}"


class Database:
    """A single asyncpg connection with the query helpers dbmend needs."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._connection: Optional[asyncpg.Connection] = None

    async def connect(self) -> None:
        """Open the connection. Calling it twice is a no-op."""
        if self._connection is not None:
            return

        try:
            logger.info(f"Connecting to database {self.config.display_name}")
            self._connection = await asyncpg.connect(**self.config.to_connection_kwargs())
            logger.info("Database connection established")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e

    async def close(self) -> None:
        """Close the connection."""
        if self._connection is not None:
            logger.info("Closing database connection")
            try:
                await self._connection.close()
            finally:
                self._connection = None

    def _require_connection(self) -> asyncpg.Connection:
        if self._connection is None:
            raise DatabaseConnectionError("Database is not connected")
        return self._connection

    async def execute(self, query: str, *args) -> str:
        """Execute a statement and return its status tag (e.g. ``UPDATE 3``)."""
        return await self._require_connection().execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all results from a query."""
        return await self._require_connection().fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row from a query."""
        return await self._require_connection().fetchrow(query, *args)

    async def fetchval(self, query: str, *args, column: int = 0) -> Any:
        """Fetch a single value from a query."""
        return await self._require_connection().fetchval(query, *args, column=column)

    def transaction(self) -> Transaction:
        """Return an asyncpg transaction, usable with ``async with`` or start()/rollback()."""
        return self._require_connection().transaction()


def affected_rows(status: Optional[str]) -> int:
    """Row count from an asyncpg status tag: ``UPDATE 3`` -> 3, ``INSERT 0 1`` -> 1."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0

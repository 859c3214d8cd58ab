"""
Exception classes for dbmend.
"""

from typing import Any, Dict, Optional


class DbmendError(Exception):
    """Base exception for all dbmend errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(DbmendError):
    """Raised when there's an error in configuration."""

    pass


class MissingConfigurationError(ConfigurationError):
    """Raised when a required setting such as DATABASE_URL is absent."""

    def __init__(self, setting: str) -> None:
        super().__init__(f"No {setting} found in environment variables")
        self.setting = setting


class DatabaseError(DbmendError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or using the database connection."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class StatementError(DatabaseError):
    """Raised when a single SQL statement is rejected by the server."""

    def __init__(
        self,
        message: str,
        sql: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.sql = sql


class SchemaError(DatabaseError):
    """Raised when there's an error with database schema operations."""

    pass


class SmokeTestError(SchemaError):
    """Raised when a throwaway test write does not behave as expected."""

    def __init__(self, table_name: str, reason: str) -> None:
        super().__init__(f"Smoke test failed for '{table_name}': {reason}")
        self.table_name = table_name
        self.reason = reason

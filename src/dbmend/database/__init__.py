"""
Database integration package for dbmend.

This package provides:
- A single short-lived asyncpg connection per run
- Catalog introspection (table and column existence)
- Connectivity health checks
"""

from .connection import ConnectionConfig, Database, affected_rows
from .introspection import SchemaIntrospector, ColumnInfo, TableInfo
from .health import DatabaseHealthChecker, HealthCheckResult, HealthStatus

__all__ = [
    "ConnectionConfig",
    "Database",
    "affected_rows",
    "SchemaIntrospector",
    "ColumnInfo",
    "TableInfo",
    "DatabaseHealthChecker",
    "HealthCheckResult",
    "HealthStatus",
]

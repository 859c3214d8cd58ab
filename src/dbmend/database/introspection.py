"""
Database schema introspection for dbmend.

Reads ``information_schema`` to find out which tables and columns exist
and how they are defined, so repairs only run when something has drifted.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .connection import Database
from ..exceptions import DatabaseError, SchemaError


logger = logging.getLogger(__name__)


@dataclass
class ColumnInfo:
    """Information about a database column."""

    name: str
    data_type: str
    is_nullable: bool
    default_value: Optional[str] = None
    max_length: Optional[int] = None
    ordinal_position: int = 0
    is_identity: bool = False

    @property
    def has_default(self) -> bool:
        return bool(self.default_value)

    def __str__(self) -> str:
        result = f"{self.name}: {self.data_type}"
        if self.max_length:
            result += f"({self.max_length})"
        result += f" (nullable: {'YES' if self.is_nullable else 'NO'}, default: {self.default_value})"
        return result


@dataclass
class TableInfo:
    """Information about a database table."""

    schema: str
    name: str
    columns: Dict[str, ColumnInfo] = field(default_factory=dict)
    row_count: Optional[int] = None


class SchemaIntrospector:
    """Catalog metadata lookups."""

    def __init__(self, db: Database):
        self.db = db

    async def table_exists(self, schema: str, table: str) -> bool:
        """Check if a table exists."""
        query = """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = $1 AND table_name = $2
            )
        """

        try:
            result = await self.db.fetchval(query, schema, table)
            return bool(result)
        except Exception as e:
            logger.error(f"Error checking table existence for {schema}.{table}: {e}")
            raise DatabaseError(f"Failed to check table existence: {e}") from e

    async def column_exists(self, schema: str, table: str, column: str) -> bool:
        """Check if a column exists."""
        query = """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.columns
                WHERE table_schema = $1 AND table_name = $2 AND column_name = $3
            )
        """

        try:
            result = await self.db.fetchval(query, schema, table, column)
            return bool(result)
        except Exception as e:
            logger.error(f"Error checking column {schema}.{table}.{column}: {e}")
            raise DatabaseError(f"Failed to check column existence: {e}") from e

    async def get_columns(self, schema: str, table: str) -> Dict[str, ColumnInfo]:
        """Get all columns for a table, in ordinal order."""
        query = """
            SELECT
                c.column_name,
                c.data_type,
                c.is_nullable,
                c.column_default,
                c.character_maximum_length,
                c.ordinal_position,
                c.is_identity
            FROM information_schema.columns c
            WHERE c.table_schema = $1 AND c.table_name = $2
            ORDER BY c.ordinal_position
        """

        try:
            rows = await self.db.fetch(query, schema, table)
        except Exception as e:
            logger.error(f"Error getting columns for {schema}.{table}: {e}")
            raise SchemaError(f"Failed to get columns: {e}") from e

        columns = {}
        for row in rows:
            col_info = ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                is_nullable=row["is_nullable"] == "YES",
                default_value=row["column_default"],
                max_length=row["character_maximum_length"],
                ordinal_position=row["ordinal_position"],
                is_identity=row["is_identity"] == "YES",
            )
            columns[col_info.name] = col_info

        return columns

    async def count_rows(self, schema: str, table: str) -> int:
        """Exact row count."""
        try:
            return await self.db.fetchval(f"SELECT COUNT(*) FROM {schema}.{table}") or 0
        except Exception as e:
            logger.error(f"Error counting rows in {schema}.{table}: {e}")
            raise DatabaseError(f"Failed to count rows: {e}") from e

    async def get_table_info(
        self, schema: str, table: str, with_row_count: bool = False
    ) -> Optional[TableInfo]:
        """Get columns (and optionally the row count) of a table, None if it is missing."""
        if not await self.table_exists(schema, table):
            return None

        columns = await self.get_columns(schema, table)
        row_count = await self.count_rows(schema, table) if with_row_count else None

        return TableInfo(schema=schema, name=table, columns=columns, row_count=row_count)

"""
Safe schema operations for dbmend.

Every change is described as a SchemaChange (the SQL it will run plus
execution results) and executed inside a transaction, so a statement
that fails part way leaves the table as it was.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence
from enum import Enum

import asyncpg

from ..database.connection import Database, affected_rows
from ..exceptions import SchemaError, StatementError
from .specs import ColumnSpec, TableSpec


logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """Types of changes."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    REBUILD_TABLE = "rebuild_table"
    UPDATE_ROWS = "update_rows"


class OperationMode(str, Enum):
    """Schema operation modes."""

    APPLY = "apply"        # Perform every repair
    SAFE = "safe"          # Refuse destructive repairs
    DRY_RUN = "dry_run"    # Log SQL but don't execute


@dataclass
class SchemaChange:
    """Represents one change and, once run, its outcome."""

    change_type: ChangeType
    schema: str
    table: str
    description: str
    sql_commands: List[str] = field(default_factory=list)
    parameters: Sequence[Any] = ()
    target_object: Optional[str] = None
    is_destructive: bool = False

    # Execution results
    executed: bool = False
    execution_time_ms: Optional[float] = None
    statuses: List[str] = field(default_factory=list)
    rows_affected: Optional[int] = None
    error: Optional[str] = None

    @property
    def full_table_name(self) -> str:
        """Get fully qualified table name."""
        return f"{self.schema}.{self.table}"

    @property
    def has_error(self) -> bool:
        """Check if this change has an error."""
        return self.error is not None

    @property
    def change_id(self) -> str:
        """Get identifier for this change, used in log lines."""
        target = self.target_object or self.table
        return f"{self.change_type.value}_{self.schema}_{self.table}_{target}"


CommandHook = Callable[[SchemaChange, int], Awaitable[None]]


class SafeSchemaOperations:
    """Schema change executor honouring the operation mode."""

    def __init__(self, db: Database, operation_mode: OperationMode = OperationMode.APPLY):
        self.db = db
        self.operation_mode = operation_mode

    @property
    def is_dry_run(self) -> bool:
        return self.operation_mode == OperationMode.DRY_RUN

    async def create_table(self, spec: TableSpec) -> SchemaChange:
        """Create a table from its definition (idempotent)."""
        change = SchemaChange(
            change_type=ChangeType.CREATE_TABLE,
            schema=spec.schema_name,
            table=spec.name,
            description=f"Create table {spec.full_name}",
            sql_commands=[spec.create_sql(if_not_exists=True)],
        )
        return await self._execute_change(change)

    async def add_column(self, spec: TableSpec, column: ColumnSpec) -> SchemaChange:
        """Add a column if it doesn't exist."""
        change = SchemaChange(
            change_type=ChangeType.ADD_COLUMN,
            schema=spec.schema_name,
            table=spec.name,
            description=f"Add column {column.name}",
            sql_commands=[
                f"ALTER TABLE {spec.full_name} ADD COLUMN IF NOT EXISTS {column.definition}"
            ],
            target_object=column.name,
        )
        return await self._execute_change(change)

    async def update_rows(
        self,
        spec: TableSpec,
        assignments: str,
        condition: str,
        description: str,
        *args: Any,
    ) -> SchemaChange:
        """Bulk conditional UPDATE; rows_affected is filled in from the status tag."""
        change = SchemaChange(
            change_type=ChangeType.UPDATE_ROWS,
            schema=spec.schema_name,
            table=spec.name,
            description=description,
            sql_commands=[f"UPDATE {spec.full_name} SET {assignments} WHERE {condition}"],
            parameters=args,
        )
        change = await self._execute_change(change)
        if change.executed:
            change.rows_affected = affected_rows(change.statuses[-1])
        return change

    async def rebuild_table(
        self,
        spec: TableSpec,
        copy_columns: List[str],
        order_by: Optional[str] = None,
    ) -> SchemaChange:
        """
        Replace a table with a freshly created one, keeping its rows.

        The rows are copied into a shadow table built from the definition, the
        old table is dropped and the shadow renamed into place, all in one
        transaction. Only ``copy_columns`` are carried over, so columns the
        definition generates (the identity) get new values. The copy is checked
        against the old row count before anything is dropped.
        """
        if not copy_columns:
            raise SchemaError(
                f"Cannot rebuild {spec.full_name}: none of its columns can be restored"
            )

        columns = ", ".join(copy_columns)
        order_clause = f" ORDER BY {order_by}" if order_by else ""
        shadow = spec.shadow_name

        sql_commands = [
            f"LOCK TABLE {spec.full_name} IN ACCESS EXCLUSIVE MODE",
            spec.create_sql(table_name=shadow, if_not_exists=False),
            f"INSERT INTO {spec.schema_name}.{shadow} ({columns}) "
            f"SELECT {columns} FROM {spec.full_name}{order_clause}",
            f"DROP TABLE {spec.full_name} CASCADE",
            f"ALTER TABLE {spec.schema_name}.{shadow} RENAME TO {spec.name}",
        ]
        if any(column.primary_key for column in spec.columns):
            sql_commands.append(
                f"ALTER TABLE {spec.full_name} "
                f"RENAME CONSTRAINT {shadow}_pkey TO {spec.name}_pkey"
            )

        copy_index = 2

        async def verify_copy(change: SchemaChange, index: int) -> None:
            if index != copy_index:
                return
            copied = affected_rows(change.statuses[index])
            original = await self.db.fetchval(f"SELECT COUNT(*) FROM {spec.full_name}")
            if copied != original:
                raise SchemaError(
                    f"Copied {copied} of {original} rows from {spec.full_name}, aborting rebuild"
                )
            change.rows_affected = copied

        change = SchemaChange(
            change_type=ChangeType.REBUILD_TABLE,
            schema=spec.schema_name,
            table=spec.name,
            description=f"Rebuild table {spec.full_name} preserving {columns}",
            sql_commands=sql_commands,
            is_destructive=True,
        )
        return await self._execute_change(change, after_command=verify_copy)

    async def _execute_change(
        self, change: SchemaChange, after_command: Optional[CommandHook] = None
    ) -> SchemaChange:
        """Execute a change according to the operation mode; errors are recorded and re-raised."""

        if self.is_dry_run:
            change.executed = False
            change.description = f"DRY RUN: {change.description}"
            logger.info(f"DRY RUN: Would execute {change.change_id}")
            for sql in change.sql_commands:
                logger.info(f"SQL: {sql.strip()}")
            return change

        if change.is_destructive and self.operation_mode == OperationMode.SAFE:
            change.error = (
                f"Destructive operation {change.change_type.value} not allowed in SAFE mode"
            )
            logger.error(f"Refusing {change.change_id}: {change.error}")
            raise SchemaError(change.error)

        try:
            await self._execute_with_transaction(change, after_command)
            change.executed = True
            logger.info(f"Successfully executed {change.change_id}")

        except Exception as e:
            change.executed = False
            change.error = str(e)
            logger.error(f"Failed to execute {change.change_id}: {e}")
            raise

        return change

    async def _execute_with_transaction(
        self, change: SchemaChange, after_command: Optional[CommandHook] = None
    ) -> None:
        """Run all of a change's statements in one transaction."""
        start_time = time.time()

        async with self.db.transaction():
            for index, sql_command in enumerate(change.sql_commands):
                try:
                    status = await self.db.execute(sql_command, *change.parameters)
                except asyncpg.PostgresError as e:
                    raise StatementError(
                        f"Statement failed on {change.full_table_name}",
                        sql=sql_command,
                        cause=e,
                    ) from e
                change.statuses.append(status)
                if after_command is not None:
                    await after_command(change, index)

        change.execution_time_ms = (time.time() - start_time) * 1000


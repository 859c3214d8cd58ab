"""
Schema reconciliation core logic for dbmend.

Runs a plan (an ordered list of steps) against one database connection.
Every step checks catalog metadata first and only changes what has
drifted, so plans are safe to re-run. A failing step is logged and
recorded; the following independent steps still run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from enum import Enum

from ..database.connection import Database
from ..database.health import DatabaseHealthChecker
from ..database.introspection import ColumnInfo, SchemaIntrospector
from ..exceptions import DatabaseConnectionError, SchemaError, SmokeTestError
from .operations import OperationMode, SafeSchemaOperations, SchemaChange
from .specs import (
    INVENTORY_ITEMS,
    NOTIFICATIONS,
    STATUS_ACTIVE,
    STATUS_OUT_OF_STOCK,
    ColumnSpec,
    TableSpec,
)


logger = logging.getLogger(__name__)


class ReconciliationStatus(str, Enum):
    """Status of a whole plan."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepStatus(str, Enum):
    """Outcome of a single step."""

    OK = "ok"
    REPAIRED = "repaired"
    PLANNED = "planned"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of one reconciliation step."""

    name: str
    status: StepStatus
    message: str
    changes: List[SchemaChange] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED


@dataclass
class ReconciliationResult:
    """Result of running a plan."""

    plan: str
    steps: List[StepResult] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def status(self) -> ReconciliationStatus:
        if not self.steps:
            return ReconciliationStatus.SKIPPED
        failed = sum(1 for step in self.steps if step.failed)
        if failed == 0:
            return ReconciliationStatus.SUCCESS
        if failed == len(self.steps):
            return ReconciliationStatus.FAILED
        return ReconciliationStatus.PARTIAL

    @property
    def errors(self) -> List[str]:
        return [f"{step.name}: {step.message}" for step in self.steps if step.failed]

    @property
    def changes(self) -> List[SchemaChange]:
        return [change for step in self.steps for change in step.changes]

    def summary(self) -> Dict[str, int]:
        """Step counts per status plus applied/planned change totals."""
        counts = {status.value: 0 for status in StepStatus}
        for step in self.steps:
            counts[step.status.value] += 1
        counts["changes_applied"] = sum(1 for c in self.changes if c.executed)
        counts["changes_planned"] = sum(
            1 for c in self.changes if not c.executed and not c.has_error
        )
        return counts

    def get_step(self, name: str) -> Optional[StepResult]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    @classmethod
    def connection_failure(cls, plan: str, message: str) -> "ReconciliationResult":
        """Result for a plan that never got a working connection."""
        return cls(
            plan=plan,
            steps=[StepResult(name="connection", status=StepStatus.FAILED, message=message)],
        )


def identity_lacks_default(spec: TableSpec, columns: Dict[str, ColumnInfo]) -> bool:
    """Default rebuild predicate: the identity column exists but nothing generates its values."""
    if not spec.identity_column:
        return False
    column = columns.get(spec.identity_column)
    return column is not None and not column.has_default and not column.is_identity


Predicate = Callable[[TableSpec, Dict[str, ColumnInfo]], bool]


class SchemaReconciler:
    """
    Core reconciliation engine for dbmend.

    Operations (each idempotent and each returning a StepResult):
    - ensure_table / ensure_columns: create what is missing
    - rebuild_if_malformed: transactional shadow-table rebuild
    - normalize_status: bulk status/quantity reconciliation
    - smoke_test / probe_update: disposable writes proving the table works
    """

    PLANS = {
        "fix": "run_fix",
        "notifications": "run_fix_notifications",
        "inventory": "run_fix_inventory",
        "check": "run_check",
        "update": "run_test_update",
    }

    def __init__(
        self,
        db: Database,
        operation_mode: OperationMode = OperationMode.APPLY,
        schema: str = "public",
    ):
        self.db = db
        self.operation_mode = operation_mode

        self.introspector = SchemaIntrospector(db)
        self.health_checker = DatabaseHealthChecker(db)
        self.operations = SafeSchemaOperations(db, operation_mode)

        self.notifications = NOTIFICATIONS.with_schema(schema)
        self.inventory = INVENTORY_ITEMS.with_schema(schema)

    @property
    def is_dry_run(self) -> bool:
        return self.operation_mode == OperationMode.DRY_RUN

    # ------------------------------------------------------------------
    # Step runner
    # ------------------------------------------------------------------

    async def _step(
        self,
        result: ReconciliationResult,
        name: str,
        func: Callable[..., Awaitable[StepResult]],
        *args: Any,
    ) -> StepResult:
        """Run one step, turning any exception into a failed StepResult."""
        start_time = time.time()
        logger.info(f"Running step {name}")

        try:
            step = await func(*args)
            step.name = name
        except Exception as e:
            logger.error(f"Step {name} failed: {e}")
            step = StepResult(name=name, status=StepStatus.FAILED, message=str(e))

        step.duration_ms = (time.time() - start_time) * 1000
        result.steps.append(step)

        if step.status == StepStatus.WARNING:
            logger.warning(f"{name}: {step.message}")
        elif not step.failed:
            logger.info(f"{name}: {step.message}")

        return step

    def _change_status(self, changes: List[SchemaChange]) -> StepStatus:
        if any(change.executed for change in changes):
            return StepStatus.REPAIRED
        if changes and self.is_dry_run:
            return StepStatus.PLANNED
        return StepStatus.OK

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def check_connection(self) -> StepResult:
        """Probe the connection; raises DatabaseConnectionError when it is unusable."""
        checks = await self.health_checker.check_all()
        details = {}
        for check in checks.values():
            if not check.is_healthy:
                raise DatabaseConnectionError(check.message, details=check.details)
            details.update(check.details)

        return StepResult(
            name="connection",
            status=StepStatus.OK,
            message="Database connection successful",
            details=details,
        )

    async def ensure_table(self, spec: TableSpec) -> StepResult:
        """Create the table when it is missing and its definition allows it."""
        if await self.introspector.table_exists(spec.schema_name, spec.name):
            return StepResult(
                name="ensure_table",
                status=StepStatus.OK,
                message=f"Table {spec.full_name} already exists",
            )

        if not spec.create_if_missing:
            raise SchemaError(f"Table {spec.full_name} does not exist")

        change = await self.operations.create_table(spec)
        return StepResult(
            name="ensure_table",
            status=self._change_status([change]),
            message=f"Table {spec.full_name} created",
            changes=[change],
        )

    async def ensure_column(self, spec: TableSpec, column: ColumnSpec) -> Optional[SchemaChange]:
        """Add one column when it is missing. Returns None when nothing had to change."""
        if await self.introspector.column_exists(spec.schema_name, spec.name, column.name):
            return None

        if not column.add_if_missing:
            raise SchemaError(
                f"Column {spec.full_name}.{column.name} is missing and cannot be added"
            )

        return await self.operations.add_column(spec, column)

    async def ensure_columns(self, spec: TableSpec) -> StepResult:
        """Check every defined column; each column is handled independently."""
        changes: List[SchemaChange] = []
        missing: List[str] = []
        failures: List[str] = []

        for column in spec.columns:
            try:
                if column.add_if_missing:
                    change = await self.ensure_column(spec, column)
                    if change is not None:
                        changes.append(change)
                elif not await self.introspector.column_exists(
                    spec.schema_name, spec.name, column.name
                ):
                    missing.append(column.name)
            except Exception as e:
                logger.warning(f"Could not add {column.name} column: {e}")
                failures.append(f"{column.name}: {e}")

        details = {
            "added": [c.target_object for c in changes if c.executed],
            "missing": missing,
        }

        if failures:
            return StepResult(
                name="ensure_columns",
                status=StepStatus.FAILED,
                message=f"Could not add columns: {'; '.join(failures)}",
                changes=changes,
                details=details,
            )

        if missing:
            return StepResult(
                name="ensure_columns",
                status=StepStatus.WARNING,
                message=f"Missing columns: {', '.join(missing)}",
                changes=changes,
                details=details,
            )

        status = self._change_status(changes)
        names = ", ".join(c.target_object for c in changes)
        if changes and self.is_dry_run:
            message = f"Would add columns: {names}"
        elif changes:
            message = f"Added columns: {names}"
        else:
            message = "All required columns present"

        return StepResult(
            name="ensure_columns",
            status=status,
            message=message,
            changes=changes,
            details=details,
        )

    async def rebuild_if_malformed(
        self, spec: TableSpec, predicate: Optional[Predicate] = None
    ) -> StepResult:
        """Rebuild the table through a shadow table when ``predicate`` says it is malformed."""
        predicate = predicate or identity_lacks_default
        columns = await self.introspector.get_columns(spec.schema_name, spec.name)

        if not columns:
            return StepResult(
                name="rebuild_if_malformed",
                status=StepStatus.SKIPPED,
                message=f"Table {spec.full_name} does not exist",
            )

        if not predicate(spec, columns):
            return StepResult(
                name="rebuild_if_malformed",
                status=StepStatus.OK,
                message=f"{spec.identity_column or 'Table'} column properly configured",
            )

        logger.warning(f"{spec.full_name} is malformed, rebuilding")

        copy_columns = [name for name in spec.restore_columns if name in columns]
        order_by = spec.identity_column if spec.identity_column in columns else None
        change = await self.operations.rebuild_table(spec, copy_columns, order_by=order_by)

        if change.executed:
            message = f"Rebuilt {spec.full_name}, restored {change.rows_affected} rows"
        else:
            message = f"Would rebuild {spec.full_name}"

        return StepResult(
            name="rebuild_if_malformed",
            status=self._change_status([change]),
            message=message,
            changes=[change],
            details={"restored": change.rows_affected, "columns": copy_columns},
        )

    async def normalize_status(self, spec: TableSpec) -> StepResult:
        """Make status 'out of stock' exactly where total_quantity is 0 and 'active' elsewhere."""
        null_status = await self.operations.update_rows(
            spec,
            "status = $1",
            "status IS NULL",
            "Set null statuses to active",
            STATUS_ACTIVE,
        )
        out_of_stock = await self.operations.update_rows(
            spec,
            "status = $1",
            "total_quantity = 0 AND status IS DISTINCT FROM $1",
            "Mark zero-quantity items out of stock",
            STATUS_OUT_OF_STOCK,
        )
        active = await self.operations.update_rows(
            spec,
            "status = $1",
            "total_quantity IS DISTINCT FROM 0 AND status IS DISTINCT FROM $1",
            "Mark items with stock active",
            STATUS_ACTIVE,
        )

        changes = [null_status, out_of_stock, active]
        details = {
            "null_status": null_status.rows_affected or 0,
            "out_of_stock": out_of_stock.rows_affected or 0,
            "active": active.rows_affected or 0,
        }
        total = sum(details.values())

        if self.is_dry_run:
            status, message = StepStatus.PLANNED, "Would normalize item statuses"
        elif total:
            status = StepStatus.REPAIRED
            message = (
                f"Updated {details['null_status']} null, "
                f"{details['out_of_stock']} out of stock, {details['active']} active"
            )
        else:
            status, message = StepStatus.OK, "All item statuses consistent"

        return StepResult(
            name="normalize_status",
            status=status,
            message=message,
            changes=changes,
            details=details,
        )

    async def smoke_test(self, spec: TableSpec) -> StepResult:
        """Insert the table's throwaway row, check it got an identity, then delete it."""
        if self.is_dry_run:
            return StepResult(
                name="smoke_test",
                status=StepStatus.SKIPPED,
                message="Skipped test write in dry run",
            )

        identity = spec.identity_column
        if not identity or not spec.smoke_row:
            raise SmokeTestError(spec.full_name, "no identity column or test row defined")

        columns = list(spec.smoke_row)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        row = await self.db.fetchrow(
            f"INSERT INTO {spec.full_name} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING {identity}",
            *spec.smoke_row.values(),
        )

        if row is None or row[identity] is None:
            raise SmokeTestError(spec.full_name, f"no {identity} was assigned")

        new_id = row[identity]
        logger.info(f"Test insert successful, {identity}: {new_id}")
        await self.db.execute(f"DELETE FROM {spec.full_name} WHERE {identity} = $1", new_id)
        logger.info("Test row cleaned up")

        return StepResult(
            name="smoke_test",
            status=StepStatus.OK,
            message=f"Test insert successful, {identity}: {new_id}",
            details={identity: new_id},
        )

    async def describe_table(self, spec: TableSpec) -> StepResult:
        """Report the table's current structure and row count."""
        info = await self.introspector.get_table_info(
            spec.schema_name, spec.name, with_row_count=True
        )
        if info is None:
            return StepResult(
                name="describe_table",
                status=StepStatus.WARNING,
                message=f"Table {spec.full_name} does not exist",
            )

        for column in info.columns.values():
            logger.info(f"   {column}")

        return StepResult(
            name="describe_table",
            status=StepStatus.OK,
            message=f"Table {spec.full_name} accessible, {info.row_count} rows",
            details={
                "columns": [str(column) for column in info.columns.values()],
                "row_count": info.row_count,
            },
        )

    async def probe_update(self, spec: TableSpec) -> StepResult:
        """Update one row inside a transaction and roll it back."""
        if self.is_dry_run:
            return StepResult(
                name="probe_update",
                status=StepStatus.SKIPPED,
                message="Skipped test update in dry run",
            )

        identity = spec.identity_column
        sample = await self.db.fetchrow(
            f"SELECT * FROM {spec.full_name} ORDER BY {identity} LIMIT 1"
        )
        if sample is None:
            return StepResult(
                name="probe_update",
                status=StepStatus.SKIPPED,
                message="No inventory items found to test with",
            )

        before = dict(sample)
        new_quantity = (before.get("total_quantity") or 0) + 1

        transaction = self.db.transaction()
        await transaction.start()
        try:
            updated = await self.db.fetchrow(
                f"UPDATE {spec.full_name} "
                f"SET total_quantity = $1, status = $2, updated_at = CURRENT_TIMESTAMP "
                f"WHERE {identity} = $3 RETURNING *",
                new_quantity,
                STATUS_ACTIVE,
                before[identity],
            )
        finally:
            await transaction.rollback()

        if updated is None:
            raise SchemaError(f"Update failed - no rows affected in {spec.full_name}")

        return StepResult(
            name="probe_update",
            status=StepStatus.OK,
            message=f"Update successful for {identity} {before[identity]}, change rolled back",
            details={"before": before, "after": dict(updated)},
        )

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def run_plan(self, plan: str) -> ReconciliationResult:
        """Run a named plan (see PLANS)."""
        if plan not in self.PLANS:
            raise ValueError(f"Unknown plan '{plan}', expected one of {sorted(self.PLANS)}")

        start_time = time.time()
        result = ReconciliationResult(plan=plan)
        logger.info(f"Starting plan {plan} ({self.operation_mode.value} mode)")

        connection = await self._step(result, "connection", self.check_connection)
        if not connection.failed:
            await getattr(self, self.PLANS[plan])(result)

        result.execution_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Plan {plan} completed: {result.status.value} ({result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _repair_notifications(self, result: ReconciliationResult) -> None:
        spec = self.notifications
        await self._step(result, "notifications.ensure_table", self.ensure_table, spec)
        await self._step(result, "notifications.rebuild", self.rebuild_if_malformed, spec)
        await self._step(result, "notifications.smoke_test", self.smoke_test, spec)

    async def _repair_inventory(self, result: ReconciliationResult) -> StepResult:
        spec = self.inventory
        table = await self._step(result, "inventory.ensure_table", self.ensure_table, spec)
        if table.failed:
            return table
        await self._step(result, "inventory.ensure_columns", self.ensure_columns, spec)
        await self._step(result, "inventory.normalize_status", self.normalize_status, spec)
        return table

    async def run_fix(self, result: ReconciliationResult) -> None:
        await self._repair_notifications(result)
        inventory_table = await self._repair_inventory(result)

        await self._step(result, "system.notifications", self.smoke_test, self.notifications)
        if not inventory_table.failed:
            await self._step(result, "system.inventory", self.describe_table, self.inventory)

    async def run_fix_notifications(self, result: ReconciliationResult) -> None:
        await self._step(result, "notifications.describe", self.describe_table, self.notifications)
        await self._repair_notifications(result)

    async def run_fix_inventory(self, result: ReconciliationResult) -> None:
        await self._repair_inventory(result)
        await self._step(
            result, "notifications.ensure_table", self.ensure_table, self.notifications
        )

    async def run_check(self, result: ReconciliationResult) -> None:
        await self._step(
            result, "notifications.ensure_table", self.ensure_table, self.notifications
        )
        await self._step(result, "notifications.describe", self.describe_table, self.notifications)
        await self._step(result, "inventory.describe", self.describe_table, self.inventory)

    async def run_test_update(self, result: ReconciliationResult) -> None:
        table = await self._step(
            result, "inventory.ensure_table", self.ensure_table, self.inventory
        )
        if table.failed:
            return
        await self._step(result, "inventory.describe", self.describe_table, self.inventory)
        await self._step(result, "inventory.probe_update", self.probe_update, self.inventory)


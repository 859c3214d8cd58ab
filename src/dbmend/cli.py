"""
Command-line interface for dbmend.
"""

import asyncio
import logging
import sys
from functools import wraps
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import DbmendConfig, configure_logging
from .database.connection import ConnectionConfig, Database
from .exceptions import DatabaseError, DbmendError, MissingConfigurationError
from .schema.operations import OperationMode
from .schema.reconciler import (
    ReconciliationResult,
    ReconciliationStatus,
    SchemaReconciler,
    StepStatus,
)


console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    StepStatus.OK: "green",
    StepStatus.REPAIRED: "cyan",
    StepStatus.PLANNED: "yellow",
    StepStatus.SKIPPED: "dim",
    StepStatus.WARNING: "yellow",
    StepStatus.FAILED: "red",
}


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DbmendError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(1)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


@click.group()
@click.version_option(__version__)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Optional YAML configuration file",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--dry-run", is_flag=True, help="Show what would be done without making changes"
)
@click.option("--safe", is_flag=True, help="Refuse destructive repairs (table rebuilds)")
@click.option(
    "--strict", is_flag=True, help="Exit with status 1 unless every step succeeded"
)
@click.pass_context
def main(ctx, config, debug, dry_run, safe, strict):
    """dbmend: idempotent schema repairs and smoke tests for Postgres."""
    ctx.ensure_object(dict)
    ctx.obj.update(
        config_path=config,
        debug=debug,
        dry_run=dry_run,
        safe=safe,
        strict=strict,
    )


@main.command()
@click.pass_context
@handle_errors
def fix(ctx):
    """Repair notifications and inventory_items, then test both."""
    _run_plan(ctx, "fix", "Comprehensive database fix")


@main.command("fix-notifications")
@click.pass_context
@handle_errors
def fix_notifications(ctx):
    """Create or rebuild the notifications table and test an insert."""
    _run_plan(ctx, "notifications", "Fixing notifications table")


@main.command("fix-inventory")
@click.pass_context
@handle_errors
def fix_inventory(ctx):
    """Add missing inventory_items columns and normalize item statuses."""
    _run_plan(ctx, "inventory", "Fixing inventory database issues")


@main.command()
@click.pass_context
@handle_errors
def check(ctx):
    """Test the connection and show both tables."""
    _run_plan(ctx, "check", "Testing database connection and tables")


@main.command("test-update")
@click.pass_context
@handle_errors
def test_update(ctx):
    """Update one inventory item inside a transaction and roll it back."""
    _run_plan(ctx, "update", "Testing inventory update")


def _resolve_mode(options: dict, config: DbmendConfig) -> OperationMode:
    if options.get("dry_run"):
        return OperationMode.DRY_RUN
    if options.get("safe"):
        return OperationMode.SAFE
    return OperationMode(config.reconcile.mode)


def _run_plan(ctx, plan: str, title: str) -> None:
    """Load configuration, run one plan and print its outcome."""
    options = ctx.obj
    config = DbmendConfig.load(options.get("config_path"))
    configure_logging(config.logging, options.get("debug", False))
    mode = _resolve_mode(options, config)

    console.print(f"[blue]{title}[/blue]")

    try:
        database_url = config.require_database_url()
    except MissingConfigurationError as e:
        logger.error(str(e))
        console.print(f"[red]✗[/red] {e}")
        return

    if mode == OperationMode.DRY_RUN:
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    result = asyncio.run(_execute_plan(config, database_url, plan, mode))
    _display_result(result)

    console.print(f"🏁 {title} completed: {result.status.value}")
    if options.get("strict") and result.status != ReconciliationStatus.SUCCESS:
        sys.exit(1)


async def _execute_plan(
    config: DbmendConfig,
    database_url: str,
    plan: str,
    mode: OperationMode,
) -> ReconciliationResult:
    """Open the connection, run the plan and always close the connection."""
    try:
        connection_config = ConnectionConfig.from_url(
            database_url,
            application_name=config.application_name,
            command_timeout=config.reconcile.command_timeout,
        )
        db = Database(connection_config)
        await db.connect()
    except (DatabaseError, ValueError) as e:
        logger.error(f"Database connection failed: {e}")
        return ReconciliationResult.connection_failure(plan, str(e))

    try:
        reconciler = SchemaReconciler(db, mode, schema=config.reconcile.schema_name)
        return await reconciler.run_plan(plan)
    finally:
        await db.close()


def _display_result(result: ReconciliationResult, title: Optional[str] = None) -> None:
    """Print one row per step."""
    table = Table(title=title or f"Plan: {result.plan}")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Message")

    for step in result.steps:
        style = STATUS_STYLES.get(step.status, "white")
        table.add_row(step.name, f"[{style}]{step.status.value}[/{style}]", step.message)

    console.print(table)

    summary = result.summary()
    console.print(
        f"Changes applied: {summary['changes_applied']}, "
        f"planned: {summary['changes_planned']}, "
        f"failed steps: {summary['failed']} "
        f"({result.execution_time_ms:.1f}ms)"
    )

    if result.errors:
        console.print("\n[red]Errors:[/red]")
        for error in result.errors:
            console.print(f"  • {error}")


if __name__ == "__main__":
    main()

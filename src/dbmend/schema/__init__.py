"""
Schema management package for dbmend.

This package provides:
- Declarative table and column specifications
- Safe, transactional schema changes with dry-run and safe modes
- The reconciler that checks, repairs and smoke-tests tables
"""

from .reconciler import (
    SchemaReconciler,
    ReconciliationResult,
    ReconciliationStatus,
    StepResult,
    StepStatus,
)
from .operations import SafeSchemaOperations, SchemaChange, ChangeType, OperationMode
from .specs import ColumnSpec, TableSpec, NOTIFICATIONS, INVENTORY_ITEMS

__all__ = [
    "SchemaReconciler",
    "ReconciliationResult",
    "ReconciliationStatus",
    "StepResult",
    "StepStatus",
    "SafeSchemaOperations",
    "SchemaChange",
    "ChangeType",
    "OperationMode",
    "ColumnSpec",
    "TableSpec",
    "NOTIFICATIONS",
    "INVENTORY_ITEMS",
]

"""
dbmend: idempotent schema repairs and smoke tests for a Postgres database.

dbmend checks that the ``notifications`` and ``inventory_items`` tables
look the way the application expects, repairs what has drifted, keeps
inventory statuses consistent with quantities and proves the tables accept
writes with disposable test rows.
"""

__version__ = "0.1.0"
__author__ = "dbmend Contributors"

from .config import DbmendConfig
from .exceptions import DbmendError, ConfigurationError, DatabaseError, SchemaError

__all__ = [
    "__version__",
    "DbmendConfig",
    "DbmendError",
    "ConfigurationError",
    "DatabaseError",
    "SchemaError",
]

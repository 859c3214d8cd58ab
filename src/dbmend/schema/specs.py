"""
Declarative table and column specifications.

The reconciler never hard-codes DDL: every table it checks or repairs is
described here once, and the SQL is generated from these models.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


IDENTIFIER_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")

STATUS_ACTIVE = "active"
STATUS_OUT_OF_STOCK = "out of stock"


def _check_identifier(value: str) -> str:
    if not IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"Invalid SQL identifier: {value!r}")
    return value


class ColumnSpec(BaseModel):
    """Expected definition of one column."""

    name: str = Field(..., description="Column name")
    type: str = Field(..., description="PostgreSQL column type")
    default: Optional[str] = Field(None, description="SQL default expression")
    not_null: bool = Field(False, description="Add NOT NULL")
    primary_key: bool = Field(False, description="Column is the primary key")
    add_if_missing: bool = Field(
        True, description="Add the column when absent (otherwise only report it)"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_identifier(v)

    @property
    def definition(self) -> str:
        """Column definition as used in CREATE TABLE / ADD COLUMN."""
        parts = [self.name, self.type]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        if self.not_null:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


class TableSpec(BaseModel):
    """Expected shape of one table."""

    schema_name: str = Field("public", description="Database schema")
    name: str = Field(..., description="Table name")
    columns: List[ColumnSpec] = Field(..., description="Expected columns, in order")
    create_if_missing: bool = Field(
        False, description="Create the table when it does not exist"
    )
    identity_column: Optional[str] = Field(
        None, description="Auto-increment column checked by the rebuild repair"
    )
    restore_columns: List[str] = Field(
        default_factory=list,
        description="Columns copied verbatim when the table is rebuilt",
    )
    smoke_row: Dict[str, Any] = Field(
        default_factory=dict, description="Throwaway row written by the smoke test"
    )

    @field_validator("schema_name", "name")
    @classmethod
    def validate_identifiers(cls, v):
        return _check_identifier(v)

    @model_validator(mode="after")
    def validate_references(self):
        names = self.column_names
        for column in [self.identity_column, *self.restore_columns, *self.smoke_row]:
            if column is not None and column not in names:
                raise ValueError(f"Column '{column}' is not defined on table '{self.name}'")
        return self

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def shadow_name(self) -> str:
        """Name of the temporary replacement table used by a rebuild."""
        return f"{self.name}__rebuild"

    def get_column(self, name: str) -> Optional[ColumnSpec]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def create_sql(self, table_name: Optional[str] = None, if_not_exists: bool = True) -> str:
        """CREATE TABLE statement for this spec, optionally under another name."""
        target = f"{self.schema_name}.{table_name or self.name}"
        guard = "IF NOT EXISTS " if if_not_exists else ""
        body = ",\n    ".join(column.definition for column in self.columns)
        return f"CREATE TABLE {guard}{target} (\n    {body}\n)"

    def with_schema(self, schema_name: str) -> "TableSpec":
        """Copy of this definition placed in another schema."""
        return self.model_validate({**self.model_dump(), "schema_name": schema_name})


NOTIFICATIONS = TableSpec(
    name="notifications",
    columns=[
        ColumnSpec(name="id", type="SERIAL", primary_key=True),
        ColumnSpec(name="title", type="VARCHAR(255)", not_null=True),
        ColumnSpec(name="message", type="TEXT", not_null=True),
        ColumnSpec(name="type", type="VARCHAR(50)", default="'info'"),
        ColumnSpec(name="created_at", type="TIMESTAMP", default="CURRENT_TIMESTAMP"),
        ColumnSpec(name="is_read", type="BOOLEAN", default="FALSE"),
    ],
    create_if_missing=True,
    identity_column="id",
    restore_columns=["title", "message", "type", "created_at", "is_read"],
    smoke_row={
        "title": "Test Fix",
        "message": "Testing notifications table fix",
        "type": "info",
    },
)

# Rows are owned by the application; only status/updated_at can be repaired.
INVENTORY_ITEMS = TableSpec(
    name="inventory_items",
    columns=[
        ColumnSpec(name="id", type="INTEGER", add_if_missing=False),
        ColumnSpec(name="item_code", type="VARCHAR(255)", add_if_missing=False),
        ColumnSpec(name="product_name", type="VARCHAR(255)", add_if_missing=False),
        ColumnSpec(name="total_quantity", type="INTEGER", add_if_missing=False),
        ColumnSpec(name="status", type="VARCHAR(50)", default=f"'{STATUS_ACTIVE}'"),
        ColumnSpec(name="updated_at", type="TIMESTAMP", default="CURRENT_TIMESTAMP"),
    ],
    create_if_missing=False,
    identity_column="id",
)

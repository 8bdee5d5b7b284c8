"""
Idempotent schema operations for the alembic revisions.

Databases created before migrations were versioned already hold some or
all of the tables, so each revision only creates what is missing.
"""
from alembic import op
import sqlalchemy as sa


def has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def has_column(table: str, column: str) -> bool:
    columns = sa.inspect(op.get_bind()).get_columns(table)
    return any(existing["name"] == column for existing in columns)


def has_index(table: str, name: str) -> bool:
    indexes = sa.inspect(op.get_bind()).get_indexes(table)
    return any(index["name"] == name for index in indexes)


def create_table_if_missing(name: str, *columns, **kwargs) -> bool:
    """Create ``name`` unless it exists. Returns True when created."""
    if has_table(name):
        return False
    op.create_table(name, *columns, **kwargs)
    return True


def add_column_if_missing(table: str, column: sa.Column) -> bool:
    if has_column(table, column.name):
        return False
    op.add_column(table, column)
    return True


def create_index_if_missing(name: str, table: str, columns: list[str], **kwargs) -> None:
    if not has_index(table, name):
        op.create_index(name, table, columns, **kwargs)

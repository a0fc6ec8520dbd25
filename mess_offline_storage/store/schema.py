"""
Local schema and statement builders.

Every table the store knows about is a member of ``Table``. SQL is only
ever built from ``Table`` values and declared column names, with all
values bound as parameters, so caller-supplied strings never reach the
statement text.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple

from ..exceptions import UnknownTableError, ValidationError

SCHEMA_VERSION = 2

# Column holding keys that have no dedicated column on a table.
PAYLOAD_COLUMN = "payload"


class Table(str, Enum):
    """Tables in the local store."""

    DASHBOARD_DATA = "dashboard_data"
    API_CACHE = "api_cache"
    SYNC_QUEUE = "sync_queue"
    ACTIVITIES = "activities"
    BAZAR_ENTRIES = "bazar_entries"
    MEAL_ENTRIES = "meal_entries"
    USER_DATA = "user_data"
    STATISTICS = "statistics"

    @classmethod
    def resolve(cls, table: Table | str) -> Table:
        """Map a table name to its enum member."""
        if isinstance(table, Table):
            return table
        try:
            return cls(table)
        except ValueError:
            raise UnknownTableError(str(table)) from None


# Tables holding user-entered records that the sync pass cleans up.
BUSINESS_TABLES = (
    Table.ACTIVITIES,
    Table.BAZAR_ENTRIES,
    Table.MEAL_ENTRIES,
    Table.USER_DATA,
    Table.STATISTICS,
)


class ColumnType(str, Enum):
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOL = "BOOL"  # stored as INTEGER 0/1
    JSON = "JSON"  # stored as TEXT


@dataclass(frozen=True)
class Column:
    name: str
    type: ColumnType
    sql: str  # column definition after the name

    @property
    def storage_type(self) -> str:
        return _STORAGE_TYPES.get(self.type, self.type.value)


_STORAGE_TYPES = {ColumnType.BOOL: "INTEGER", ColumnType.JSON: "TEXT"}


def _col(name: str, col_type: ColumnType, constraints: str = "") -> Column:
    storage = _STORAGE_TYPES.get(col_type, col_type.value)
    return Column(name, col_type, f"{storage} {constraints}".strip())


_ID = _col("id", ColumnType.TEXT, "PRIMARY KEY")
_CREATED = _col("created_at", ColumnType.INTEGER, "NOT NULL DEFAULT 0")
_UPDATED = _col("updated_at", ColumnType.INTEGER, "NOT NULL DEFAULT 0")
_PAYLOAD = _col(PAYLOAD_COLUMN, ColumnType.JSON)


TABLE_COLUMNS: dict[Table, tuple[Column, ...]] = {
    Table.DASHBOARD_DATA: (
        _ID,
        _col("table_name", ColumnType.TEXT, "NOT NULL DEFAULT 'dashboard_data'"),
        _col("data", ColumnType.JSON),
        _col("timestamp", ColumnType.INTEGER, "NOT NULL DEFAULT 0"),
        _col("version", ColumnType.TEXT, "DEFAULT '1.0'"),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
    Table.API_CACHE: (
        _ID,
        _col("key", ColumnType.TEXT, "UNIQUE NOT NULL"),
        _col("data", ColumnType.JSON),
        _col("timestamp", ColumnType.INTEGER, "NOT NULL DEFAULT 0"),
        _col("expiry", ColumnType.INTEGER, "NOT NULL DEFAULT 0"),
        _col("version", ColumnType.TEXT, "DEFAULT '1.0'"),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
    Table.SYNC_QUEUE: (
        _ID,
        _col("action", ColumnType.TEXT, "NOT NULL"),
        _col("endpoint", ColumnType.TEXT, "NOT NULL"),
        _col("data", ColumnType.JSON),
        _col("timestamp", ColumnType.INTEGER, "NOT NULL DEFAULT 0"),
        _col("retry_count", ColumnType.INTEGER, "DEFAULT 0"),
        _col("max_retries", ColumnType.INTEGER, "DEFAULT 3"),
        _col("status", ColumnType.TEXT, "DEFAULT 'pending'"),
        _col("last_error", ColumnType.TEXT),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
    Table.ACTIVITIES: (
        _ID,
        _col("title", ColumnType.TEXT),
        _col("description", ColumnType.TEXT),
        _col("time", ColumnType.TEXT),
        _col("amount", ColumnType.REAL),
        _col("icon", ColumnType.TEXT),
        _col("colors", ColumnType.JSON),
        _col("type", ColumnType.TEXT),
        _col("priority", ColumnType.TEXT),
        _col("user_id", ColumnType.TEXT),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
    Table.BAZAR_ENTRIES: (
        _ID,
        _col("user_id", ColumnType.TEXT),
        _col("date", ColumnType.TEXT),
        _col("items", ColumnType.JSON),
        _col("total_amount", ColumnType.REAL),
        _col("description", ColumnType.TEXT),
        _col("status", ColumnType.TEXT, "DEFAULT 'pending'"),
        _col("notes", ColumnType.TEXT),
        _col("approved_by", ColumnType.TEXT),
        _col("approved_at", ColumnType.TEXT),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
    Table.MEAL_ENTRIES: (
        _ID,
        _col("user_id", ColumnType.TEXT),
        _col("date", ColumnType.TEXT),
        _col("meal_type", ColumnType.TEXT),
        _col("breakfast", ColumnType.BOOL),
        _col("lunch", ColumnType.BOOL),
        _col("dinner", ColumnType.BOOL),
        _col("status", ColumnType.TEXT, "DEFAULT 'pending'"),
        _col("notes", ColumnType.TEXT),
        _col("approved_by", ColumnType.TEXT),
        _col("approved_at", ColumnType.TEXT),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
    Table.USER_DATA: (
        _ID,
        _col("name", ColumnType.TEXT),
        _col("email", ColumnType.TEXT),
        _col("role", ColumnType.TEXT),
        _col("profile_data", ColumnType.JSON),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
    Table.STATISTICS: (
        _ID,
        _col("type", ColumnType.TEXT),
        _col("data", ColumnType.JSON),
        _col("timestamp", ColumnType.INTEGER, "NOT NULL DEFAULT 0"),
        _col("version", ColumnType.TEXT, "DEFAULT '1.0'"),
        _CREATED,
        _UPDATED,
        _PAYLOAD,
    ),
}

TABLE_INDEXES: dict[Table, tuple[str, ...]] = {
    Table.SYNC_QUEUE: (
        "CREATE INDEX IF NOT EXISTS idx_sync_queue_status ON sync_queue(status, timestamp)",
    ),
    Table.API_CACHE: (
        "CREATE INDEX IF NOT EXISTS idx_api_cache_expiry ON api_cache(expiry)",
    ),
}

SCHEMA_META_SQL = """
    CREATE TABLE IF NOT EXISTS schema_meta (
        key TEXT PRIMARY KEY,
        value TEXT
    )
"""


def columns_for(table: Table) -> tuple[Column, ...]:
    return TABLE_COLUMNS[table]


def column_names(table: Table) -> tuple[str, ...]:
    return tuple(c.name for c in TABLE_COLUMNS[table])


def create_table_sql(table: Table) -> str:
    """CREATE TABLE statement for one table."""
    body = ",\n    ".join(f"{c.name} {c.sql}" for c in TABLE_COLUMNS[table])
    return f"CREATE TABLE IF NOT EXISTS {table.value} (\n    {body}\n)"


def add_column_sql(table: Table, column: Column) -> str:
    """ALTER TABLE statement adding a column missing from a legacy table."""
    # SQLite refuses UNIQUE/PRIMARY KEY on ADD COLUMN
    definition = column.sql.replace("UNIQUE", "").replace("PRIMARY KEY", "").strip()
    if "NOT NULL" in definition and "DEFAULT" not in definition:
        definition += " DEFAULT ''" if column.storage_type == "TEXT" else " DEFAULT 0"
    return f"ALTER TABLE {table.value} ADD COLUMN {column.name} {definition}"


class Filter(NamedTuple):
    """A single WHERE condition with a bound value."""

    column: str
    op: str
    value: Any


_ALLOWED_OPS = {"=", "!=", "<", "<=", ">", ">=", "LIKE"}


def _check_column(table: Table, column: str) -> str:
    if column not in column_names(table):
        raise ValidationError("column", f"{column!r} is not a column of {table.value}")
    return column


def _where(
    table: Table, filters: Mapping[str, Any] | Iterable[Filter] | None
) -> tuple[str, list[Any]]:
    if not filters:
        return "", []

    if isinstance(filters, Mapping):
        conditions = [Filter(column, "=", value) for column, value in filters.items()]
    else:
        conditions = list(filters)

    clauses: list[str] = []
    params: list[Any] = []
    for condition in conditions:
        column = _check_column(table, condition.column)
        op = condition.op.upper()
        if op not in _ALLOWED_OPS:
            raise ValidationError("op", f"unsupported operator {condition.op!r}")
        if condition.value is None and op in ("=", "!="):
            clauses.append(f"{column} IS {'NOT ' if op == '!=' else ''}NULL")
        else:
            clauses.append(f"{column} {op} ?")
            params.append(condition.value)
    return " WHERE " + " AND ".join(clauses), params


def build_select(
    table: Table,
    filters: Mapping[str, Any] | Iterable[Filter] | None = None,
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> tuple[str, list[Any]]:
    """SELECT * with optional filters, ordering and limit.

    Default ordering is newest first by created_at. Ties fall back to
    insertion order (rowid) in the same direction.
    """
    where, params = _where(table, filters)
    order_column = _check_column(table, order_by) if order_by else "created_at"
    direction = "DESC" if (descending or order_by is None) else "ASC"
    sql = f"SELECT * FROM {table.value}{where} ORDER BY {order_column} {direction}, rowid {direction}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    return sql, params


def build_count(
    table: Table, filters: Mapping[str, Any] | Iterable[Filter] | None = None
) -> tuple[str, list[Any]]:
    where, params = _where(table, filters)
    return f"SELECT COUNT(*) AS count FROM {table.value}{where}", params


def build_upsert(table: Table, columns: Sequence[str]) -> str:
    """INSERT that replaces every column except id and created_at on conflict."""
    for column in columns:
        _check_column(table, column)
    placeholders = ", ".join("?" for _ in columns)
    updates = [
        f"{name} = excluded.{name}"
        for name in column_names(table)
        if name not in ("id", "created_at")
    ]
    return (
        f"INSERT INTO {table.value} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT(id) DO UPDATE SET {', '.join(updates)}"
    )


def build_update(table: Table, columns: Sequence[str]) -> str:
    for column in columns:
        _check_column(table, column)
    assignments = ", ".join(f"{name} = ?" for name in columns)
    return f"UPDATE {table.value} SET {assignments} WHERE id = ?"


def build_delete(
    table: Table, filters: Mapping[str, Any] | Iterable[Filter] | None = None
) -> tuple[str, list[Any]]:
    where, params = _where(table, filters)
    return f"DELETE FROM {table.value}{where}", params


def build_delete_ids(table: Table, count: int) -> str:
    placeholders = ", ".join("?" for _ in range(count))
    return f"DELETE FROM {table.value} WHERE id IN ({placeholders})"

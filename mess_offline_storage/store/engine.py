"""
SQLite store engine.

Owns the single aiosqlite connection, the schema and every statement run
against it. All access is serialized through a cooperative lock, transient
lock contention is retried with linear backoff, and errors that look like
a broken connection or file run the recovery ladder instead of surfacing
straight to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

from ..config import StoreConfig
from ..exceptions import (
    RecoveryError,
    StorageConnectionError,
    StorageIOError,
    StoreCorruptionError,
    StoreNotInitializedError,
    ValidationError,
    is_corruption_error,
)
from ..id_utils import new_record_id, now_ms
from ..resilience import RetryConfig, retry_with_backoff
from .codec import codec_for
from .file_ops import ensure_directory, is_memory_path, quarantine_store_file, remove_store_files
from .lock import CooperativeLock
from .recovery import RecoveryOutcome, RecoveryPolicy
from .schema import (
    PAYLOAD_COLUMN,
    SCHEMA_META_SQL,
    SCHEMA_VERSION,
    TABLE_INDEXES,
    Filter,
    Table,
    add_column_sql,
    build_count,
    build_delete,
    build_delete_ids,
    build_select,
    build_update,
    build_upsert,
    columns_for,
    create_table_sql,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Where = Mapping[str, Any] | Iterable[Filter] | None

# Default lifetime of a cache row written through save_cache_data.
DEFAULT_CACHE_TTL = 60 * 60.0

# auto_vacuum must precede journal_mode: switching to WAL writes the header.
_PRAGMAS = (
    "PRAGMA auto_vacuum = INCREMENTAL",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = 1000",
    "PRAGMA temp_store = MEMORY",
    "PRAGMA foreign_keys = ON",
)

_READ_ONLY_PREFIXES = ("SELECT", "PRAGMA", "WITH")

AUTO_VACUUM_INCREMENTAL = 2


class StoreEngine:
    """
    Generic record store over a single SQLite connection.

    Features:
    - Upsert-by-id with nested transactions
    - Lazy schema creation on reads of a missing table
    - Bounded cooperative lock, linear retry on lock contention
    - Soft, hard and emergency resets plus a bypass mode
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        recovery_policy: RecoveryPolicy | None = None,
    ):
        """
        Initialize the engine. No I/O happens until init().

        Args:
            config: Store configuration
            recovery_policy: Recovery ladder (defaults to soft, hard, emergency, bypass)
        """
        self.config = config or StoreConfig()
        self.recovery_policy = recovery_policy or RecoveryPolicy()
        self.conn: aiosqlite.Connection | None = None
        self._lock = CooperativeLock(self.config.lock_timeout)
        self._retry = RetryConfig(
            max_attempts=self.config.max_retries,
            backoff_base=self.config.retry_delay,
        )
        self._initialized = False
        self._closed = False
        self._bypass = False
        self._init_task: asyncio.Task | None = None
        self._recovery_task: asyncio.Task | None = None

    @classmethod
    async def create(cls, config: StoreConfig | None = None) -> StoreEngine:
        """Create and initialize a store engine."""
        if config is None:
            config = StoreConfig.from_env()

        engine = cls(config)
        await engine.init()
        return engine

    @property
    def db_path(self) -> str:
        return str(self.config.db_path)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_bypassed(self) -> bool:
        return self._bypass

    @property
    def lock(self) -> CooperativeLock:
        return self._lock

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> None:
        """Open the store, configure it and bring the schema up to date.

        Concurrent callers share one in-flight attempt. On failure one soft
        reset is tried before the error propagates.
        """
        if self._initialized:
            return

        task = self._init_task
        if task is None:
            task = self._init_task = asyncio.ensure_future(self._initialize())
        try:
            await asyncio.shield(task)
        finally:
            if self._init_task is task and task.done():
                self._init_task = None

    async def _initialize(self) -> None:
        self._closed = False
        try:
            await self._open()
            await self._ensure_schema(self._connection("init"))
        except Exception as e:
            logger.error(f"Store initialization failed, attempting soft reset: {e}")
            try:
                await self.soft_reset()
            except Exception as heal_error:
                logger.error(f"Soft reset after failed initialization also failed: {heal_error}")
                raise StorageConnectionError(self.db_path, e) from e

        self._initialized = True
        logger.info(f"Store initialized: {self.db_path}")

    async def _open(self) -> None:
        if self.conn is not None:
            return
        if not is_memory_path(self.db_path):
            await ensure_directory(Path(self.db_path).expanduser().parent)
        self.conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        self.conn.row_factory = aiosqlite.Row
        await self._configure(self.conn)

    async def _configure(self, conn: aiosqlite.Connection) -> None:
        """Apply connection PRAGMAs. A PRAGMA the platform refuses is not fatal."""
        for pragma in (*_PRAGMAS, f"PRAGMA busy_timeout = {int(self.config.busy_timeout_ms)}"):
            try:
                await conn.execute(pragma)
            except Exception as e:
                logger.warning(f"Could not apply {pragma}: {e}")

    async def close(self) -> None:
        """Close the connection. Further calls raise until init() runs again."""
        await self._close_connection()
        self._initialized = False
        self._closed = True
        logger.info(f"Store closed: {self.db_path}")

    async def _close_connection(self) -> None:
        if self.conn is None:
            return
        conn, self.conn = self.conn, None
        await conn.close()

    # =========================================================================
    # Schema Management
    # =========================================================================

    async def _ensure_schema(self, conn: aiosqlite.Connection) -> None:
        """Create missing tables, add missing columns, create indexes."""
        await conn.execute(SCHEMA_META_SQL)
        for table in Table:
            await conn.execute(create_table_sql(table))
        await self._migrate(conn)
        for statements in TABLE_INDEXES.values():
            for statement in statements:
                await conn.execute(statement)

    async def _migrate(self, conn: aiosqlite.Connection) -> None:
        """Bring tables created by older versions up to the current columns."""
        version = await self._get_schema_version(conn)
        for table in Table:
            existing = {row["name"] for row in await self._table_info(conn, table)}
            for column in columns_for(table):
                if column.name in existing:
                    continue
                logger.info(f"Migrating {table.value}: adding column {column.name}")
                await conn.execute(add_column_sql(table, column))
        if version < SCHEMA_VERSION:
            await self._set_schema_version(conn, SCHEMA_VERSION)
        await self._ensure_incremental_vacuum(conn)

    async def _ensure_incremental_vacuum(self, conn: aiosqlite.Connection) -> None:
        """Switch a file created without incremental auto-vacuum over to it.

        The mode of an existing file only changes when VACUUM rebuilds it.
        """
        async with conn.execute("PRAGMA auto_vacuum") as cursor:
            row = await cursor.fetchone()
        if row is None or row[0] == AUTO_VACUUM_INCREMENTAL:
            return
        logger.info(f"Enabling incremental auto-vacuum on {self.db_path}")
        try:
            await conn.execute("PRAGMA auto_vacuum = INCREMENTAL")
            await conn.execute("VACUUM")
        except sqlite3.Error as e:
            logger.warning(f"Could not enable incremental auto-vacuum: {e}")

    async def _get_schema_version(self, conn: aiosqlite.Connection) -> int:
        """Get current schema version (0 if not set)."""
        try:
            async with conn.execute("SELECT value FROM schema_meta WHERE key = 'version'") as cursor:
                row = await cursor.fetchone()
            return int(row[0]) if row else 0
        except (sqlite3.Error, ValueError):
            return 0

    async def _set_schema_version(self, conn: aiosqlite.Connection, version: int) -> None:
        await conn.execute(
            """
            INSERT INTO schema_meta (key, value) VALUES ('version', ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (str(version),),
        )

    async def _table_info(self, conn: aiosqlite.Connection, table: Table) -> list[dict[str, Any]]:
        async with conn.execute(f"PRAGMA table_info({table.value})") as cursor:
            return [dict(row) for row in await cursor.fetchall()]

    # =========================================================================
    # Execution
    # =========================================================================

    def _connection(self, operation: str) -> aiosqlite.Connection:
        if self.conn is None:
            raise StoreCorruptionError(operation, RuntimeError("no active connection"))
        return self.conn

    async def _locked(
        self, operation: str, fn: Callable[[aiosqlite.Connection], Awaitable[T]]
    ) -> T:
        async with self._lock.hold(operation):
            return await fn(self._connection(operation))

    async def _run(
        self,
        operation: str,
        fn: Callable[[aiosqlite.Connection], Awaitable[T]],
        bypass_result: Any = None,
    ) -> T:
        """Run fn against the connection with locking, retry and recovery."""
        if self._closed:
            raise StoreNotInitializedError(operation)
        if self._bypass:
            return bypass_result
        if not self._initialized:
            await self.init()

        try:
            return await retry_with_backoff(
                self._locked, operation, fn, config=self._retry, context_msg=operation
            )
        except Exception as e:
            if not is_corruption_error(e):
                raise
            logger.error(f"Store corruption detected during {operation}: {e}")
            outcome = await self.recover()
            if self._bypass:
                logger.warning(f"Store in bypass mode, skipping {operation}")
                return bypass_result
            if not outcome.success:
                raise RecoveryError(outcome.attempts, e) from e

        return await self._locked(operation, fn)

    @asynccontextmanager
    async def _in_transaction(self, conn: aiosqlite.Connection) -> AsyncIterator[None]:
        if conn.in_transaction:
            # Already inside a caller's transaction: join it
            yield
            return

        await conn.execute("BEGIN")
        try:
            yield
        except BaseException:
            try:
                await conn.execute("ROLLBACK")
            except Exception as rollback_error:
                logger.warning(f"Rollback failed: {rollback_error}")
            raise
        else:
            await conn.execute("COMMIT")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreEngine]:
        """Group several store calls into one transaction.

        Store calls made inside the block join the open transaction.
        """
        if self._closed:
            raise StoreNotInitializedError("transaction")
        if not self._initialized:
            await self.init()
        async with self._lock.hold("transaction"):
            async with self._in_transaction(self._connection("transaction")):
                yield self

    # =========================================================================
    # Records
    # =========================================================================

    async def save_data(self, table: Table | str, record: Mapping[str, Any]) -> str:
        """
        Insert or replace a record by id.

        Args:
            table: Target table
            record: Record fields; an id is generated when absent

        Returns:
            The record id
        """
        table = Table.resolve(table)
        record = dict(record)
        record_id = str(record.get("id") or new_record_id())
        now = now_ms()
        record["id"] = record_id
        record.setdefault("created_at", now)
        record["updated_at"] = now

        row = codec_for(table).encode(record)
        columns = list(row)
        sql = build_upsert(table, columns)
        values = [row[c] for c in columns]

        async def op(conn: aiosqlite.Connection) -> str:
            async with self._in_transaction(conn):
                await conn.execute(sql, values)
            return record_id

        return await self._run(f"save_data({table.value})", op, bypass_result=record_id)

    async def get_data(
        self,
        table: Table | str,
        where: Where = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Read records from a table.

        Args:
            table: Table to read
            where: Column equality mapping or a list of Filter conditions
            order_by: Column to order by (default: newest created_at first)
            descending: Sort descending when order_by is given
            limit: Maximum rows to return

        Returns:
            Decoded records; an empty list if the table does not exist yet
        """
        table = Table.resolve(table)
        sql, params = build_select(table, where, order_by, descending, limit)
        codec = codec_for(table)

        async def op(conn: aiosqlite.Connection) -> list[dict[str, Any]]:
            try:
                async with conn.execute(sql, params) as cursor:
                    rows = await cursor.fetchall()
            except sqlite3.OperationalError as e:
                if "no such table" not in str(e).lower():
                    raise
                logger.warning(f"Table {table.value} missing, creating schema")
                await self._ensure_schema(conn)
                return []
            return [codec.decode(dict(row)) for row in rows]

        return await self._run(f"get_data({table.value})", op, bypass_result=[])

    async def get_by_id(self, table: Table | str, record_id: str) -> dict[str, Any] | None:
        rows = await self.get_data(table, {"id": record_id}, limit=1)
        return rows[0] if rows else None

    async def update_data(
        self, table: Table | str, record_id: str, fields: Mapping[str, Any]
    ) -> bool:
        """
        Update selected fields of one record.

        Fields without a column are merged into the stored payload.

        Returns:
            True if the record existed
        """
        table = Table.resolve(table)
        codec = codec_for(table)
        changes = {k: v for k, v in fields.items() if k not in ("id", "created_at")}
        changes["updated_at"] = now_ms()
        row = codec.encode(changes)

        async def op(conn: aiosqlite.Connection) -> bool:
            async with self._in_transaction(conn):
                if PAYLOAD_COLUMN in row:
                    sql, params = build_select(table, {"id": record_id}, limit=1)
                    async with conn.execute(sql, params) as cursor:
                        existing = await cursor.fetchone()
                    if existing is None:
                        return False
                    row[PAYLOAD_COLUMN] = codec.merge_payload(existing[PAYLOAD_COLUMN], row[PAYLOAD_COLUMN])
                columns = list(row)
                cursor = await conn.execute(
                    build_update(table, columns), [row[c] for c in columns] + [record_id]
                )
                return cursor.rowcount > 0

        return await self._run(f"update_data({table.value})", op, bypass_result=False)

    async def delete_data(self, table: Table | str, record_id: str) -> bool:
        """Delete one record by id. Returns True if a row was removed."""
        return await self.delete_many(table, [record_id]) > 0

    async def delete_many(self, table: Table | str, record_ids: Sequence[str]) -> int:
        table = Table.resolve(table)
        if not record_ids:
            return 0
        sql = build_delete_ids(table, len(record_ids))
        ids = list(record_ids)

        async def op(conn: aiosqlite.Connection) -> int:
            async with self._in_transaction(conn):
                cursor = await conn.execute(sql, ids)
            return cursor.rowcount

        return await self._run(f"delete_data({table.value})", op, bypass_result=0)

    async def delete_where(self, table: Table | str, where: Where) -> int:
        table = Table.resolve(table)
        if not where:
            raise ValidationError("where", "delete_where needs at least one condition")
        sql, params = build_delete(table, where)

        async def op(conn: aiosqlite.Connection) -> int:
            async with self._in_transaction(conn):
                cursor = await conn.execute(sql, params)
            return cursor.rowcount

        return await self._run(f"delete_where({table.value})", op, bypass_result=0)

    async def clear_table(self, table: Table | str) -> int:
        """Delete every row of one table. Returns the number removed."""
        return await self.clear_tables([Table.resolve(table)])

    async def clear_tables(self, tables: Iterable[Table | str]) -> int:
        """Delete every row of several tables in one transaction."""
        resolved = [Table.resolve(t) for t in tables]

        async def op(conn: aiosqlite.Connection) -> int:
            removed = 0
            async with self._in_transaction(conn):
                for table in resolved:
                    sql, params = build_delete(table)
                    cursor = await conn.execute(sql, params)
                    removed += max(cursor.rowcount, 0)
            return removed

        names = ", ".join(t.value for t in resolved)
        return await self._run(f"clear_table({names})", op, bypass_result=0)

    async def count(self, table: Table | str, where: Where = None) -> int:
        table = Table.resolve(table)
        sql, params = build_count(table, where)

        async def op(conn: aiosqlite.Connection) -> int:
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
            return int(row["count"]) if row else 0

        return await self._run(f"count({table.value})", op, bypass_result=0)

    # =========================================================================
    # Inspection
    # =========================================================================

    async def health_check(self) -> bool:
        """Run a trivial query. Never raises and never triggers recovery."""
        if self._bypass or self.conn is None:
            return False
        try:
            return await self._locked("health_check", self._probe)
        except Exception as e:
            logger.debug(f"Store health check failed: {e}")
            return False

    @staticmethod
    async def _probe(conn: aiosqlite.Connection) -> bool:
        async with conn.execute("SELECT 1") as cursor:
            await cursor.fetchone()
        return True

    async def get_table_info(self, table: Table | str) -> list[dict[str, Any]]:
        """Column descriptions of one table, as reported by SQLite."""
        table = Table.resolve(table)

        async def op(conn: aiosqlite.Connection) -> list[dict[str, Any]]:
            return await self._table_info(conn, table)

        return await self._run(f"get_table_info({table.value})", op, bypass_result=[])

    async def get_table_counts(self) -> dict[str, int]:
        """Row count per table."""
        counts: dict[str, int] = {}
        for table in Table:
            counts[table.value] = await self.count(table)
        return counts

    async def execute_query(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a read-only ad hoc query (SELECT, WITH or PRAGMA) and return raw rows.

        The statement runs with query_only set, so a write hidden behind a
        WITH clause is refused by SQLite itself.

        Raises:
            ValidationError: If the statement is not a read
        """
        statement = sql.lstrip().upper()
        if not statement.startswith(_READ_ONLY_PREFIXES) or (
            statement.startswith("PRAGMA") and "=" in statement
        ):
            raise ValidationError("sql", "only read-only queries are allowed", sql[:60])
        bound = list(params or [])

        async def op(conn: aiosqlite.Connection) -> list[dict[str, Any]]:
            await conn.execute("PRAGMA query_only = ON")
            try:
                async with conn.execute(sql, bound) as cursor:
                    return [dict(row) for row in await cursor.fetchall()]
            except sqlite3.Error as e:
                if "readonly" in str(e).lower():
                    raise ValidationError(
                        "sql", "only read-only queries are allowed", sql[:60]
                    ) from e
                raise
            finally:
                await conn.execute("PRAGMA query_only = OFF")

        return await self._run("execute_query", op, bypass_result=[])

    async def reclaim_space(self) -> int:
        """Return free pages to the filesystem. Returns the pages released."""

        async def op(conn: aiosqlite.Connection) -> int:
            async with conn.execute("PRAGMA freelist_count") as cursor:
                before = (await cursor.fetchone())[0]
            if not before:
                return 0
            # Every step of incremental_vacuum frees one page
            async with conn.execute("PRAGMA incremental_vacuum") as cursor:
                await cursor.fetchall()
            async with conn.execute("PRAGMA freelist_count") as cursor:
                after = (await cursor.fetchone())[0]
            return before - after

        freed = await self._run("reclaim_space", op, bypass_result=0)
        if freed:
            logger.debug(f"Reclaimed {freed} free pages")
        return freed

    # =========================================================================
    # Recovery
    # =========================================================================

    async def recover(self) -> RecoveryOutcome:
        """Run the recovery ladder. Concurrent callers share one run."""
        task = self._recovery_task
        if task is None:
            task = self._recovery_task = asyncio.ensure_future(self.recovery_policy.run(self))
        try:
            return await asyncio.shield(task)
        finally:
            if self._recovery_task is task and task.done():
                self._recovery_task = None

    async def soft_reset(self) -> None:
        """Reopen if needed and recreate missing tables. Existing data is kept."""
        logger.info("Store soft reset: recreating missing tables")
        async with self._lock.hold("soft_reset"):
            if self.conn is not None:
                try:
                    await self._probe(self.conn)
                except Exception as e:
                    logger.warning(f"Connection unusable, reopening: {e}")
                    try:
                        await self._close_connection()
                    except Exception as close_error:
                        logger.debug(f"Ignoring close failure on dead connection: {close_error}")
            await self._open()
            await self._ensure_schema(self._connection("soft_reset"))
        self._bypass = False
        self._closed = False
        self._initialized = True

    async def hard_reset(self) -> None:
        """Delete the database file and rebuild an empty store.

        Raises:
            StorageIOError: If the database file could not be deleted
        """
        logger.warning(f"Store hard reset: deleting {self.db_path}")
        delay = self.config.reset_delay
        self._lock.force_release()
        async with self._lock.hold("hard_reset"):
            await self._close_connection()
            await asyncio.sleep(delay)
            if not is_memory_path(self.db_path):
                await remove_store_files(Path(self.db_path).expanduser())
            await asyncio.sleep(delay)
            await self._open()
            await self._ensure_schema(self._connection("hard_reset"))
        self._bypass = False
        self._closed = False
        self._initialized = True

    async def emergency_reset(self) -> None:
        """Hard reset that tolerates close and delete failures.

        A file that cannot be deleted is renamed aside so a fresh one can be
        created in its place.
        """
        logger.warning(f"Store emergency reset: {self.db_path}")
        delay = self.config.emergency_reset_delay
        self._lock.force_release()
        async with self._lock.hold("emergency_reset"):
            try:
                await self._close_connection()
            except Exception as e:
                logger.warning(f"Ignoring close failure during emergency reset: {e}")
            await asyncio.sleep(delay)

            if not is_memory_path(self.db_path):
                path = Path(self.db_path).expanduser()
                try:
                    await remove_store_files(path)
                except StorageIOError as e:
                    logger.warning(f"Could not delete store during emergency reset: {e}")
                    await quarantine_store_file(path)
            await asyncio.sleep(delay)

            await self._open()
            await self._ensure_schema(self._connection("emergency_reset"))
        self._bypass = False
        self._closed = False
        self._initialized = True

    def enable_bypass(self) -> None:
        """Turn persistence off: writes become no-ops and reads return nothing."""
        if not self._bypass:
            logger.error("Store entering bypass mode: local persistence disabled")
        self._bypass = True

    # =========================================================================
    # Typed helpers
    # =========================================================================

    async def save_activity(self, activity: Mapping[str, Any]) -> str:
        return await self.save_data(Table.ACTIVITIES, activity)

    async def get_activities(self, limit: int | None = None) -> list[dict[str, Any]]:
        return await self.get_data(Table.ACTIVITIES, limit=limit)

    async def save_bazar_entry(self, entry: Mapping[str, Any]) -> str:
        return await self.save_data(Table.BAZAR_ENTRIES, entry)

    async def get_bazar_entries(self, limit: int | None = None) -> list[dict[str, Any]]:
        return await self.get_data(Table.BAZAR_ENTRIES, limit=limit)

    async def save_meal_entry(self, entry: Mapping[str, Any]) -> str:
        return await self.save_data(Table.MEAL_ENTRIES, entry)

    async def get_meal_entries(self, limit: int | None = None) -> list[dict[str, Any]]:
        return await self.get_data(Table.MEAL_ENTRIES, limit=limit)

    async def save_user_data(self, user: Mapping[str, Any]) -> str:
        return await self.save_data(Table.USER_DATA, user)

    async def get_user_data(self, user_id: str) -> dict[str, Any] | None:
        return await self.get_by_id(Table.USER_DATA, user_id)

    async def save_statistics(self, stats_type: str, data: Any) -> str:
        """Store one statistics snapshot per type."""
        return await self.save_data(
            Table.STATISTICS,
            {"id": stats_type, "type": stats_type, "data": data, "timestamp": now_ms(), "version": "1.0"},
        )

    async def get_statistics(self, stats_type: str) -> Any:
        rows = await self.get_data(Table.STATISTICS, {"type": stats_type}, limit=1)
        return rows[0]["data"] if rows else None

    async def save_cache_data(self, key: str, data: Any, ttl: float = DEFAULT_CACHE_TTL) -> None:
        """Cache data under key for ttl seconds."""
        now = now_ms()
        await self.save_data(
            Table.API_CACHE,
            {"id": key, "key": key, "data": data, "timestamp": now, "expiry": now + int(ttl * 1000)},
        )

    async def get_cache_entry(self, key: str) -> dict[str, Any] | None:
        """The unexpired cache row for key, or None. Expired rows are purged on read."""
        rows = await self.get_data(Table.API_CACHE, {"key": key}, limit=1)
        if not rows:
            return None
        entry = rows[0]
        if entry["expiry"] <= now_ms():
            await self.delete_data(Table.API_CACHE, entry["id"])
            return None
        return entry

    async def get_cache_data(self, key: str) -> Any:
        entry = await self.get_cache_entry(key)
        return entry["data"] if entry else None

    async def clear_expired_cache(self) -> int:
        """Delete expired cache rows. Returns the number removed."""
        removed = await self.delete_where(Table.API_CACHE, [Filter("expiry", "<=", now_ms())])
        if removed:
            logger.info(f"Cleared {removed} expired cache entries")
            await self.reclaim_space()
        return removed

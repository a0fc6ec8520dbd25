"""
Tests for the SQLite store engine.

Uses real SQLite files under tmp_path for accurate testing.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest

from mess_offline_storage.config import StoreConfig
from mess_offline_storage.exceptions import (
    RecoveryError,
    StorageIOError,
    StoreNotInitializedError,
    UnknownTableError,
    ValidationError,
)
from mess_offline_storage.store import (
    SCHEMA_VERSION,
    Bypass,
    Filter,
    RecoveryPolicy,
    RecoveryStrategy,
    StoreEngine,
    Table,
)


class FailingStrategy(RecoveryStrategy):
    """Recovery strategy that always fails."""

    name = "failing"

    async def apply(self, engine):
        raise RuntimeError("cannot recover")


class TestStoreInitialization:
    """Tests for store lifecycle."""

    @pytest.mark.asyncio
    async def test_create_initializes(self, store, store_config):
        """create() opens the file and builds the schema."""
        assert store.is_initialized
        assert store_config.db_path.exists()
        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_create_with_memory_database(self):
        """The store runs against an in-memory database."""
        engine = await StoreEngine.create(StoreConfig(db_path=":memory:"))
        assert await engine.count(Table.USER_DATA) == 0
        await engine.close()

    @pytest.mark.asyncio
    async def test_concurrent_init_opens_once(self, store_config):
        """Concurrent init() callers share one attempt."""
        engine = StoreEngine(store_config)
        with patch.object(engine, "_open", wraps=engine._open) as opened:
            await asyncio.gather(engine.init(), engine.init(), engine.init())
        assert engine.is_initialized
        assert opened.await_count == 1
        await engine.close()

    @pytest.mark.asyncio
    async def test_first_call_initializes(self, store_config):
        """A store call before init() initializes the store."""
        engine = StoreEngine(store_config)
        await engine.save_user_data({"id": "u1", "name": "Karim"})
        assert engine.is_initialized
        await engine.close()

    @pytest.mark.asyncio
    async def test_closed_store_rejects_calls(self, store_config):
        """Calls after close() raise until init() runs again."""
        engine = await StoreEngine.create(store_config)
        await engine.close()

        with pytest.raises(StoreNotInitializedError):
            await engine.get_activities()

        await engine.init()
        assert await engine.get_activities() == []
        await engine.close()

    @pytest.mark.asyncio
    async def test_schema_version_recorded(self, store):
        """The schema version is stored in schema_meta."""
        rows = await store.execute_query("SELECT value FROM schema_meta WHERE key = 'version'")
        assert rows == [{"value": str(SCHEMA_VERSION)}]

    @pytest.mark.asyncio
    async def test_migrates_legacy_table(self, store_config):
        """Columns missing from an older table are added without losing rows."""
        async with aiosqlite.connect(store_config.db_path) as conn:
            await conn.execute(
                "CREATE TABLE api_cache (id TEXT PRIMARY KEY, key TEXT UNIQUE NOT NULL, "
                "data TEXT, expiry INTEGER)"
            )
            await conn.execute(
                "INSERT INTO api_cache (id, key, data, expiry) VALUES ('k', 'k', '[1]', 9999999999999)"
            )
            await conn.commit()

        engine = await StoreEngine.create(store_config)
        columns = {c["name"] for c in await engine.get_table_info(Table.API_CACHE)}
        assert {"timestamp", "version", "created_at", "updated_at", "payload"} <= columns
        assert await engine.get_cache_data("k") == [1]
        await engine.close()

    @pytest.mark.asyncio
    async def test_incremental_auto_vacuum_enabled(self, store):
        """A new store file reclaims space incrementally."""
        assert await store.execute_query("PRAGMA auto_vacuum") == [{"auto_vacuum": 2}]
        assert await store.execute_query("PRAGMA journal_mode") == [{"journal_mode": "wal"}]

    @pytest.mark.asyncio
    async def test_legacy_file_switched_to_incremental_vacuum(self, store_config):
        """A file created without auto-vacuum is converted on open, keeping its rows."""
        async with aiosqlite.connect(store_config.db_path) as conn:
            await conn.execute("CREATE TABLE legacy_notes (id TEXT PRIMARY KEY, body TEXT)")
            await conn.execute("INSERT INTO legacy_notes (id, body) VALUES ('n1', 'rice')")
            await conn.commit()
            async with conn.execute("PRAGMA auto_vacuum") as cursor:
                assert (await cursor.fetchone())[0] == 0

        engine = await StoreEngine.create(store_config)
        assert await engine.execute_query("PRAGMA auto_vacuum") == [{"auto_vacuum": 2}]
        assert await engine.execute_query("SELECT body FROM legacy_notes") == [{"body": "rice"}]
        await engine.close()

    @pytest.mark.asyncio
    async def test_reclaim_space_after_clear(self, store):
        """Pages freed by a bulk delete are released."""
        for n in range(50):
            await store.save_activity({"id": f"a{n}", "note": "x" * 4000})
        await store.clear_table(Table.ACTIVITIES)
        assert (await store.execute_query("PRAGMA freelist_count"))[0]["freelist_count"] > 0

        assert await store.reclaim_space() > 0
        assert await store.execute_query("PRAGMA freelist_count") == [{"freelist_count": 0}]


class TestStoreRecords:
    """Tests for record operations."""

    @pytest.mark.asyncio
    async def test_save_generates_id(self, store):
        """A record without id gets a generated one."""
        record_id = await store.save_activity({"title": "Bought rice"})
        assert record_id
        row = await store.get_by_id(Table.ACTIVITIES, record_id)
        assert row["title"] == "Bought rice"
        assert row["created_at"] > 0

    @pytest.mark.asyncio
    async def test_save_is_idempotent_by_id(self, store):
        """Saving the same id twice leaves one row with the latest values."""
        await store.save_bazar_entry({"id": "b1", "total_amount": 100.0})
        first = await store.get_by_id(Table.BAZAR_ENTRIES, "b1")
        await store.save_bazar_entry({"id": "b1", "total_amount": 250.0})

        rows = await store.get_bazar_entries()
        assert len(rows) == 1
        assert rows[0]["total_amount"] == 250.0
        assert rows[0]["created_at"] == first["created_at"]

    @pytest.mark.asyncio
    async def test_get_data_newest_first(self, store):
        """Default ordering is newest first."""
        for record_id in ("a", "b", "c"):
            await store.save_activity({"id": record_id})
        assert [r["id"] for r in await store.get_activities()] == ["c", "b", "a"]
        assert [r["id"] for r in await store.get_activities(limit=2)] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_get_data_with_filters(self, store):
        """Filters and ordering are applied."""
        await store.save_meal_entry({"id": "m1", "user_id": "u1", "date": "2024-05-02"})
        await store.save_meal_entry({"id": "m2", "user_id": "u1", "date": "2024-05-01"})
        await store.save_meal_entry({"id": "m3", "user_id": "u2", "date": "2024-05-03"})

        rows = await store.get_data(Table.MEAL_ENTRIES, {"user_id": "u1"}, order_by="date")
        assert [r["id"] for r in rows] == ["m2", "m1"]

        rows = await store.get_data(Table.MEAL_ENTRIES, [Filter("date", ">", "2024-05-01")])
        assert {r["id"] for r in rows} == {"m1", "m3"}

    @pytest.mark.asyncio
    async def test_missing_table_is_recreated(self, store):
        """Reading a dropped table returns nothing and recreates it."""
        await store.save_activity({"id": "a1"})
        await store.conn.execute("DROP TABLE activities")

        assert await store.get_activities() == []
        assert await store.get_table_info(Table.ACTIVITIES)
        await store.save_activity({"id": "a2"})
        assert await store.count(Table.ACTIVITIES) == 1

    @pytest.mark.asyncio
    async def test_round_trip_payload_fields(self, store):
        """Fields without a column survive a save and read."""
        await store.save_meal_entry({"id": "m1", "breakfast": True, "guests": 2})
        row = await store.get_by_id(Table.MEAL_ENTRIES, "m1")
        assert row["breakfast"] is True
        assert row["guests"] == 2

    @pytest.mark.asyncio
    async def test_update_merges_payload(self, store):
        """Updating keeps untouched columns and merges payload keys."""
        await store.save_meal_entry({"id": "m1", "breakfast": True, "guests": 2})
        updated = await store.update_data(Table.MEAL_ENTRIES, "m1", {"lunch": True, "remark": "ok"})

        assert updated is True
        row = await store.get_by_id(Table.MEAL_ENTRIES, "m1")
        assert row["breakfast"] is True
        assert row["lunch"] is True
        assert row["guests"] == 2
        assert row["remark"] == "ok"

    @pytest.mark.asyncio
    async def test_update_missing_record(self, store):
        """Updating an unknown id reports False."""
        assert await store.update_data(Table.MEAL_ENTRIES, "nope", {"lunch": True}) is False
        assert await store.update_data(Table.MEAL_ENTRIES, "nope", {"remark": "x"}) is False

    @pytest.mark.asyncio
    async def test_delete(self, store):
        """Deleting reports whether a row was removed."""
        await store.save_user_data({"id": "u1"})
        assert await store.delete_data(Table.USER_DATA, "u1") is True
        assert await store.delete_data(Table.USER_DATA, "u1") is False
        assert await store.get_user_data("u1") is None

    @pytest.mark.asyncio
    async def test_delete_where_requires_condition(self, store):
        """delete_where refuses to clear a whole table."""
        with pytest.raises(ValidationError):
            await store.delete_where(Table.USER_DATA, {})

    @pytest.mark.asyncio
    async def test_clear_tables(self, store):
        """Several tables are cleared together."""
        await store.save_activity({"id": "a1"})
        await store.save_bazar_entry({"id": "b1"})
        await store.save_user_data({"id": "u1"})

        removed = await store.clear_tables([Table.ACTIVITIES, "bazar_entries"])
        assert removed == 2
        counts = await store.get_table_counts()
        assert counts["activities"] == 0
        assert counts["bazar_entries"] == 0
        assert counts["user_data"] == 1

    @pytest.mark.asyncio
    async def test_unknown_table_rejected(self, store):
        """Unknown table names never reach SQLite."""
        with pytest.raises(UnknownTableError):
            await store.save_data("payments", {"id": "p1"})

    @pytest.mark.asyncio
    async def test_transaction_commits(self, store):
        """Calls inside transaction() commit together."""
        async with store.transaction():
            await store.save_activity({"id": "a1"})
            await store.save_bazar_entry({"id": "b1"})
        assert await store.count(Table.ACTIVITIES) == 1
        assert await store.count(Table.BAZAR_ENTRIES) == 1

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, store):
        """An error inside transaction() undoes every call in it."""
        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.save_activity({"id": "a1"})
                await store.save_bazar_entry({"id": "b1"})
                raise RuntimeError("boom")
        assert await store.count(Table.ACTIVITIES) == 0
        assert await store.count(Table.BAZAR_ENTRIES) == 0

    @pytest.mark.asyncio
    async def test_execute_query_read_only(self, store):
        """Ad hoc queries must be reads."""
        await store.save_user_data({"id": "u1", "name": "Karim"})
        rows = await store.execute_query("SELECT name FROM user_data WHERE id = ?", ["u1"])
        assert rows == [{"name": "Karim"}]

        with pytest.raises(ValidationError):
            await store.execute_query("DELETE FROM user_data")

    @pytest.mark.asyncio
    async def test_execute_query_refuses_hidden_writes(self, store):
        """Writes behind a WITH clause or a PRAGMA assignment are refused."""
        await store.save_user_data({"id": "u1", "name": "Karim"})

        with pytest.raises(ValidationError):
            await store.execute_query("WITH c AS (SELECT 1) DELETE FROM user_data")
        with pytest.raises(ValidationError):
            await store.execute_query("PRAGMA user_version = 7")

        assert await store.count(Table.USER_DATA) == 1
        await store.save_user_data({"id": "u2", "name": "Rafi"})
        assert await store.count(Table.USER_DATA) == 2


class TestStoreHelpers:
    """Tests for typed helpers."""

    @pytest.mark.asyncio
    async def test_statistics_one_row_per_type(self, store):
        """Statistics are replaced per type."""
        await store.save_statistics("monthly", {"meals": 10})
        await store.save_statistics("monthly", {"meals": 12})
        await store.save_statistics("weekly", {"meals": 3})

        assert await store.get_statistics("monthly") == {"meals": 12}
        assert await store.count(Table.STATISTICS) == 2
        assert await store.get_statistics("daily") is None

    @pytest.mark.asyncio
    async def test_cache_round_trip(self, store):
        """Cached data is returned until it expires."""
        await store.save_cache_data("dashboard", {"balance": 42}, ttl=60)
        assert await store.get_cache_data("dashboard") == {"balance": 42}

    @pytest.mark.asyncio
    async def test_expired_cache_purged_on_read(self, store):
        """An expired entry reads as missing and is deleted."""
        await store.save_cache_data("old", [1, 2], ttl=-1)
        assert await store.get_cache_data("old") is None
        assert await store.count(Table.API_CACHE) == 0

    @pytest.mark.asyncio
    async def test_clear_expired_cache(self, store):
        """Only expired rows are swept."""
        await store.save_cache_data("old", 1, ttl=-1)
        await store.save_cache_data("fresh", 2, ttl=60)
        assert await store.clear_expired_cache() == 1
        assert await store.get_cache_data("fresh") == 2


class TestStoreRecovery:
    """Tests for resets, recovery and bypass."""

    @pytest.mark.asyncio
    async def test_bypass_mode(self, store):
        """In bypass, writes are no-ops and reads are empty."""
        store.enable_bypass()

        record_id = await store.save_activity({"id": "a1"})
        assert record_id == "a1"
        assert await store.get_activities() == []
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_dead_connection_recovered_by_soft_reset(self, store):
        """A closed connection is reopened and existing data kept."""
        await store.save_activity({"id": "a1"})
        old_conn = store.conn
        await old_conn.close()

        await store.save_activity({"id": "a2"})

        assert store.conn is not old_conn
        assert {r["id"] for r in await store.get_activities()} == {"a1", "a2"}
        assert not store.is_bypassed

    @pytest.mark.asyncio
    async def test_failed_recovery_raises(self, store_config):
        """When every strategy fails the original error is reported."""
        engine = StoreEngine(store_config, RecoveryPolicy([FailingStrategy()]))
        await engine.init()
        await engine.conn.close()

        with pytest.raises(RecoveryError) as exc_info:
            await engine.save_activity({"id": "a1"})
        assert exc_info.value.attempted == ["failing"]

        await engine.close()

    @pytest.mark.asyncio
    async def test_recovery_falls_back_to_bypass(self, store_config):
        """The last rung keeps callers running without persistence."""
        engine = StoreEngine(store_config, RecoveryPolicy([FailingStrategy(), Bypass()]))
        await engine.init()
        await engine.conn.close()

        assert await engine.save_activity({"id": "a1"}) == "a1"
        assert engine.is_bypassed
        assert await engine.get_activities() == []

        await engine.close()

    @pytest.mark.asyncio
    async def test_lock_contention_retried(self, store):
        """A transient lock error is retried in place."""
        calls = 0
        original = store._locked

        async def flaky(operation, fn):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise aiosqlite.OperationalError("database is locked")
            return await original(operation, fn)

        with patch.object(store, "_locked", side_effect=flaky):
            assert await store.count(Table.USER_DATA) == 0
        assert calls == 2

    @pytest.mark.asyncio
    async def test_soft_reset_keeps_data(self, store):
        """Soft reset recreates missing tables and keeps rows."""
        await store.save_user_data({"id": "u1"})
        await store.conn.execute("DROP TABLE activities")

        await store.soft_reset()

        assert await store.get_user_data("u1") is not None
        assert await store.get_table_info(Table.ACTIVITIES)

    @pytest.mark.asyncio
    async def test_soft_reset_leaves_bypass(self, store):
        """A successful reset turns persistence back on."""
        store.enable_bypass()
        await store.soft_reset()
        assert not store.is_bypassed
        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_hard_reset_deletes_data(self, store, store_config):
        """Hard reset rebuilds an empty store at the same path."""
        await store.save_user_data({"id": "u1"})
        await store.hard_reset()

        assert store_config.db_path.exists()
        assert await store.count(Table.USER_DATA) == 0
        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_hard_reset_breaks_stuck_lock(self, store):
        """Hard reset does not wait behind a stuck lock holder."""
        held = asyncio.Event()

        async def stuck() -> None:
            async with store.lock.hold("stuck"):
                held.set()
                await asyncio.sleep(10)

        holder = asyncio.create_task(stuck())
        await held.wait()

        await asyncio.wait_for(store.hard_reset(), timeout=2)
        assert await store.health_check() is True

        holder.cancel()
        with pytest.raises(asyncio.CancelledError):
            await holder

    @pytest.mark.asyncio
    async def test_hard_reset_delete_failure(self, store):
        """Hard reset reports a file that cannot be deleted."""
        failure = AsyncMock(side_effect=StorageIOError("delete_store", store.db_path))
        with patch("mess_offline_storage.store.engine.remove_store_files", failure):
            with pytest.raises(StorageIOError):
                await store.hard_reset()

    @pytest.mark.asyncio
    async def test_emergency_reset_quarantines_file(self, store, tmp_path):
        """Emergency reset moves an undeletable file aside and starts fresh."""
        await store.save_user_data({"id": "u1"})
        failure = AsyncMock(side_effect=StorageIOError("delete_store", store.db_path))

        with patch("mess_offline_storage.store.engine.remove_store_files", failure):
            await store.emergency_reset()

        assert list(tmp_path.glob("*.corrupt-*"))
        assert await store.count(Table.USER_DATA) == 0
        assert await store.health_check() is True

"""
Tests for store file operations.
"""

import pytest

from mess_offline_storage.store.file_ops import (
    ensure_directory,
    is_memory_path,
    quarantine_store_file,
    remove_store_files,
    store_files,
)


class TestFileOps:
    """Tests for database file helpers."""

    def test_is_memory_path(self):
        """In-memory databases have no files."""
        assert is_memory_path(":memory:")
        assert is_memory_path("file::memory:?cache=shared")
        assert not is_memory_path("/tmp/mess.db")

    def test_store_files(self, tmp_path):
        """Companion files follow the database file."""
        names = [p.name for p in store_files(tmp_path / "mess.db")]
        assert names == ["mess.db", "mess.db-wal", "mess.db-shm", "mess.db-journal"]

    @pytest.mark.asyncio
    async def test_ensure_directory(self, tmp_path):
        """Nested directories are created."""
        target = tmp_path / "a" / "b"
        await ensure_directory(target)
        await ensure_directory(target)
        assert target.is_dir()

    @pytest.mark.asyncio
    async def test_remove_store_files(self, tmp_path):
        """The database and any companions present are removed."""
        db = tmp_path / "mess.db"
        db.write_bytes(b"x")
        (tmp_path / "mess.db-wal").write_bytes(b"x")

        assert await remove_store_files(db) == 2
        assert not db.exists()
        assert await remove_store_files(db) == 0

    @pytest.mark.asyncio
    async def test_quarantine(self, tmp_path):
        """An unusable file is renamed aside."""
        db = tmp_path / "mess.db"
        db.write_bytes(b"garbage")

        target = await quarantine_store_file(db)

        assert target is not None
        assert target.name.startswith("mess.db.corrupt-")
        assert target.read_bytes() == b"garbage"
        assert not db.exists()
        assert await quarantine_store_file(db) is None

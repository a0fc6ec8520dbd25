"""
File operations for the store database file.

Hard and emergency resets work on the physical files: the database and
its ``-wal``/``-shm`` companions. All I/O goes through aiofiles so resets
never block the event loop.
"""

import logging
from datetime import datetime
from pathlib import Path

import aiofiles.os

from ..exceptions import StorageIOError

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"
_COMPANION_SUFFIXES = ("-wal", "-shm", "-journal")


def is_memory_path(path: str | Path) -> bool:
    return str(path) == MEMORY_PATH or str(path).startswith("file::memory:")


def store_files(path: Path) -> list[Path]:
    """The database file followed by its journal companions."""
    return [path] + [path.with_name(path.name + suffix) for suffix in _COMPANION_SUFFIXES]


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary.

    Args:
        path: Directory path to ensure exists
    """
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def remove_store_files(path: Path) -> int:
    """Delete the database file and its companions.

    Args:
        path: Database file path

    Returns:
        Number of files removed

    Raises:
        StorageIOError: If an existing file could not be removed
    """
    removed = 0
    for file_path in store_files(path):
        try:
            if not await aiofiles.os.path.exists(file_path):
                continue
            await aiofiles.os.remove(file_path)
            removed += 1
        except OSError as e:
            raise StorageIOError("delete_store", str(file_path), e) from e
    return removed


async def quarantine_store_file(path: Path) -> Path | None:
    """Move a database file that cannot be deleted out of the way.

    Args:
        path: Database file path

    Returns:
        The new location, or None if there was nothing to move
    """
    if not await aiofiles.os.path.exists(path):
        return None

    stamp = datetime.now().strftime("%Y%m%d%H%M%S")
    target = path.with_name(f"{path.name}.corrupt-{stamp}")
    try:
        await aiofiles.os.rename(path, target)
    except OSError as e:
        raise StorageIOError("quarantine_store", str(path), e) from e

    logger.warning(f"Moved unusable store file aside: {target}")
    return target

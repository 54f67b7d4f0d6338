"""Async database connection management for context-recall."""

from pathlib import Path
from typing import Optional

import aiosqlite
import sqlite_vec

import config
from errors import ContextRecallError


async def get_async_db(db_path: Optional[Path] = None) -> aiosqlite.Connection:
    """Get async database connection with sqlite-vec loaded.

    Args:
        db_path: Database file (defaults to config.DB_PATH)

    Returns:
        aiosqlite.Connection configured with WAL mode, busy timeout, and sqlite-vec
    """
    path = Path(db_path or config.DB_PATH)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(path), timeout=30.0)
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA busy_timeout=30000")
        await db.execute("PRAGMA foreign_keys=ON")

        # Load sqlite-vec extension
        await db.enable_load_extension(True)
        await db.load_extension(sqlite_vec.loadable_path())
        await db.enable_load_extension(False)

        db.row_factory = aiosqlite.Row
        return db
    except Exception as e:
        config.logger.error(f"Async database error: {e}")
        raise ContextRecallError(
            f"Failed to open database at {path}: {e}",
            "database_error",
            {"path": str(path), "original_error": str(e)}
        ) from e

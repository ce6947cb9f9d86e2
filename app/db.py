"""
SQLite key-value layer using aiosqlite.

Backs the pending-verification slot and the rate-limit counters.
Values are opaque strings (JSON, encoded by the callers).
The table is created automatically on first connect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from app import config
from app.errors import StorageError

logger = logging.getLogger(__name__)

# ── Module-level connection ───────────────────────────────────────────────

_db: aiosqlite.Connection | None = None


async def init_db(db_path: str | None = None) -> None:
    """Open the database and create tables if they don't exist."""
    global _db
    path = Path(db_path or config.DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(path))
    _db.row_factory = aiosqlite.Row  # dict-like rows
    await _db.execute("PRAGMA journal_mode=WAL")

    await _db.executescript(_SCHEMA)
    await _db.commit()
    logger.info("Database initialized at %s", path)


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database connection closed")


def get_db() -> aiosqlite.Connection:
    """Return the active database connection (must call init_db first)."""
    if _db is None:
        raise StorageError("Database not initialized: call init_db() first")
    return _db


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ══════════════════════════════════════════════════════════════════════════
#                    KEY-VALUE REPOSITORY
# ══════════════════════════════════════════════════════════════════════════


class SqliteKeyValueStore:
    """
    KeyValueStore backed by the module-level aiosqlite connection.

    Every aiosqlite failure is re-raised as StorageError so callers can
    decide whether to fail open (rate limiting) or abort (pending slot).
    """

    async def get(self, key: str) -> str | None:
        try:
            async with get_db().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ) as cur:
                row = await cur.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to read {key!r}: {exc}") from exc
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        db = get_db()
        try:
            await db.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, _now_iso()),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to write {key!r}: {exc}") from exc

    async def delete(self, key: str) -> None:
        db = get_db()
        try:
            await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to delete {key!r}: {exc}") from exc

    async def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with *prefix*, sorted."""
        # Escape LIKE wildcards so action names containing % or _ match literally
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        try:
            async with get_db().execute(
                "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (pattern,),
            ) as cur:
                rows = await cur.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to list keys under {prefix!r}: {exc}") from exc
        return [row["key"] for row in rows]

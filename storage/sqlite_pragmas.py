"""
SQLite connection setup for the deal store.

Usage:
    from storage.sqlite_pragmas import apply_sqlite_pragmas

    db = await aiosqlite.connect(path)
    await apply_sqlite_pragmas(db)
"""

import logging

import aiosqlite

logger = logging.getLogger(__name__)


async def apply_sqlite_pragmas(
    conn: aiosqlite.Connection,
    wal: bool = True,
    busy_timeout_ms: int = 5000,
    foreign_keys: bool = True,
    synchronous: str = "NORMAL",
) -> None:
    """
    Apply the pragmas every DealStore connection runs with.

    Args:
        conn: aiosqlite connection
        wal: Use WAL so scheduler ticks can read while a stage writes
        busy_timeout_ms: Wait this long on a locked database before failing
        foreign_keys: Enforce founder/introduction references to companies
        synchronous: FULL or NORMAL; NORMAL is safe under WAL
    """
    if foreign_keys:
        await conn.execute("PRAGMA foreign_keys = ON")

    if wal:
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute(f"PRAGMA synchronous = {synchronous}")

    if busy_timeout_ms > 0:
        await conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")

    conn.row_factory = aiosqlite.Row

    logger.debug(
        f"SQLite pragmas: WAL={wal}, synchronous={synchronous}, "
        f"busy_timeout={busy_timeout_ms}ms, foreign_keys={foreign_keys}"
    )

"""SQLite storage for client-local state (favorites and other small values)."""

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

log = structlog.get_logger()

SCHEMA_VERSION = 1


SCHEMA = """
CREATE TABLE IF NOT EXISTS client_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at REAL
);
"""


def init_database(db_path: Path) -> None:
    """Initialize database with WAL mode and schema.

    If the database exists with a different schema version, or cannot be read
    at all, it is deleted and recreated. No migrations - schema mismatch
    means fresh start.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if db_path.exists():
        conn = sqlite3.connect(db_path)
        try:
            existing_version = _get_schema_version_raw(conn)
            if existing_version == SCHEMA_VERSION:
                conn.close()
                return
            log.info(
                "schema_mismatch",
                existing=existing_version,
                expected=SCHEMA_VERSION,
                action="recreate",
            )
        except sqlite3.DatabaseError:
            # Corrupted or incompatible DB - delete and recreate
            log.warning("database_unreadable", path=str(db_path), action="recreate")
        conn.close()
        _remove_database(db_path)

    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR REPLACE INTO client_state (key, value, updated_at) VALUES (?, ?, ?)",
            ("schema_version", str(SCHEMA_VERSION), time.time()),
        )
        conn.commit()
        log.info("database_initialized", path=str(db_path), version=SCHEMA_VERSION)
    finally:
        conn.close()


def _remove_database(db_path: Path) -> None:
    db_path.unlink()
    for suffix in (".db-wal", ".db-shm"):
        sidecar = db_path.with_suffix(suffix)
        if sidecar.exists():
            sidecar.unlink()


def _get_schema_version_raw(conn: sqlite3.Connection) -> int:
    """Get schema version without error handling (for init_database use)."""
    row = conn.execute("SELECT value FROM client_state WHERE key = 'schema_version'").fetchone()
    return int(row[0]) if row else 0


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a database connection."""
    return sqlite3.connect(db_path)


@contextmanager
def open_state(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """Initialize (if needed) and open the client state database.

    Yields:
        sqlite3.Connection: Database connection, closed on exit
    """
    init_database(db_path)
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_state(conn: sqlite3.Connection, key: str) -> str | None:
    """Get a value from the client_state table."""
    try:
        row = conn.execute("SELECT value FROM client_state WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None
    except sqlite3.OperationalError:
        return None


def set_state(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Set a value in the client_state table."""
    conn.execute(
        "INSERT OR REPLACE INTO client_state (key, value, updated_at) VALUES (?, ?, ?)",
        (key, value, time.time()),
    )
    conn.commit()


"""Tests for SQLite client state storage."""

import sqlite3
from pathlib import Path

from port_surgeon.storage import (
    SCHEMA_VERSION,
    get_connection,
    get_state,
    init_database,
    open_state,
    set_state,
)


def test_init_database_creates_file(tmp_db: Path):
    """init_database creates SQLite file and parent dirs."""
    db_path = tmp_db.parent / "nested" / "state.db"
    init_database(db_path)
    assert db_path.exists()


def test_init_database_enables_wal(tmp_db: Path):
    """init_database enables WAL journal mode."""
    init_database(tmp_db)

    conn = sqlite3.connect(tmp_db)
    result = conn.execute("PRAGMA journal_mode").fetchone()
    conn.close()
    assert result[0] == "wal"


def test_init_database_records_schema_version(tmp_db: Path):
    init_database(tmp_db)
    conn = get_connection(tmp_db)
    try:
        assert get_state(conn, "schema_version") == str(SCHEMA_VERSION)
    finally:
        conn.close()


def test_init_database_is_idempotent(tmp_db: Path):
    with open_state(tmp_db) as conn:
        set_state(conn, "k", "v")
    init_database(tmp_db)
    with open_state(tmp_db) as conn:
        assert get_state(conn, "k") == "v"


def test_schema_mismatch_recreates(tmp_db: Path):
    with open_state(tmp_db) as conn:
        set_state(conn, "k", "v")
        set_state(conn, "schema_version", str(SCHEMA_VERSION + 1))

    init_database(tmp_db)

    with open_state(tmp_db) as conn:
        assert get_state(conn, "k") is None
        assert get_state(conn, "schema_version") == str(SCHEMA_VERSION)


def test_unreadable_database_recreated(tmp_db: Path):
    tmp_db.write_bytes(b"this is not a sqlite database" * 100)
    init_database(tmp_db)
    with open_state(tmp_db) as conn:
        assert get_state(conn, "schema_version") == str(SCHEMA_VERSION)


def test_get_state_missing_key(tmp_db: Path):
    with open_state(tmp_db) as conn:
        assert get_state(conn, "absent") is None


def test_set_state_overwrites(tmp_db: Path):
    with open_state(tmp_db) as conn:
        set_state(conn, "k", "1")
        set_state(conn, "k", "2")
        assert get_state(conn, "k") == "2"

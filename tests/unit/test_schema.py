"""Tests for database schema."""

import sqlite3

from tab_canopy.core.database.schema import (
    create_schema,
    get_metadata,
    get_schema_version,
    migrate_schema,
    set_metadata,
)


def test_create_schema_creates_tables() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    tables = {
        row[0]
        for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
    }
    assert {"tabs", "windows", "metadata"} <= tables


def test_migrate_schema_on_empty_db_creates_schema_and_sets_version() -> None:
    conn = sqlite3.connect(":memory:")
    assert get_schema_version(conn) is None
    migrate_schema(conn)
    assert get_schema_version(conn) == 1


def test_migrate_schema_is_idempotent() -> None:
    conn = sqlite3.connect(":memory:")
    migrate_schema(conn)
    conn.execute(
        "INSERT INTO tabs (tab_id, window_id, tab_index, tree_order) VALUES (1, 1, 0, 'a0')"
    )
    conn.commit()
    migrate_schema(conn)
    assert conn.execute("SELECT COUNT(*) FROM tabs").fetchone()[0] == 1


def test_metadata_round_trip() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    assert get_metadata(conn, "last_sync") is None
    set_metadata(conn, "last_sync", "2026-01-01")
    assert get_metadata(conn, "last_sync") == "2026-01-01"

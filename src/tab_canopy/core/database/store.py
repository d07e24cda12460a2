"""SQLite-backed record store for tab and window records.

Every write runs in its own transaction and, once committed, is pushed to the
registered change listeners so a view can re-render from the store.
"""

import sqlite3
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from tab_canopy.core.database.schema import migrate_schema
from tab_canopy.models.tab import Tab, Window

_TAB_COLUMNS = (
    "tab_id, window_id, tab_index, parent_tab_id, tree_order, is_collapsed, "
    "title, title_override, url, active, pinned, status"
)


@dataclass(frozen=True)
class StoreChange:
    """A committed write: which table changed and which ids were put or deleted."""

    table: str
    put_ids: tuple[int, ...] = ()
    deleted_ids: tuple[int, ...] = ()


def _row_to_tab(row: tuple) -> Tab:
    return Tab(
        tab_id=row[0],
        window_id=row[1],
        index=row[2],
        parent_tab_id=row[3],
        tree_order=row[4],
        is_collapsed=bool(row[5]),
        title=row[6],
        title_override=row[7],
        url=row[8],
        active=bool(row[9]),
        pinned=bool(row[10]),
        status=row[11],
    )


def _tab_to_row(tab: Tab) -> tuple:
    return (
        tab.tab_id, tab.window_id, tab.index, tab.parent_tab_id, tab.tree_order,
        int(tab.is_collapsed), tab.title, tab.title_override, tab.url,
        int(tab.active), int(tab.pinned), tab.status,
    )


class TabStore:
    """Record store over a SQLite connection (schema must already exist)."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._listeners: list[Callable[[StoreChange], None]] = []

    @classmethod
    def open(cls, db_path: Path | str) -> "TabStore":
        """Open (creating if needed) the database at ``db_path``."""
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
        migrate_schema(conn)
        return cls(conn)

    def close(self) -> None:
        self.conn.close()

    # --- Reads ---

    def read_tabs(self, window_id: int | None = None) -> list[Tab]:
        query = f"SELECT {_TAB_COLUMNS} FROM tabs"
        params: tuple = ()
        if window_id is not None:
            query += " WHERE window_id = ?"
            params = (window_id,)
        query += " ORDER BY window_id, tab_index, tab_id"
        return [_row_to_tab(row) for row in self.conn.execute(query, params).fetchall()]

    def read_windows(self) -> list[Window]:
        rows = self.conn.execute(
            "SELECT window_id, focused, state, incognito, window_type "
            "FROM windows ORDER BY window_id"
        ).fetchall()
        return [
            Window(
                window_id=r[0],
                focused=bool(r[1]),
                state=r[2],
                incognito=bool(r[3]),
                window_type=r[4],
            )
            for r in rows
        ]

    # --- Writes ---

    def _write(self, sql: str, rows: list[tuple], change: StoreChange) -> None:
        if not rows:
            return
        try:
            self.conn.executemany(sql, rows)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.exception("Store write to {} failed", change.table)
            raise
        self._notify(change)

    def put_tabs(self, tabs: Iterable[Tab]) -> None:
        tabs = list(tabs)
        self._write(
            f"INSERT OR REPLACE INTO tabs ({_TAB_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [_tab_to_row(t) for t in tabs],
            StoreChange("tabs", put_ids=tuple(t.tab_id for t in tabs)),
        )

    def put_windows(self, windows: Iterable[Window]) -> None:
        windows = list(windows)
        self._write(
            "INSERT OR REPLACE INTO windows "
            "(window_id, focused, state, incognito, window_type) VALUES (?, ?, ?, ?, ?)",
            [
                (w.window_id, int(w.focused), w.state, int(w.incognito), w.window_type)
                for w in windows
            ],
            StoreChange("windows", put_ids=tuple(w.window_id for w in windows)),
        )

    def delete_tabs(self, tab_ids: Iterable[int]) -> None:
        ids = tuple(tab_ids)
        self._write(
            "DELETE FROM tabs WHERE tab_id = ?",
            [(i,) for i in ids],
            StoreChange("tabs", deleted_ids=ids),
        )

    def delete_windows(self, window_ids: Iterable[int]) -> None:
        ids = tuple(window_ids)
        self._write(
            "DELETE FROM windows WHERE window_id = ?",
            [(i,) for i in ids],
            StoreChange("windows", deleted_ids=ids),
        )

    def clear(self) -> None:
        try:
            self.conn.execute("DELETE FROM tabs")
            self.conn.execute("DELETE FROM windows")
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.exception("Failed to clear store")
            raise
        self._notify(StoreChange("tabs"))
        self._notify(StoreChange("windows"))

    # --- Change push ---

    def subscribe(self, listener: Callable[[StoreChange], None]) -> Callable[[], None]:
        """Register ``listener`` for committed changes; returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            listener(change)

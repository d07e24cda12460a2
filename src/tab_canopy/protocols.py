"""Protocols for the record store and the browser the reconciler drives."""

from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from tab_canopy.core.database.store import StoreChange
from tab_canopy.models.tab import NativeTab, NativeWindow, Tab, Window


@runtime_checkable
class TabStoreProtocol(Protocol):
    """Persistent record store holding tab and window records."""

    def read_tabs(self, window_id: int | None = None) -> list[Tab]:
        """Return tab records, optionally limited to one window, ordered by native index."""
        ...

    def read_windows(self) -> list[Window]:
        """Return all window records."""
        ...

    def put_tabs(self, tabs: Iterable[Tab]) -> None:
        """Insert or replace tab records in one transaction."""
        ...

    def put_windows(self, windows: Iterable[Window]) -> None:
        """Insert or replace window records in one transaction."""
        ...

    def delete_tabs(self, tab_ids: Iterable[int]) -> None:
        """Delete tab records by id."""
        ...

    def delete_windows(self, window_ids: Iterable[int]) -> None:
        """Delete window records by id."""
        ...

    def clear(self) -> None:
        """Delete every record."""
        ...

    def subscribe(self, listener: Callable[[StoreChange], None]) -> Callable[[], None]:
        """Register a change listener and return a function that removes it."""
        ...


@runtime_checkable
class BrowserProtocol(Protocol):
    """Native tab and window operations of the browser."""

    async def query_tabs(self, window_id: int | None = None) -> list[NativeTab]:
        """Return native tabs, optionally for one window, in strip order."""
        ...

    async def query_windows(self) -> list[NativeWindow]:
        """Return all native windows."""
        ...

    async def get_tab(self, tab_id: int) -> NativeTab | None:
        """Return one native tab, or None if it no longer exists."""
        ...

    async def move_tab(self, tab_id: int, *, window_id: int, index: int) -> None:
        """Move a tab to ``index`` in ``window_id``."""
        ...

    async def create_tab(
        self,
        *,
        window_id: int,
        index: int | None = None,
        url: str | None = None,
        opener_tab_id: int | None = None,
    ) -> NativeTab:
        """Create a tab and return its snapshot."""
        ...

    async def remove_tab(self, tab_id: int) -> None:
        """Close a tab."""
        ...


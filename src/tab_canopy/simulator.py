"""In-memory browser: per-window tab strips implementing BrowserProtocol.

Native calls mutate the strips, are recorded in ``calls`` and, when an
``on_event`` listener is set, emit the native events a real browser would fire.
``apply`` replays recorded native events onto the strips without emitting.
"""

from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

from loguru import logger

from tab_canopy.models.events import (
    NativeEvent,
    TabActivated,
    TabAttached,
    TabCreated,
    TabDetached,
    TabMoved,
    TabRemoved,
    TabUpdated,
    WindowCreated,
    WindowFocusChanged,
    WindowRemoved,
)
from tab_canopy.models.tab import NativeTab, NativeWindow


class SimulatedBrowser:
    """Tab strips held in memory, one list per window in native order."""

    def __init__(self, *, on_event: Callable[[NativeEvent], Any] | None = None) -> None:
        self.on_event = on_event
        self.calls: list[tuple[Any, ...]] = []
        self._windows: dict[int, NativeWindow] = {}
        self._strips: dict[int, list[NativeTab]] = {}
        self._detached: dict[int, NativeTab] = {}
        self._next_tab_id = 1

    # --- Setup and inspection ---

    def seed(self, windows: Iterable[NativeWindow], tabs: Iterable[NativeTab]) -> None:
        """Replace the browser state; tabs are placed by their ``index``."""
        self._windows = {w.window_id: w for w in windows}
        self._strips = {w_id: [] for w_id in self._windows}
        for tab in sorted(tabs, key=lambda t: (t.window_id, t.index)):
            if tab.window_id not in self._windows:
                self._windows[tab.window_id] = NativeWindow(window_id=tab.window_id)
            self._strips.setdefault(tab.window_id, []).append(tab)
        for window_id in self._strips:
            self._reindex(window_id)
        all_ids = [t.tab_id for strip in self._strips.values() for t in strip]
        self._next_tab_id = max(all_ids, default=0) + 1

    def strip(self, window_id: int) -> list[int]:
        """Return the tab ids of ``window_id`` in native order."""
        return [t.tab_id for t in self._strips.get(window_id, [])]

    def _reindex(self, window_id: int) -> None:
        strip = self._strips.get(window_id)
        if strip is None:
            return
        self._strips[window_id] = [
            t if t.index == i else replace(t, index=i) for i, t in enumerate(strip)
        ]

    def _find(self, tab_id: int) -> tuple[int, int] | None:
        for window_id, strip in self._strips.items():
            for i, tab in enumerate(strip):
                if tab.tab_id == tab_id:
                    return window_id, i
        return None

    def _emit(self, event: NativeEvent) -> None:
        if self.on_event is not None:
            self.on_event(event)

    def _take(self, tab_id: int) -> NativeTab | None:
        found = self._find(tab_id)
        if found is None:
            return None
        window_id, i = found
        tab = self._strips[window_id].pop(i)
        self._reindex(window_id)
        return tab

    def _insert(self, tab: NativeTab, window_id: int, index: int) -> NativeTab:
        if window_id not in self._windows:
            self._windows[window_id] = NativeWindow(window_id=window_id)
        strip = self._strips.setdefault(window_id, [])
        index = max(0, min(index, len(strip)))
        strip.insert(index, replace(tab, window_id=window_id, index=index))
        self._reindex(window_id)
        return self._strips[window_id][index]

    # --- BrowserProtocol ---

    async def query_tabs(self, window_id: int | None = None) -> list[NativeTab]:
        if window_id is not None:
            return list(self._strips.get(window_id, []))
        return [t for w_id in sorted(self._strips) for t in self._strips[w_id]]

    async def query_windows(self) -> list[NativeWindow]:
        return [self._windows[w_id] for w_id in sorted(self._windows)]

    async def get_tab(self, tab_id: int) -> NativeTab | None:
        found = self._find(tab_id)
        if found is None:
            return None
        window_id, i = found
        return self._strips[window_id][i]

    async def move_tab(self, tab_id: int, *, window_id: int, index: int) -> None:
        self.calls.append(("move", tab_id, window_id, index))
        found = self._find(tab_id)
        if found is None:
            msg = f"No tab with id: {tab_id}"
            raise ValueError(msg)
        old_window_id, old_index = found
        tab = self._take(tab_id)
        assert tab is not None
        if index < 0:
            index = len(self._strips.get(window_id, []))
        moved = self._insert(tab, window_id, index)
        if old_window_id != window_id:
            self._emit(TabDetached(tab_id, old_window_id, old_index))
            self._emit(TabAttached(tab_id, window_id, moved.index))
        elif old_index != moved.index:
            self._emit(TabMoved(tab_id, window_id, old_index, moved.index))

    async def create_tab(
        self,
        *,
        window_id: int,
        index: int | None = None,
        url: str | None = None,
        opener_tab_id: int | None = None,
    ) -> NativeTab:
        self.calls.append(("create", window_id, index, url, opener_tab_id))
        tab_id = self._next_tab_id
        self._next_tab_id += 1
        if index is None:
            index = len(self._strips.get(window_id, []))
        tab = self._insert(
            NativeTab(
                tab_id=tab_id,
                window_id=window_id,
                index=index,
                url=url,
                status="loading",
                opener_tab_id=opener_tab_id,
            ),
            window_id,
            index,
        )
        self._emit(TabCreated(tab))
        return tab

    async def remove_tab(self, tab_id: int) -> None:
        self.calls.append(("remove", tab_id))
        found = self._find(tab_id)
        if found is None:
            msg = f"No tab with id: {tab_id}"
            raise ValueError(msg)
        window_id, _ = found
        self._take(tab_id)
        self._emit(TabRemoved(tab_id, window_id))

    # --- Recorded events ---

    def apply(self, event: NativeEvent) -> None:
        """Bring the strips in line with a recorded native event."""
        if isinstance(event, TabCreated):
            if self._find(event.tab.tab_id) is None:
                self._insert(event.tab, event.tab.window_id, event.tab.index)
                self._next_tab_id = max(self._next_tab_id, event.tab.tab_id + 1)
        elif isinstance(event, TabMoved):
            tab = self._take(event.tab_id)
            if tab is not None:
                self._insert(tab, event.window_id, event.to_index)
        elif isinstance(event, TabRemoved):
            self._take(event.tab_id)
        elif isinstance(event, TabUpdated):
            found = self._find(event.tab_id)
            if found is not None:
                window_id, i = found
                self._strips[window_id][i] = replace(event.tab, window_id=window_id, index=i)
        elif isinstance(event, TabActivated):
            self._strips[event.window_id] = [
                replace(t, active=t.tab_id == event.tab_id)
                for t in self._strips.get(event.window_id, [])
            ]
        elif isinstance(event, TabDetached):
            tab = self._take(event.tab_id)
            if tab is not None:
                self._detached[event.tab_id] = tab
        elif isinstance(event, TabAttached):
            tab = self._detached.pop(event.tab_id, None) or self._take(event.tab_id)
            if tab is not None:
                self._insert(tab, event.new_window_id, event.new_position)
        elif isinstance(event, WindowCreated):
            self._windows[event.window.window_id] = event.window
            self._strips.setdefault(event.window.window_id, [])
        elif isinstance(event, WindowRemoved):
            self._windows.pop(event.window_id, None)
            self._strips.pop(event.window_id, None)
        elif isinstance(event, WindowFocusChanged):
            self._windows = {
                w_id: replace(w, focused=w_id == event.window_id)
                for w_id, w in self._windows.items()
            }
        else:
            logger.debug("Simulator ignores {}", type(event).__name__)

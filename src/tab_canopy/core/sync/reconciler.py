"""Apply native browser events and tree-view requests to the record store.

Every work item goes through one EventQueue, so each step sees the store as the
previous step left it. A step reads the store, computes the write set, writes
it in one batch and may then project the tree back onto the browser strip.
Before each native move it triggers, the reconciler registers the tree position
it expects, so the resulting native event applies that position instead of
re-inferring one from indices.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from loguru import logger

from tab_canopy.config import MAX_DECISION_HISTORY
from tab_canopy.core.sync.event_queue import EventQueue
from tab_canopy.core.sync.inference import (
    infer_tree_from_browser_create,
    infer_tree_from_browser_move,
    plan_browser_moves,
    promote_on_remove,
)
from tab_canopy.core.sync.intents import IntentRegistry
from tab_canopy.core.sync.mappers import tab_to_record, window_to_record, with_position
from tab_canopy.core.tree.model import children_of, descendant_ids, tree_ordered_ids
from tab_canopy.core.tree.order_key import generate_n_lenient
from tab_canopy.core.tree.planner import InvalidMoveError, plan_multi_move
from tab_canopy.models.events import (
    CloseTabs,
    InitialSync,
    MoveTabs,
    NewChildTab,
    PendingChild,
    RenameTab,
    ResetStore,
    TabActivated,
    TabAttached,
    TabCreated,
    TabDetached,
    TabMoved,
    TabRemoved,
    TabUpdated,
    ToggleCollapse,
    WindowCreated,
    WindowFocusChanged,
    WindowRemoved,
    WorkItem,
)
from tab_canopy.models.tab import Tab, TreePosition
from tab_canopy.protocols import BrowserProtocol, TabStoreProtocol


@dataclass(frozen=True)
class CreationDecision:
    """Why a created tab ended up where it did."""

    tab_id: int
    opener_tab_id: int | None
    index: int
    parent_tab_id: int | None
    tree_order: str
    reason: str


class Reconciler:
    """Serialize native events and UI requests into store writes."""

    def __init__(
        self,
        store: TabStoreProtocol,
        browser: BrowserProtocol,
        *,
        intents: IntentRegistry | None = None,
        queue: EventQueue | None = None,
        track_decisions: bool = False,
    ) -> None:
        self.store = store
        self.browser = browser
        self.intents = intents if intents is not None else IntentRegistry()
        self.queue = queue if queue is not None else EventQueue()
        self.track_decisions = track_decisions
        self.decisions: deque[CreationDecision] = deque(maxlen=MAX_DECISION_HISTORY)
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            TabCreated: self._on_tab_created,
            TabUpdated: self._on_tab_updated,
            TabMoved: self._on_tab_moved,
            TabRemoved: self._on_tab_removed,
            TabActivated: self._on_tab_activated,
            TabDetached: self._on_tab_detached,
            TabAttached: self._on_tab_attached,
            WindowCreated: self._on_window_created,
            WindowRemoved: self._on_window_removed,
            WindowFocusChanged: self._on_window_focus_changed,
            MoveTabs: self._on_move_tabs,
            PendingChild: self._on_pending_child,
            NewChildTab: self._on_new_child_tab,
            ToggleCollapse: self._on_toggle_collapse,
            RenameTab: self._on_rename_tab,
            CloseTabs: self._on_close_tabs,
            InitialSync: self._on_initial_sync,
            ResetStore: self._on_reset_store,
        }

    # --- Entry points ---

    def submit(self, item: WorkItem) -> asyncio.Future[bool]:
        """Enqueue ``item``; the future resolves once it has been applied."""
        return self.queue.enqueue(type(item).__name__, lambda: self.reconcile(item))

    async def reconcile(self, item: WorkItem) -> None:
        """Apply one item directly. Callers outside the queue must not overlap calls."""
        handler = self._handlers.get(type(item))
        if handler is None:
            msg = f"Unsupported work item: {item!r}"
            raise TypeError(msg)
        await handler(item)

    async def join(self) -> None:
        await self.queue.join()

    async def close(self) -> None:
        await self.queue.close()

    # --- Shared steps ---

    async def _window_tabs(self, window_id: int, *, exclude: int | None = None) -> list[Tab]:
        """Return the window's tabs in browser order carrying their stored tree fields."""
        native = await self.browser.query_tabs(window_id)
        existing = {t.tab_id: t for t in self.store.read_tabs()}
        return [
            tab_to_record(nt, existing=existing.get(nt.tab_id))
            for nt in native
            if nt.tab_id != exclude
        ]

    async def _sync_window(
        self,
        window_id: int,
        positions: dict[int, TreePosition] | None = None,
        *,
        active_tab_id: int | None = None,
    ) -> list[Tab]:
        """Write one record per native tab of ``window_id`` in a single batch.

        Tree fields come from ``positions``, then the stored record. Tabs with
        neither become roots appended after the existing roots. A parent that
        no longer exists anywhere is cleared.
        """
        positions = positions or {}
        native = await self.browser.query_tabs(window_id)
        stored = self.store.read_tabs()
        existing = {t.tab_id: t for t in stored}
        known = set(existing) | {nt.tab_id for nt in native}

        records: list[Tab] = []
        unknown = []
        for nt in native:
            prior = existing.get(nt.tab_id)
            position = positions.get(nt.tab_id)
            if position is None and prior is None:
                unknown.append(nt)
                continue
            record = tab_to_record(nt, position=position, existing=prior)
            if record.parent_tab_id is not None and record.parent_tab_id not in known:
                record = replace(record, parent_tab_id=None)
            records.append(record)

        if unknown:
            roots = sorted(r.tree_order for r in records if r.parent_tab_id is None)
            keys = generate_n_lenient(roots[-1] if roots else None, None, len(unknown))
            records.extend(
                tab_to_record(nt, position=TreePosition(None, key))
                for nt, key in zip(unknown, keys, strict=True)
            )

        if active_tab_id is not None:
            records = [replace(r, active=r.tab_id == active_tab_id) for r in records]
        self.store.put_tabs(records)
        return records

    async def _project(
        self, window_id: int, tab_ids: Iterable[int], *, from_creation: bool = False
    ) -> None:
        """Move ``tab_ids`` and their descendants to where the tree says they belong."""
        records = self.store.read_tabs(window_id)
        by_id = {r.tab_id: r for r in records}
        strip = [t.tab_id for t in await self.browser.query_tabs(window_id)]
        for move in plan_browser_moves(records, tab_ids, strip):
            record = by_id[move.tab_id]
            self.intents.register_move(
                move.tab_id,
                TreePosition(record.parent_tab_id, record.tree_order),
                from_creation=from_creation,
            )
            logger.debug("Projecting tab {} to index {}", move.tab_id, move.index)
            await self.browser.move_tab(move.tab_id, window_id=window_id, index=move.index)

    def _track(self, decision: CreationDecision) -> None:
        logger.debug(
            "Tab {} created at {}: parent={} ({})",
            decision.tab_id, decision.index, decision.parent_tab_id, decision.reason,
        )
        if self.track_decisions:
            self.decisions.append(decision)

    # --- Native tab events ---

    async def _on_tab_created(self, event: TabCreated) -> None:
        tab = event.tab
        needs_reposition = False
        pending = self.intents.consume_pending_child(tab.window_id, tab.index)
        if pending is not None:
            position = pending.position
            reason = f"Pending child intent: child of {position.parent_tab_id}"
            self.intents.register_move(tab.tab_id, position)
        else:
            tabs = await self._window_tabs(tab.window_id, exclude=tab.tab_id)
            inference = infer_tree_from_browser_create(
                tabs, tab.tab_id, tab.index, tab.opener_tab_id
            )
            position = inference.position
            reason = inference.reason
            needs_reposition = inference.needs_reposition
            self.intents.register_move(tab.tab_id, position, from_creation=True)

        self._track(
            CreationDecision(
                tab_id=tab.tab_id,
                opener_tab_id=tab.opener_tab_id,
                index=tab.index,
                parent_tab_id=position.parent_tab_id,
                tree_order=position.tree_order,
                reason=reason,
            )
        )
        await self._sync_window(tab.window_id, {tab.tab_id: position})
        if needs_reposition:
            await self._project(tab.window_id, [tab.tab_id], from_creation=True)

    async def _on_tab_updated(self, event: TabUpdated) -> None:
        existing = next((t for t in self.store.read_tabs() if t.tab_id == event.tab_id), None)
        if existing is None:
            logger.debug("Ignoring update for unknown tab {}", event.tab_id)
            return
        intent = self.intents.peek_move(event.tab_id)
        position = intent.position if intent is not None else None
        record = tab_to_record(event.tab, position=position, existing=existing)
        self.store.put_tabs([replace(record, index=existing.index)])

    async def _on_tab_moved(self, event: TabMoved) -> None:
        intent = self.intents.consume_move(event.tab_id)
        if event.from_index == event.to_index and intent is None:
            return

        if intent is not None:
            logger.debug("Tab {} moved with intent: parent={}", event.tab_id, intent.parent_tab_id)
            positions = {event.tab_id: intent.position}
            for nt in await self.browser.query_tabs(event.window_id):
                other = self.intents.peek_move(nt.tab_id)
                if other is not None and nt.tab_id != event.tab_id:
                    positions[nt.tab_id] = other.position
            await self._sync_window(event.window_id, positions)
            return

        tabs = await self._window_tabs(event.window_id)
        inference = infer_tree_from_browser_move(tabs, event.tab_id, event.to_index)
        for tab_id in inference.flattened:
            # A stale intent would re-parent the tab under the moved one
            self.intents.consume_move(tab_id)
        records = await self._sync_window(event.window_id, inference.updates)
        if descendant_ids(records, event.tab_id):
            await self._project(event.window_id, [event.tab_id])

    async def _on_tab_removed(self, event: TabRemoved) -> None:
        by_id = {t.tab_id: t for t in self.store.read_tabs()}
        removed = by_id.get(event.tab_id)
        descendants: list[int] = []
        positions: dict[int, TreePosition] = {}
        if removed is not None:
            records = self.store.read_tabs(removed.window_id)
            if removed.is_collapsed:
                descendants = descendant_ids(records, event.tab_id)
            else:
                positions = promote_on_remove(records, event.tab_id)

        self.store.delete_tabs([event.tab_id, *descendants])
        self.intents.discard([event.tab_id, *descendants])

        if event.is_window_closing:
            self.store.put_tabs(with_position(by_id[i], p) for i, p in positions.items())
            return

        for tab_id in descendants:
            try:
                await self.browser.remove_tab(tab_id)
            except Exception as e:
                logger.warning(
                    "Failed to close descendant {} of tab {}: {}", tab_id, event.tab_id, e
                )
        await self._sync_window(event.window_id, positions)

    async def _on_tab_activated(self, event: TabActivated) -> None:
        await self._sync_window(event.window_id, active_tab_id=event.tab_id)

    async def _on_tab_detached(self, event: TabDetached) -> None:
        if self.intents.peek_move(event.tab_id) is not None:
            # Managed move: the tree position is already written
            await self._sync_window(event.old_window_id)
            return

        records = self.store.read_tabs(event.old_window_id)
        detached = next((t for t in records if t.tab_id == event.tab_id), None)
        positions = promote_on_remove(records, event.tab_id)
        if detached is not None and detached.parent_tab_id is not None:
            self.store.put_tabs([replace(detached, parent_tab_id=None)])
        await self._sync_window(event.old_window_id, positions)

    async def _on_tab_attached(self, event: TabAttached) -> None:
        intent = self.intents.consume_move(event.tab_id)
        positions: dict[int, TreePosition] = {}
        if intent is not None:
            positions[event.tab_id] = intent.position
            for nt in await self.browser.query_tabs(event.new_window_id):
                other = self.intents.peek_move(nt.tab_id)
                if other is not None and nt.tab_id != event.tab_id:
                    positions[nt.tab_id] = other.position
        else:
            existing = next((t for t in self.store.read_tabs() if t.tab_id == event.tab_id), None)
            if existing is None or existing.window_id != event.new_window_id:
                tabs = await self._window_tabs(event.new_window_id, exclude=event.tab_id)
                inference = infer_tree_from_browser_create(tabs, event.tab_id, event.new_position)
                positions[event.tab_id] = inference.position
        await self._sync_window(event.new_window_id, positions)

    # --- Native window events ---

    async def _on_window_created(self, event: WindowCreated) -> None:
        self.store.put_windows([window_to_record(event.window)])

    async def _on_window_removed(self, event: WindowRemoved) -> None:
        closed = [t.tab_id for t in self.store.read_tabs(event.window_id)]
        self.store.delete_tabs(closed)
        self.store.delete_windows([event.window_id])
        self.intents.discard(closed)
        self.intents.discard_window(event.window_id)

    async def _on_window_focus_changed(self, event: WindowFocusChanged) -> None:
        self.store.put_windows(
            replace(w, focused=w.window_id == event.window_id) for w in self.store.read_windows()
        )

    # --- Tree view requests ---

    async def _on_move_tabs(self, item: MoveTabs) -> None:
        records = self.store.read_tabs()
        by_id = {t.tab_id: t for t in records}
        dragged = [tab_id for tab_id in item.tab_ids if tab_id in by_id]
        if not dragged:
            logger.warning("Ignoring move of unknown tabs {}", list(item.tab_ids))
            return

        # Subtrees travel with their roots, possibly into another window
        moving = set(dragged)
        for tab_id in dragged:
            moving.update(descendant_ids(records, tab_id))
        view = [
            replace(t, window_id=item.window_id) if t.tab_id in moving else t
            for t in records
            if t.window_id == item.window_id or t.tab_id in moving
        ]
        try:
            updates = plan_multi_move(view, dragged, item.intent)
        except InvalidMoveError as e:
            logger.warning("Ignoring move of {}: {}", list(item.tab_ids), e)
            return

        written = {t.tab_id: t for t in view if t.tab_id in moving}
        for tab_id, position in updates.items():
            written[tab_id] = with_position(written[tab_id], position)
        self.store.put_tabs(written.values())
        await self._project(item.window_id, list(updates))

    async def _on_pending_child(self, item: PendingChild) -> None:
        self.intents.register_pending_child(item.window_id, item.expected_index, item.position)

    async def _on_new_child_tab(self, item: NewChildTab) -> None:
        records = self.store.read_tabs()
        parent = next((t for t in records if t.tab_id == item.parent_tab_id), None)
        if parent is None:
            logger.warning("Cannot open child of unknown tab {}", item.parent_tab_id)
            return
        children = children_of(records, parent.tab_id)
        (key,) = generate_n_lenient(None, children[0].tree_order if children else None, 1)
        native_parent = await self.browser.get_tab(parent.tab_id)
        index = (native_parent.index if native_parent is not None else parent.index) + 1
        self.intents.register_pending_child(
            parent.window_id, index, TreePosition(parent.tab_id, key)
        )
        await self.browser.create_tab(
            window_id=parent.window_id,
            index=index,
            url=item.url,
            opener_tab_id=parent.tab_id,
        )

    async def _on_toggle_collapse(self, item: ToggleCollapse) -> None:
        record = next((t for t in self.store.read_tabs() if t.tab_id == item.tab_id), None)
        if record is None:
            logger.warning("Cannot toggle unknown tab {}", item.tab_id)
            return
        self.store.put_tabs([replace(record, is_collapsed=not record.is_collapsed)])

    async def _on_rename_tab(self, item: RenameTab) -> None:
        record = next((t for t in self.store.read_tabs() if t.tab_id == item.tab_id), None)
        if record is None:
            logger.warning("Cannot rename unknown tab {}", item.tab_id)
            return
        self.store.put_tabs([replace(record, title_override=item.title_override or None)])

    async def _on_close_tabs(self, item: CloseTabs) -> None:
        records = self.store.read_tabs()
        by_id = {t.tab_id: t for t in records}
        order = tree_ordered_ids(records)
        closing: set[int] = set()
        for tab_id in item.tab_ids:
            record = by_id.get(tab_id)
            if record is None:
                continue
            closing.add(tab_id)
            if record.is_collapsed:
                closing.update(descendant_ids(records, tab_id))
        # Descendants go first so no removal sees a parent that is already gone
        for tab_id in reversed(order):
            if tab_id not in closing:
                continue
            try:
                await self.browser.remove_tab(tab_id)
            except Exception as e:
                logger.warning("Failed to close tab {}: {}", tab_id, e)

    async def _on_initial_sync(self, _item: InitialSync) -> None:
        windows = await self.browser.query_windows()
        native_tabs = await self.browser.query_tabs()
        window_ids = {w.window_id for w in windows}
        tab_ids = {t.tab_id for t in native_tabs}

        stale_tabs = [t.tab_id for t in self.store.read_tabs() if t.tab_id not in tab_ids]
        stale_windows = [
            w.window_id for w in self.store.read_windows() if w.window_id not in window_ids
        ]
        self.store.delete_tabs(stale_tabs)
        self.intents.discard(stale_tabs)
        self.store.delete_windows(stale_windows)
        self.store.put_windows(window_to_record(w) for w in windows)
        for window_id in sorted(window_ids | {t.window_id for t in native_tabs}):
            await self._sync_window(window_id)
        logger.info(
            "Initial sync: {} windows, {} tabs ({} stale records removed)",
            len(windows), len(native_tabs), len(stale_tabs) + len(stale_windows),
        )

    async def _on_reset_store(self, _item: ResetStore) -> None:
        self.store.clear()
        self.intents.clear()
        await self._on_initial_sync(InitialSync())

"""Tests for the reconciler driving a simulated browser and a real store."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace

import pytest

from tab_canopy.core.database.store import StoreChange, TabStore
from tab_canopy.core.sync.reconciler import Reconciler
from tab_canopy.core.tree.model import tree_ordered_ids
from tab_canopy.models.events import (
    CloseTabs,
    InitialSync,
    MoveTabs,
    NewChildTab,
    PendingChild,
    RenameTab,
    ResetStore,
    TabActivated,
    TabRemoved,
    TabUpdated,
    ToggleCollapse,
    WindowCreated,
    WindowFocusChanged,
    WindowRemoved,
)
from tab_canopy.models.intents import DropAfter, DropChild
from tab_canopy.models.tab import NativeTab, NativeWindow, Tab, TreePosition, Window
from tab_canopy.protocols import BrowserProtocol, TabStoreProtocol
from tab_canopy.simulator import SimulatedBrowser
from tests.unit.fakes import FailingRemoveBrowser, FakeStore, make_tab, seeded_browser, strip_of

Step = Callable[[Reconciler, SimulatedBrowser], Awaitable[None]]


def _run(
    store: TabStoreProtocol,
    records: list[Tab],
    step: Step,
    *,
    browser: SimulatedBrowser | None = None,
    track_decisions: bool = False,
) -> tuple[SimulatedBrowser, Reconciler]:
    """Seed store and browser with ``records``, run ``step`` and drain the queue.

    Native events the browser fires while the step runs (including those
    caused by the reconciler's own projection) go back through the queue.
    """

    async def scenario() -> tuple[SimulatedBrowser, Reconciler]:
        sim = seeded_browser(records, browser=browser)
        reconciler = Reconciler(store, sim, track_decisions=track_decisions)
        sim.on_event = reconciler.submit
        store.put_windows(Window(window_id=w) for w in sorted({t.window_id for t in records}))
        store.put_tabs(records)
        try:
            await step(reconciler, sim)
            await reconciler.join()
        finally:
            await reconciler.close()
        return sim, reconciler

    return asyncio.run(scenario())


def _submit(*items: object) -> Step:
    async def step(reconciler: Reconciler, _browser: SimulatedBrowser) -> None:
        for item in items:
            assert await reconciler.submit(item)  # type: ignore[arg-type]

    return step


def _tabs(store: TabStore) -> dict[int, Tab]:
    return {t.tab_id: t for t in store.read_tabs()}


def test_simulator_satisfies_browser_protocol() -> None:
    assert isinstance(SimulatedBrowser(), BrowserProtocol)


# --- Initial sync ---


def test_initial_sync_creates_roots_and_drops_stale_records(store: TabStore) -> None:
    async def step(reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        browser.seed(
            [NativeWindow(window_id=1)],
            [NativeTab(tab_id=i, window_id=1, index=i - 1) for i in (1, 2, 3)],
        )
        assert await reconciler.submit(InitialSync())

    _run(store, [make_tab(99, window_id=9)], step)

    tabs = store.read_tabs()
    assert [t.tab_id for t in tabs] == [1, 2, 3]
    assert all(t.parent_tab_id is None for t in tabs)
    assert [t.tree_order for t in tabs] == sorted(t.tree_order for t in tabs)
    assert [w.window_id for w in store.read_windows()] == [1]


def test_initial_sync_keeps_stored_tree_and_appends_new_tabs(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"))

    async def step(reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        browser.seed(
            [NativeWindow(window_id=1)],
            [NativeTab(tab_id=i, window_id=1, index=i - 1) for i in (1, 2, 3)],
        )
        assert await reconciler.submit(InitialSync())

    _run(store, records, step)

    tabs = _tabs(store)
    assert tabs[2].parent_tab_id == 1
    assert tabs[3].parent_tab_id is None
    assert tabs[3].tree_order > "a0"


def test_reset_store_rebuilds_from_browser(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"))
    _run(store, records, _submit(ResetStore()))

    tabs = _tabs(store)
    assert set(tabs) == {1, 2}
    assert tabs[2].parent_tab_id is None


# --- Native creation ---


def test_tab_opened_from_opener_becomes_its_child(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, None, "a1"))

    async def step(_reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        await browser.create_tab(window_id=1, index=1, opener_tab_id=1)

    browser, reconciler = _run(store, records, step, track_decisions=True)

    tabs = _tabs(store)
    assert tabs[3].parent_tab_id == 1
    assert tabs[3].index == 1
    assert tabs[2].index == 2
    assert browser.strip(1) == [1, 3, 2]
    decision = reconciler.decisions[0]
    assert decision.tab_id == 3
    assert decision.parent_tab_id == 1
    assert decision.reason.startswith("Opener-based")


def test_tab_opened_outside_opener_subtree_is_moved_next_to_siblings(store: TabStore) -> None:
    # A [A1], B; new tab from A opens at the end of the strip
    records = strip_of((1, None, "a0"), (2, 1, "a0"), (3, None, "a1"))

    async def step(_reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        await browser.create_tab(window_id=1, index=3, opener_tab_id=1)

    browser, _ = _run(store, records, step)

    assert browser.strip(1) == [1, 2, 4, 3]
    tabs = _tabs(store)
    assert tabs[4].parent_tab_id == 1
    assert tabs[4].tree_order > tabs[2].tree_order
    assert tabs[4].index == 2
    assert tabs[3].index == 3


def test_new_child_tab_uses_pending_child_position(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"), (3, None, "a1"))
    browser, reconciler = _run(
        store, records, _submit(NewChildTab(1, url="https://example.com")), track_decisions=True
    )

    assert browser.calls == [("create", 1, 1, "https://example.com", 1)]
    assert browser.strip(1) == [1, 4, 2, 3]
    tabs = _tabs(store)
    assert tabs[4].parent_tab_id == 1
    assert tabs[4].tree_order < tabs[2].tree_order
    assert reconciler.decisions[0].reason.startswith("Pending child intent")


def test_pending_child_declared_ahead_of_creation(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, None, "a1"))

    async def step(reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        assert await reconciler.submit(PendingChild(1, 2, TreePosition(2, "a5")))
        await browser.create_tab(window_id=1, index=2)

    _run(store, records, step)

    tabs = _tabs(store)
    assert tabs[3].parent_tab_id == 2
    assert tabs[3].tree_order == "a5"


# --- Tree view moves ---


def _abcd() -> list[Tab]:
    """a, b, c [c1, c2], d as ids 1-6."""
    return strip_of(
        (1, None, "a0"),
        (2, None, "a1"),
        (3, None, "a2"),
        (4, 3, "a0"),
        (5, 3, "a1"),
        (6, None, "a3"),
    )


def test_drop_as_child_updates_tree_and_strip(store: TabStore) -> None:
    browser, _ = _run(store, _abcd(), _submit(MoveTabs((2,), DropChild(3), 1)))

    tabs = _tabs(store)
    assert tabs[2].parent_tab_id == 3
    assert tabs[2].tree_order < tabs[4].tree_order
    assert browser.strip(1) == [1, 3, 2, 4, 5, 6]
    assert [t.tab_id for t in store.read_tabs(1)] == [1, 3, 2, 4, 5, 6]


def test_dragging_a_parent_carries_its_subtree(store: TabStore) -> None:
    browser, _ = _run(store, _abcd(), _submit(MoveTabs((3,), DropAfter(6), 1)))

    assert browser.strip(1) == [1, 2, 6, 3, 4, 5]
    tabs = _tabs(store)
    assert tabs[3].parent_tab_id is None
    assert tabs[4].parent_tab_id == 3
    assert tabs[5].parent_tab_id == 3


def test_drop_under_own_descendant_is_a_no_op(store: TabStore) -> None:
    browser, _ = _run(store, _abcd(), _submit(MoveTabs((3,), DropChild(4), 1)))

    assert browser.calls == []
    assert _tabs(store)[3].parent_tab_id is None


def test_multi_select_drop_keeps_tree_order(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, None, "a1"), (3, None, "a2"))
    browser, _ = _run(store, records, _submit(MoveTabs((3, 1), DropChild(2), 1)))

    tabs = _tabs(store)
    assert tabs[1].parent_tab_id == 2
    assert tabs[3].parent_tab_id == 2
    assert tabs[1].tree_order < tabs[3].tree_order
    assert browser.strip(1) == [2, 1, 3]


def test_drop_into_another_window(store: TabStore) -> None:
    records = [
        *strip_of((1, None, "a0"), (2, None, "a1")),
        *strip_of((3, None, "a0"), window_id=2),
    ]
    browser, _ = _run(store, records, _submit(MoveTabs((2,), DropAfter(3), 2)))

    assert browser.strip(1) == [1]
    assert browser.strip(2) == [3, 2]
    tab = _tabs(store)[2]
    assert tab.window_id == 2
    assert tab.index == 1
    assert tab.parent_tab_id is None


# --- Native moves ---


def test_native_move_out_of_subtree_breaks_out(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"), (3, None, "a1"))

    async def step(_reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        await browser.move_tab(2, window_id=1, index=2)

    _run(store, records, step)

    tab = _tabs(store)[2]
    assert tab.parent_tab_id is None
    assert tab.tree_order > "a1"
    assert tab.index == 2


def test_native_move_of_parent_brings_children_along(store: TabStore) -> None:
    # X, P [C]; P dragged in front of X in the browser
    records = strip_of((1, None, "a0"), (2, None, "a1"), (3, 2, "a0"))

    async def step(_reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        await browser.move_tab(2, window_id=1, index=0)

    browser, _ = _run(store, records, step)

    assert browser.strip(1) == [2, 3, 1]
    tabs = _tabs(store)
    assert tabs[3].parent_tab_id == 2
    assert tabs[2].tree_order < tabs[1].tree_order
    assert tree_ordered_ids(store.read_tabs(1)) == [2, 3, 1]


def test_native_detach_dissolves_parent_relationship(store: TabStore) -> None:
    records = [
        *strip_of((1, None, "a0"), (2, None, "a1"), (4, 2, "a0")),
        *strip_of((3, None, "a0"), window_id=2),
    ]

    async def step(_reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        await browser.move_tab(2, window_id=2, index=0)

    _run(store, records, step)

    tabs = _tabs(store)
    assert tabs[2].window_id == 2
    assert tabs[2].parent_tab_id is None
    assert tabs[2].tree_order < tabs[3].tree_order
    assert tabs[4].window_id == 1
    assert tabs[4].parent_tab_id is None


# --- Removal ---


def test_removing_collapsed_tab_removes_its_subtree(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"), (3, 2, "a0"), (4, None, "a1"))
    records[0] = replace(records[0], is_collapsed=True)

    async def step(_reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        await browser.remove_tab(1)

    browser, _ = _run(store, records, step)

    assert set(_tabs(store)) == {4}
    assert browser.strip(1) == [4]


def test_removing_expanded_tab_promotes_children(store: TabStore) -> None:
    records = strip_of(
        (1, None, "a0"),
        (2, None, "a1"),
        (3, 2, "a0"),
        (4, 2, "a1"),
        (5, None, "a2"),
    )

    async def step(_reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        await browser.remove_tab(2)

    _run(store, records, step)

    tabs = _tabs(store)
    assert tabs[3].parent_tab_id is None
    assert tabs[4].parent_tab_id is None
    assert tree_ordered_ids(store.read_tabs()) == [1, 3, 4, 5]


def test_window_closing_removal_skips_native_calls(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"))
    browser, _ = _run(store, records, _submit(TabRemoved(1, 1, is_window_closing=True)))

    assert browser.calls == []
    tabs = _tabs(store)
    assert set(tabs) == {2}
    assert tabs[2].parent_tab_id is None


def test_close_collapsed_tab_closes_descendants_first(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"), (3, None, "a1"))
    records[0] = replace(records[0], is_collapsed=True)
    browser, _ = _run(store, records, _submit(CloseTabs((1,))))

    assert browser.calls == [("remove", 2), ("remove", 1)]
    assert set(_tabs(store)) == {3}


def test_close_continues_after_a_failed_removal(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, None, "a1"), (3, None, "a2"))
    browser, _ = _run(
        store, records, _submit(CloseTabs((2, 3))), browser=FailingRemoveBrowser([3])
    )

    assert browser.calls == [("remove", 3), ("remove", 2)]
    assert browser.strip(1) == [1, 3]
    assert set(_tabs(store)) == {1, 3}


# --- Updates and tree view requests ---


def test_update_keeps_tree_position(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"))
    snapshot = NativeTab(tab_id=2, window_id=1, index=1, title="Docs", url="https://docs")
    _run(store, records, _submit(TabUpdated(2, snapshot)))

    tab = _tabs(store)[2]
    assert tab.title == "Docs"
    assert tab.url == "https://docs"
    assert tab.parent_tab_id == 1


def test_update_of_unknown_tab_is_ignored(store: TabStore) -> None:
    snapshot = NativeTab(tab_id=9, window_id=1, index=0)
    _run(store, strip_of((1, None, "a0")), _submit(TabUpdated(9, snapshot)))
    assert set(_tabs(store)) == {1}


def test_toggle_collapse_and_rename(store: TabStore) -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"))
    _run(
        store,
        records,
        _submit(ToggleCollapse(1), RenameTab(1, "Research"), RenameTab(2, "")),
    )

    tabs = _tabs(store)
    assert tabs[1].is_collapsed
    assert tabs[1].title_override == "Research"
    assert tabs[1].display_title == "Research"
    assert tabs[2].title_override is None


def test_activation_is_written_in_one_batch() -> None:
    fake = FakeStore()
    records = strip_of((1, None, "a0"), (2, None, "a1"))

    async def step(reconciler: Reconciler, _browser: SimulatedBrowser) -> None:
        fake.writes.clear()
        assert await reconciler.submit(TabActivated(2, 1))

    _run(fake, records, step)

    assert fake.writes == [StoreChange("tabs", put_ids=(1, 2))]
    assert fake.tabs[2].active
    assert not fake.tabs[1].active


def test_window_lifecycle(store: TabStore) -> None:
    records = strip_of((1, None, "a0"))
    _run(
        store,
        records,
        _submit(
            WindowCreated(NativeWindow(window_id=2)),
            WindowFocusChanged(2),
        ),
    )
    assert {w.window_id: w.focused for w in store.read_windows()} == {1: False, 2: True}

    _run(store, records, _submit(WindowRemoved(1)))
    assert store.read_tabs() == []
    assert [w.window_id for w in store.read_windows()] == [2]


def test_closed_tabs_leave_no_intents_behind(store: TabStore) -> None:
    records = strip_of((1, None, "a0"))

    async def step(reconciler: Reconciler, browser: SimulatedBrowser) -> None:
        for _ in range(20):
            tab = await browser.create_tab(window_id=1, opener_tab_id=1)
            await reconciler.join()
            await browser.remove_tab(tab.tab_id)
            await reconciler.join()
        assert await reconciler.submit(PendingChild(1, 5, TreePosition(1, "a5")))
        assert len(reconciler.intents) == 1
        assert await reconciler.submit(WindowRemoved(1))

    _, reconciler = _run(store, records, step)

    assert len(reconciler.intents) == 0
    assert store.read_tabs() == []


def test_unknown_work_item_is_rejected(store: TabStore) -> None:
    async def scenario() -> bool:
        reconciler = Reconciler(store, SimulatedBrowser())
        with pytest.raises(TypeError):
            await reconciler.reconcile(object())  # type: ignore[arg-type]
        ok = await reconciler.submit(object())  # type: ignore[arg-type]
        await reconciler.close()
        return ok

    assert asyncio.run(scenario()) is False

"""Replay a recorded session through the reconciler against a simulated browser."""

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from tab_canopy.core.replay.session import (
    Session,
    native_tab_from_record,
    native_window_from_record,
    to_work_item,
)
from tab_canopy.core.sync.reconciler import CreationDecision, Reconciler
from tab_canopy.models.events import NativeEvent
from tab_canopy.models.tab import Tab, Window
from tab_canopy.protocols import TabStoreProtocol
from tab_canopy.simulator import SimulatedBrowser

_TAB_FIELDS = {
    "browserWindowId": "window_id",
    "tabIndex": "index",
    "parentTabId": "parent_tab_id",
    "treeOrder": "tree_order",
    "isCollapsed": "is_collapsed",
}


@dataclass
class ReplayResult:
    """Final state and bookkeeping of one replay."""

    tabs: list[Tab]
    windows: list[Window]
    applied: int = 0
    skipped: int = 0
    errors: int = 0
    failures: list[str] = field(default_factory=list)
    decisions: list[CreationDecision] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.errors == 0 and not self.failures


def check_assertion(store: TabStoreProtocol, assertion: dict[str, Any]) -> list[str]:
    """Check one replay assertion against the store; return failure messages."""
    tabs = {t.tab_id: t for t in store.read_tabs()}
    kind = assertion.get("type")

    if kind == "tabExists":
        tab_id = assertion["tabId"]
        should_exist = assertion.get("shouldExist", True)
        if (tab_id in tabs) != should_exist:
            state = "missing" if should_exist else "still present"
            return [f"Tab {tab_id} is {state}"]
        return []

    if kind == "tabState":
        tab = tabs.get(assertion["tabId"])
        if tab is None:
            return [f"Tab {assertion['tabId']} not found"]
        failures = []
        for key, expected in assertion.get("expected", {}).items():
            attr = _TAB_FIELDS.get(key)
            if attr is None:
                continue
            actual = getattr(tab, attr)
            if actual != expected:
                failures.append(f"Tab {tab.tab_id} {key}: expected {expected!r}, got {actual!r}")
        return failures

    if kind == "tabOrder":
        window_id = assertion["windowId"]
        actual = [t.tab_id for t in store.read_tabs(window_id)]
        expected_order = assertion["expectedOrder"]
        if actual != expected_order:
            return [f"Window {window_id} order: expected {expected_order}, got {actual}"]
        return []

    if kind == "treeStructure":
        failures = []
        for key, expected in assertion.get("expectedParents", {}).items():
            tab = tabs.get(int(key))
            if tab is None:
                failures.append(f"Tab {key} not found")
            elif tab.parent_tab_id != expected:
                failures.append(
                    f"Tab {key} parent: expected {expected!r}, got {tab.parent_tab_id!r}"
                )
        return failures

    logger.warning("Unknown assertion type {!r}", kind)
    return []


async def run_replay(
    session: Session,
    store: TabStoreProtocol,
    *,
    browser: SimulatedBrowser | None = None,
    track_decisions: bool = False,
) -> ReplayResult:
    """Seed ``store`` and the browser from the session, then apply every event.

    Native events update the simulated strips first, then go through the
    reconciler; tree-view interactions become UI work items. Steps run one at
    a time, each awaited to completion.
    """
    browser = browser if browser is not None else SimulatedBrowser()
    store.clear()
    store.put_windows(session.windows)
    store.put_tabs(session.tabs)
    browser.seed(
        [native_window_from_record(w) for w in session.windows],
        [native_tab_from_record(t) for t in session.tabs],
    )

    reconciler = Reconciler(store, browser, track_decisions=track_decisions)
    result = ReplayResult(tabs=[], windows=[])
    try:
        for i, event in enumerate(session.events):
            item = to_work_item(event)
            if item is None:
                result.skipped += 1
            else:
                if isinstance(item, NativeEvent):
                    browser.apply(item)
                if await reconciler.submit(item):
                    result.applied += 1
                else:
                    result.errors += 1
            for assertion in session.assertions.get(i, ()):
                result.failures.extend(
                    f"event {i} ({event.type}): {failure}"
                    for failure in check_assertion(store, assertion)
                )
    finally:
        await reconciler.close()

    result.tabs = store.read_tabs()
    result.windows = store.read_windows()
    result.decisions = list(reconciler.decisions)
    logger.info(
        "Replayed {} events: {} applied, {} skipped, {} errors",
        len(session.events), result.applied, result.skipped, result.errors,
    )
    return result

"""Parse recorded sessions into initial state and work items.

A session is JSON with an ``initialState`` (``windows`` and ``tabs`` as stored
records) and a list of ``events``, each ``{"type", "timestamp", "data"}``.
Browser callbacks use ``chrome.*`` type names and tree-view interactions use
``user.*``. A replay test case wraps a session as ``{"name", "session",
"steps"}`` where each step lists assertions to check after one event.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from tab_canopy.models.events import (
    CloseTabs,
    MoveTabs,
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
from tab_canopy.models.intents import DropChild, MoveIntent, RootInsert, SiblingDrop
from tab_canopy.models.tab import DEFAULT_TREE_ORDER, NativeTab, NativeWindow, Tab, Window


class SessionFormatError(ValueError):
    """A recorded session is missing required fields."""


@dataclass(frozen=True)
class RecordedEvent:
    type: str
    timestamp: float
    data: dict[str, Any]


@dataclass(frozen=True)
class Session:
    """A recorded session, optionally with assertions keyed by event index."""

    windows: tuple[Window, ...]
    tabs: tuple[Tab, ...]
    events: tuple[RecordedEvent, ...]
    session_id: str | None = None
    name: str | None = None
    assertions: dict[int, tuple[dict[str, Any], ...]] = field(default_factory=dict)


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if key not in data:
        msg = f"Missing {key!r} in {where}"
        raise SessionFormatError(msg)
    return data[key]


def parse_window_record(data: dict[str, Any]) -> Window:
    return Window(
        window_id=_require(data, "browserWindowId", "window record"),
        focused=bool(data.get("focused", False)),
        state=data.get("state") or "normal",
        incognito=bool(data.get("incognito", False)),
        window_type=data.get("type") or "normal",
    )


def parse_tab_record(data: dict[str, Any]) -> Tab:
    return Tab(
        tab_id=_require(data, "browserTabId", "tab record"),
        window_id=_require(data, "browserWindowId", "tab record"),
        index=data.get("tabIndex", 0),
        parent_tab_id=data.get("parentTabId"),
        tree_order=data.get("treeOrder") or DEFAULT_TREE_ORDER,
        is_collapsed=bool(data.get("isCollapsed", False)),
        title=data.get("title"),
        title_override=data.get("titleOverride"),
        url=data.get("url"),
        active=bool(data.get("active", False)),
        pinned=bool(data.get("pinned", False)),
        status=data.get("status") or "complete",
    )


def parse_native_tab(data: dict[str, Any]) -> NativeTab:
    """Parse a browser tab snapshot (``id``, ``windowId``, ``index``, ...)."""
    return NativeTab(
        tab_id=_require(data, "id", "tab snapshot"),
        window_id=_require(data, "windowId", "tab snapshot"),
        index=data.get("index", 0),
        title=data.get("title"),
        url=data.get("url"),
        active=bool(data.get("active", False)),
        pinned=bool(data.get("pinned", False)),
        status=data.get("status") or "complete",
        opener_tab_id=data.get("openerTabId"),
    )


def parse_native_window(data: dict[str, Any]) -> NativeWindow:
    return NativeWindow(
        window_id=_require(data, "id", "window snapshot"),
        focused=bool(data.get("focused", False)),
        state=data.get("state") or "normal",
        incognito=bool(data.get("incognito", False)),
        window_type=data.get("type") or "normal",
    )


def native_tab_from_record(tab: Tab) -> NativeTab:
    return NativeTab(
        tab_id=tab.tab_id,
        window_id=tab.window_id,
        index=tab.index,
        title=tab.title,
        url=tab.url,
        active=tab.active,
        pinned=tab.pinned,
        status=tab.status,
    )


def native_window_from_record(window: Window) -> NativeWindow:
    return NativeWindow(
        window_id=window.window_id,
        focused=window.focused,
        state=window.state,
        incognito=window.incognito,
        window_type=window.window_type,
    )


def _drop_intent(drop: dict[str, Any]) -> MoveIntent | None:
    kind = drop.get("type")
    if kind == "child":
        return DropChild(drop["tabId"])
    if kind == "sibling":
        return SiblingDrop(drop["tabId"], drop.get("ancestorId"))
    if kind == "gap":
        return RootInsert(drop["slot"])
    return None


def to_work_item(event: RecordedEvent) -> WorkItem | None:
    """Map a recorded event to a work item; None for events that change nothing."""
    data = event.data
    if event.type == "chrome.tabs.onCreated":
        return TabCreated(parse_native_tab(data["tab"]))
    if event.type == "chrome.tabs.onRemoved":
        info = data.get("removeInfo", {})
        return TabRemoved(
            data["tabId"], info.get("windowId", -1), bool(info.get("isWindowClosing", False))
        )
    if event.type == "chrome.tabs.onMoved":
        info = data["moveInfo"]
        return TabMoved(data["tabId"], info["windowId"], info["fromIndex"], info["toIndex"])
    if event.type == "chrome.tabs.onUpdated":
        return TabUpdated(data["tabId"], parse_native_tab(data["tab"]))
    if event.type == "chrome.tabs.onActivated":
        info = data["activeInfo"]
        return TabActivated(info["tabId"], info["windowId"])
    if event.type == "chrome.tabs.onDetached":
        info = data["detachInfo"]
        return TabDetached(data["tabId"], info["oldWindowId"], info["oldPosition"])
    if event.type == "chrome.tabs.onAttached":
        info = data["attachInfo"]
        return TabAttached(data["tabId"], info["newWindowId"], info["newPosition"])
    if event.type == "chrome.windows.onCreated":
        return WindowCreated(parse_native_window(data["window"]))
    if event.type == "chrome.windows.onRemoved":
        return WindowRemoved(data["windowId"])
    if event.type == "chrome.windows.onFocusChanged":
        return WindowFocusChanged(data["windowId"])
    if event.type == "user.dragEnd":
        drop = data.get("dropTarget")
        intent = _drop_intent(drop) if drop else None
        if intent is None:
            logger.debug("Skipping drag without a tree drop target: {}", drop)
            return None
        tab_ids = tuple(data.get("selectedTabIds") or [data["tabId"]])
        return MoveTabs(tab_ids, intent, drop.get("windowId", data["windowId"]))
    if event.type == "user.toggleCollapse":
        return ToggleCollapse(data["tabId"])
    if event.type == "user.tabClose":
        return CloseTabs((data["tabId"],))
    return None


def parse_session(raw: dict[str, Any]) -> Session:
    """Parse a session dict, or a test case dict wrapping one."""
    assertions: dict[int, tuple[dict[str, Any], ...]] = {}
    name = None
    if "session" in raw:
        name = raw.get("name")
        for step in raw.get("steps", []):
            index = _require(step, "eventIndex", "replay step")
            assertions[index] = (*assertions.get(index, ()), *step.get("assertions", []))
        raw = raw["session"]

    initial = _require(raw, "initialState", "session")
    events = tuple(
        RecordedEvent(
            type=_require(e, "type", "event"),
            timestamp=e.get("timestamp", 0),
            data=e.get("data", {}),
        )
        for e in raw.get("events", [])
    )
    return Session(
        windows=tuple(parse_window_record(w) for w in initial.get("windows", [])),
        tabs=tuple(parse_tab_record(t) for t in initial.get("tabs", [])),
        events=events,
        session_id=raw.get("id"),
        name=name,
        assertions=assertions,
    )


def load_session(path: Path) -> Session:
    """Read and parse a session JSON file."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        msg = f"Invalid session JSON in {path}: {e}"
        raise SessionFormatError(msg) from e
    return parse_session(raw)

"""MCP server exposing the stored tab tree, move previews and session replay."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger
from mcp.server.fastmcp import Context, FastMCP

from tab_canopy.config import DATABASE_FILENAME, resolve_data_directory
from tab_canopy.core.database.schema import get_metadata
from tab_canopy.core.database.store import TabStore
from tab_canopy.core.replay.runner import run_replay
from tab_canopy.core.replay.session import SessionFormatError, load_session
from tab_canopy.core.tree.model import build, flatten
from tab_canopy.core.tree.planner import make_intent, plan_multi_move
from tab_canopy.core.tree.render import render_tree
from tab_canopy.models.tab import Tab, TreeNode


def _node_to_dict(node: TreeNode) -> dict[str, Any]:
    tab = node.tab
    return {
        "tab_id": tab.tab_id,
        "title": tab.display_title,
        "url": tab.url,
        "index": tab.index,
        "tree_order": tab.tree_order,
        "is_collapsed": tab.is_collapsed,
        "active": tab.active,
        "children": [_node_to_dict(child) for child in node.children],
    }


def _window_ids(tabs: list[Tab], window_id: int | None) -> list[int]:
    if window_id is not None:
        return [window_id]
    return sorted({t.window_id for t in tabs})


# --- Core functions (testable without MCP context) ---


def tab_tree(
    store: TabStore,
    *,
    window_id: int | None = None,
    expand_collapsed: bool = False,
    output_format: str = "text",
) -> dict[str, Any]:
    """Return the tab tree of one or all windows.

    Args:
        window_id: Only this window (None = all windows).
        expand_collapsed: Include children of collapsed tabs.
        output_format: "text" (indented tree) or "json" (nested nodes).
    """
    tabs = store.read_tabs()
    if window_id is not None and not any(t.window_id == window_id for t in tabs):
        return {"error": f"Window {window_id} has no tabs.", "windows": []}

    result = []
    for w_id in _window_ids(tabs, window_id):
        records = [t for t in tabs if t.window_id == w_id]
        entry: dict[str, Any] = {"window_id": w_id, "tab_count": len(records)}
        if output_format == "json":
            nodes = build(records)
            if not expand_collapsed:
                visible = {n.tab.tab_id for n in flatten(nodes)}
                nodes = [_prune(n, visible) for n in nodes]
            entry["tree"] = [_node_to_dict(n) for n in nodes]
        else:
            entry["tree"] = render_tree(records, expand_collapsed=expand_collapsed)
        result.append(entry)
    return {"windows": result, "count": len(result)}


def _prune(node: TreeNode, visible: set[int]) -> TreeNode:
    children = tuple(_prune(c, visible) for c in node.children if c.tab.tab_id in visible)
    return TreeNode(
        tab=node.tab, children=children, depth=node.depth, ancestor_ids=node.ancestor_ids
    )


def list_windows(store: TabStore) -> dict[str, Any]:
    """List stored windows with their tab counts and the last saved replay."""
    tabs = store.read_tabs()
    windows = store.read_windows()
    return {
        "windows": [
            {
                "window_id": w.window_id,
                "focused": w.focused,
                "state": w.state,
                "incognito": w.incognito,
                "tab_count": sum(1 for t in tabs if t.window_id == w.window_id),
            }
            for w in windows
        ],
        "count": len(windows),
        "last_replay_session": get_metadata(store.conn, "last_replay_session"),
    }


def preview_move(
    store: TabStore,
    *,
    tab_ids: list[int],
    kind: str = "after",
    target_tab_id: int | None = None,
    index: int = 0,
    window_id: int | None = None,
) -> dict[str, Any]:
    """Compute the tree positions a drag would produce, without writing.

    Args:
        tab_ids: Tabs being dragged.
        kind: "child", "before", "after" or "root".
        target_tab_id: Drop target (not needed for "root").
        index: Root slot when kind is "root".
        window_id: Target window (defaults to the first dragged tab's window).
    """
    if not tab_ids:
        return {"error": "No tabs to move.", "positions": []}
    tabs = store.read_tabs()
    by_id = {t.tab_id: t for t in tabs}
    missing = [i for i in tab_ids if i not in by_id]
    if missing:
        return {"error": f"Unknown tabs: {missing}", "positions": []}

    target_window = window_id if window_id is not None else by_id[tab_ids[0]].window_id
    view = [t for t in tabs if t.window_id == target_window or t.tab_id in tab_ids]
    try:
        intent = make_intent(kind, target_tab_id=target_tab_id, index=index)
        updates = plan_multi_move(view, tab_ids, intent)
    except ValueError as e:
        return {"error": str(e), "positions": []}
    return {
        "window_id": target_window,
        "positions": [
            {
                "tab_id": tab_id,
                "parent_tab_id": position.parent_tab_id,
                "tree_order": position.tree_order,
            }
            for tab_id, position in updates.items()
        ],
        "skipped": [i for i in tab_ids if i not in updates],
    }


async def replay_session(session_path: str, *, track_decisions: bool = False) -> dict[str, Any]:
    """Replay a recorded session into a scratch store and report the outcome."""
    path = Path(session_path).expanduser()
    if not path.exists():
        return {"error": f"Session file '{session_path}' not found."}
    try:
        session = load_session(path)
    except SessionFormatError as e:
        return {"error": str(e)}

    store = TabStore.open(":memory:")
    try:
        result = await run_replay(session, store, track_decisions=track_decisions)
        trees = tab_tree(store, expand_collapsed=True)["windows"]
    finally:
        store.close()

    output: dict[str, Any] = {
        "ok": result.ok,
        "applied": result.applied,
        "skipped": result.skipped,
        "errors": result.errors,
        "failures": result.failures,
        "windows": trees,
    }
    if track_decisions:
        output["decisions"] = [
            {
                "tab_id": d.tab_id,
                "opener_tab_id": d.opener_tab_id,
                "index": d.index,
                "parent_tab_id": d.parent_tab_id,
                "tree_order": d.tree_order,
                "reason": d.reason,
            }
            for d in result.decisions
        ]
    return output


# --- MCP server setup ---


@dataclass
class ServerContext:
    """Shared resources for the MCP server lifetime."""

    store: TabStore
    data_dir: Path


@asynccontextmanager
async def server_lifespan(_server: FastMCP) -> AsyncIterator[ServerContext]:
    """Open the tab database on startup, close on shutdown."""
    data_dir = resolve_data_directory()
    store = TabStore.open(data_dir / DATABASE_FILENAME)
    logger.info("Serving tab database in {}", data_dir)
    try:
        yield ServerContext(store=store, data_dir=data_dir)
    finally:
        store.close()


mcp_server = FastMCP(
    "tab-canopy",
    instructions="""\
Tab canopy keeps a tree of browser tabs on top of each window's flat tab strip.
Every tab has a parent (or none, for roots) and a sort key among its siblings.

Use tab_tree_tool to see the tree, list_windows_tool to find window ids, and
preview_move_tool to check where a drag would put tabs before doing it.
replay_session_tool replays a recorded session file and reports the final tree.
""",
    lifespan=server_lifespan,
)


def _ctx(mcp_ctx: Context) -> ServerContext:
    return mcp_ctx.request_context.lifespan_context  # type: ignore[return-value]


@mcp_server.tool()
async def tab_tree_tool(
    ctx: Context,
    window_id: int | None = None,
    expand_collapsed: bool = False,
    output_format: str = "text",
) -> dict[str, Any]:
    """Show the tab tree of one or all windows.

    Args:
        window_id: Only this window (omit for all windows).
        expand_collapsed: Include children of collapsed tabs.
        output_format: "text" (indented tree) or "json" (nested nodes).
    """
    return tab_tree(
        _ctx(ctx).store,
        window_id=window_id,
        expand_collapsed=expand_collapsed,
        output_format=output_format,
    )


@mcp_server.tool()
async def list_windows_tool(ctx: Context) -> dict[str, Any]:
    """List browser windows with their tab counts."""
    return list_windows(_ctx(ctx).store)


@mcp_server.tool()
async def preview_move_tool(
    ctx: Context,
    tab_ids: list[int],
    kind: str = "after",
    target_tab_id: int | None = None,
    index: int = 0,
    window_id: int | None = None,
) -> dict[str, Any]:
    """Preview the tree positions a drag would produce. Nothing is written.

    The dragged tabs keep their relative tree order. Tabs that cannot move
    (the drop target itself, or ancestors of it) are listed under "skipped".

    Args:
        tab_ids: Tabs being dragged.
        kind: "child" (first child of target), "before", "after" or "root".
        target_tab_id: Drop target (not needed for "root").
        index: Slot among root tabs when kind is "root".
        window_id: Target window (defaults to the first dragged tab's window).
    """
    return preview_move(
        _ctx(ctx).store,
        tab_ids=tab_ids,
        kind=kind,
        target_tab_id=target_tab_id,
        index=index,
        window_id=window_id,
    )


@mcp_server.tool()
async def replay_session_tool(
    ctx: Context,
    session_path: str,
    track_decisions: bool = False,
) -> dict[str, Any]:
    """Replay a recorded session JSON file and return the resulting tree.

    The replay runs against a scratch store; the served database is untouched.

    Args:
        session_path: Path to the session (or replay test case) JSON file.
        track_decisions: Include why each created tab got its parent.
    """
    return await replay_session(session_path, track_decisions=track_decisions)


def run_mcp_server() -> None:
    """Run the MCP server with stdio transport."""
    from tab_canopy.logging_config import configure_logging

    configure_logging(verbose=False)
    mcp_server.run(transport="stdio")

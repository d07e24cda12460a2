"""CLI for tab-canopy (inspect the tab tree, replay sessions, MCP server)."""

import asyncio
import json
import time
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from tab_canopy.config import DATABASE_FILENAME, resolve_data_directory
from tab_canopy.core.database.schema import get_metadata, set_metadata
from tab_canopy.core.database.store import TabStore
from tab_canopy.core.replay.runner import run_replay
from tab_canopy.core.replay.session import SessionFormatError, load_session
from tab_canopy.core.tree.planner import make_intent, plan_multi_move
from tab_canopy.core.tree.render import render_tree
from tab_canopy.logging_config import configure_logging

app = typer.Typer(help="Tab canopy: a tree view over the browser's flat tab strips.")

DataDirOption = Annotated[
    Path | None,
    typer.Option("--data-dir", "-d", help="Directory holding the tab database"),
]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


def _open_store(data_dir: Path | None) -> TabStore:
    """Open the tab database, raising if it doesn't exist."""
    db_path = (data_dir or resolve_data_directory()) / DATABASE_FILENAME
    if not db_path.exists():
        logger.error("Tab database not found: {}. Run 'replay --save' first.", db_path)
        raise typer.Exit(1)
    return TabStore.open(db_path)


def _echo_windows_tree(store: TabStore, *, window_id: int | None, expand: bool) -> None:
    window_ids = [window_id] if window_id is not None else sorted(
        {t.window_id for t in store.read_tabs()}
    )
    for w_id in window_ids:
        typer.echo(f"Window {w_id}:")
        typer.echo(render_tree(store.read_tabs(w_id), expand_collapsed=expand), nl=False)


@app.command()
def replay(
    session_path: Path = typer.Argument(..., help="Recorded session JSON file"),
    save: bool = typer.Option(False, "--save", help="Write the result to the tab database"),
    data_dir: DataDirOption = None,
    decisions: bool = typer.Option(False, "--decisions", help="Show tab creation decisions"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Replay a recorded session and print the resulting tree."""
    if not session_path.exists():
        logger.error("Session file not found: {}", session_path)
        raise typer.Exit(1)
    try:
        session = load_session(session_path)
    except SessionFormatError as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e

    if save:
        store = TabStore.open((data_dir or resolve_data_directory()) / DATABASE_FILENAME)
    else:
        store = TabStore.open(":memory:")
    try:
        result = asyncio.run(run_replay(session, store, track_decisions=decisions))
        if save:
            label = session.session_id or session_path.name
            set_metadata(store.conn, "last_replay_session", label)
            set_metadata(store.conn, "last_replay_at", str(int(time.time())))
        if output_json:
            data = {
                "applied": result.applied,
                "skipped": result.skipped,
                "errors": result.errors,
                "failures": result.failures,
                "tabs": [
                    {
                        "tab_id": t.tab_id,
                        "window_id": t.window_id,
                        "index": t.index,
                        "parent_tab_id": t.parent_tab_id,
                        "tree_order": t.tree_order,
                    }
                    for t in result.tabs
                ],
            }
            typer.echo(json.dumps(data, indent=2))
        else:
            typer.echo(
                f"Replayed {len(session.events)} events "
                f"({result.applied} applied, {result.skipped} skipped, {result.errors} errors)\n"
            )
            _echo_windows_tree(store, window_id=None, expand=True)
            if decisions:
                typer.echo("\nCreation decisions:")
                for d in result.decisions:
                    typer.echo(f"  tab {d.tab_id} @ {d.index}: {d.reason}")
            for failure in result.failures:
                typer.echo(f"FAIL {failure}")
    finally:
        store.close()

    if not result.ok:
        raise typer.Exit(1)


@app.command()
def tree(
    window: Annotated[
        int | None,
        typer.Option("--window", "-w", help="Only show this window"),
    ] = None,
    expand: bool = typer.Option(False, "--expand", "-e", help="Show children of collapsed tabs"),
    data_dir: DataDirOption = None,
) -> None:
    """Print the stored tab tree."""
    store = _open_store(data_dir)
    try:
        _echo_windows_tree(store, window_id=window, expand=expand)
    finally:
        store.close()


@app.command(name="plan-move")
def plan_move_cmd(
    tab_ids: list[int] = typer.Argument(..., help="Tabs to move"),
    kind: str = typer.Option("after", "--kind", "-k", help="child, before, after or root"),
    target: Annotated[
        int | None,
        typer.Option("--target", "-t", help="Drop target tab"),
    ] = None,
    index: int = typer.Option(0, "--index", "-i", help="Root slot for --kind root"),
    window: Annotated[
        int | None,
        typer.Option("--window", "-w", help="Target window (defaults to the first tab's)"),
    ] = None,
    data_dir: DataDirOption = None,
) -> None:
    """Preview the tree positions a drag would produce, without writing."""
    store = _open_store(data_dir)
    try:
        records = store.read_tabs()
        by_id = {t.tab_id: t for t in records}
        window_id = window
        if window_id is None and tab_ids[0] in by_id:
            window_id = by_id[tab_ids[0]].window_id
        view = [t for t in records if t.window_id == window_id or t.tab_id in tab_ids]
        try:
            intent = make_intent(kind, target_tab_id=target, index=index)
            updates = plan_multi_move(view, tab_ids, intent)
        except ValueError as e:
            typer.echo(f"Invalid move: {e}")
            raise typer.Exit(1) from e
        for tab_id, position in updates.items():
            typer.echo(
                f"  tab {tab_id}: parent={position.parent_tab_id} order={position.tree_order}"
            )
    finally:
        store.close()


@app.command()
def windows(data_dir: DataDirOption = None) -> None:
    """List stored windows."""
    store = _open_store(data_dir)
    try:
        tabs = store.read_tabs()
        rows = store.read_windows()
        last_replay = get_metadata(store.conn, "last_replay_session")
        if last_replay is not None:
            typer.echo(f"Last replay: {last_replay}")
        typer.echo(f"{len(rows)} windows:\n")
        for w in rows:
            count = sum(1 for t in tabs if t.window_id == w.window_id)
            focus = " (focused)" if w.focused else ""
            typer.echo(f"  {w.window_id}{focus} - {count} tabs  [{w.state}]")
    finally:
        store.close()


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    data_dir: DataDirOption = None,
) -> None:
    """Delete every stored tab and window record."""
    store = _open_store(data_dir)
    try:
        if not yes and not typer.confirm("Delete all stored tabs and windows?"):
            raise typer.Exit(1)
        store.clear()
        typer.echo("Store cleared.")
    finally:
        store.close()


@app.command()
def serve() -> None:
    """Start the MCP server (stdio transport)."""
    from tab_canopy.mcp.server import run_mcp_server

    run_mcp_server()

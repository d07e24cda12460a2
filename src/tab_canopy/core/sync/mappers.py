"""Map native browser snapshots onto stored records."""

from dataclasses import replace

from tab_canopy.models.tab import (
    DEFAULT_TREE_ORDER,
    NativeTab,
    NativeWindow,
    Tab,
    TreePosition,
    Window,
)


def window_to_record(window: NativeWindow) -> Window:
    return Window(
        window_id=window.window_id,
        focused=window.focused,
        state=window.state,
        incognito=window.incognito,
        window_type=window.window_type,
    )


def tab_to_record(
    tab: NativeTab,
    *,
    position: TreePosition | None = None,
    existing: Tab | None = None,
) -> Tab:
    """Build the record for a native tab.

    Tree fields come from ``position`` when given, otherwise from ``existing``
    (keeping the stored tree position), otherwise the tab becomes a root with
    the default key. Collapse state and title override always survive from
    ``existing``.
    """
    if position is None:
        if existing is not None:
            position = TreePosition(existing.parent_tab_id, existing.tree_order)
        else:
            position = TreePosition(None, DEFAULT_TREE_ORDER)
    return Tab(
        tab_id=tab.tab_id,
        window_id=tab.window_id,
        index=tab.index,
        parent_tab_id=position.parent_tab_id,
        tree_order=position.tree_order,
        is_collapsed=existing.is_collapsed if existing is not None else False,
        title=tab.title,
        title_override=existing.title_override if existing is not None else None,
        url=tab.url,
        active=tab.active,
        pinned=tab.pinned,
        status=tab.status,
    )


def with_position(tab: Tab, position: TreePosition) -> Tab:
    return replace(tab, parent_tab_id=position.parent_tab_id, tree_order=position.tree_order)

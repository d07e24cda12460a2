"""Translate native, index-based browser events into tree mutations.

The browser only knows a flat strip of tabs per window. These functions take
the window's tabs in browser order (with their stored tree fields) and decide
which tree positions the native change implies. They are pure: the reconciler
reads the store, calls in here and writes the result.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from tab_canopy.core.tree.model import (
    build,
    children_of,
    descendant_ids,
    flatten,
    siblings,
)
from tab_canopy.core.tree.order_key import generate_n_lenient
from tab_canopy.models.tab import Tab, TreePosition


@dataclass(frozen=True)
class CreateInference:
    """Tree placement decided for a newly created tab."""

    position: TreePosition
    reason: str
    needs_reposition: bool = False


@dataclass(frozen=True)
class MoveInference:
    """Tree updates implied by a native move.

    ``flattened`` lists descendants of the moved tab that ended up before it
    in the strip and were lifted to the moved tab's new parent.
    """

    updates: dict[int, TreePosition] = field(default_factory=dict)
    flattened: tuple[int, ...] = ()


@dataclass(frozen=True)
class BrowserMove:
    """One native move needed to project the tree onto the strip."""

    tab_id: int
    index: int


def _in_subtree(by_id: dict[int, Tab], tab: Tab, root_id: int) -> bool:
    """Return True if ``tab`` is ``root_id`` or one of its descendants."""
    current: Tab | None = tab
    seen: set[int] = set()
    while current is not None and current.tab_id not in seen:
        if current.tab_id == root_id:
            return True
        seen.add(current.tab_id)
        current = by_id.get(current.parent_tab_id) if current.parent_tab_id is not None else None
    return False


def _place_by_browser_order(
    order: Sequence[Tab],
    parent_tab_id: int | None,
    placing: Sequence[int],
    exclude: Iterable[int] = (),
) -> dict[int, TreePosition]:
    """Assign keys under ``parent_tab_id`` following browser order.

    Tabs in ``placing`` are slotted between the parent's other children
    according to where they sit in ``order``; each run of consecutive placed
    tabs gets keys between the keys of its neighbouring fixed siblings.
    """
    placing_set = set(placing)
    excluded = set(exclude)
    level = [
        t
        for t in order
        if t.tab_id in placing_set
        or (t.parent_tab_id == parent_tab_id and t.tab_id not in excluded)
    ]
    updates: dict[int, TreePosition] = {}
    run: list[int] = []
    before: str | None = None

    def flush(after: str | None) -> None:
        keys = generate_n_lenient(before, after, len(run))
        for tab_id, key in zip(run, keys, strict=True):
            updates[tab_id] = TreePosition(parent_tab_id=parent_tab_id, tree_order=key)
        run.clear()

    for tab in level:
        if tab.tab_id in placing_set:
            run.append(tab.tab_id)
            continue
        if run:
            flush(tab.tree_order)
        before = tab.tree_order
    if run:
        flush(None)
    return updates


def infer_tree_from_browser_move(
    tabs: Sequence[Tab],
    tab_id: int,
    to_index: int,
) -> MoveInference:
    """Infer tree changes after the browser moved ``tab_id`` to ``to_index``.

    The move is modelled as remove-then-reinsert at the clamped index. The tab
    joins the parent of the tab now after it, except that a tab left at the end
    of its former parent's subtree stays under that parent. Descendants that
    now sit before the moved tab are lifted out of its subtree (flattened).

    Args:
        tabs: The window's tabs in browser order, with stored tree fields.
            The moved tab may appear at its old or its new index.
        tab_id: The moved tab.
        to_index: The native index reported by the browser.

    Returns:
        Updates for the moved tab and every flattened descendant.
    """
    moved = next((t for t in tabs if t.tab_id == tab_id), None)
    if moved is None:
        return MoveInference()

    others = [t for t in tabs if t.tab_id != tab_id]
    new_index = max(0, min(to_index, len(others)))
    order = [*others[:new_index], moved, *others[new_index:]]
    by_id = {t.tab_id: t for t in order}

    descendants = set(descendant_ids(order, tab_id))
    before_moved = [t for t in order[:new_index] if t.tab_id in descendants]
    before_ids = {t.tab_id for t in before_moved}
    # A lifted descendant whose parent is lifted too stays under that parent
    flattened = [t.tab_id for t in before_moved if t.parent_tab_id not in before_ids]
    lifted = set(flattened)
    view_by_id = {
        t.tab_id: replace(t, parent_tab_id=None) if t.tab_id in lifted else t for t in order
    }

    prev_tab = order[new_index - 1] if new_index > 0 else None
    next_tab = order[new_index + 1] if new_index + 1 < len(order) else None
    former = moved.parent_tab_id if moved.parent_tab_id in by_id else None
    prev_in_former = (
        former is not None and prev_tab is not None and _in_subtree(by_id, prev_tab, former)
    )
    next_in_former = (
        former is not None and next_tab is not None and _in_subtree(by_id, next_tab, former)
    )
    fallback = former if prev_in_former else None

    new_parent = next_tab.parent_tab_id if next_tab is not None else None
    if new_parent not in by_id:
        new_parent = None
    if prev_in_former and not next_in_former:
        new_parent = former
    elif new_parent is not None and _in_subtree(view_by_id, view_by_id[new_parent], tab_id):
        # The tab after it is still one of its own children
        new_parent = fallback

    if new_parent in lifted:
        lift_parent = fallback
    elif new_parent is not None and any(
        _in_subtree(by_id, by_id[new_parent], f) for f in flattened
    ):
        # Lifted tabs cannot go under their own descendant; they take the moved tab's old slot
        lift_parent = former
    else:
        lift_parent = new_parent
    updates = _place_moved(order, tab_id, flattened, new_parent, lift_parent)
    if _creates_cycle(by_id, updates):
        updates = _place_moved(order, tab_id, flattened, fallback, fallback)
    return MoveInference(updates=updates, flattened=tuple(flattened))


def _place_moved(
    order: Sequence[Tab],
    tab_id: int,
    flattened: Sequence[int],
    new_parent: int | None,
    lift_parent: int | None,
) -> dict[int, TreePosition]:
    if lift_parent == new_parent:
        return _place_by_browser_order(order, new_parent, [tab_id, *flattened])
    updates = _place_by_browser_order(order, new_parent, [tab_id], exclude=flattened)
    updates.update(_place_by_browser_order(order, lift_parent, flattened, exclude={tab_id}))
    return updates


def _creates_cycle(by_id: dict[int, Tab], updates: dict[int, TreePosition]) -> bool:
    """Return True if applying ``updates`` would make a tab its own ancestor."""
    parents = {tab_id: t.parent_tab_id for tab_id, t in by_id.items()}
    parents.update({tab_id: p.parent_tab_id for tab_id, p in updates.items()})
    for tab_id in updates:
        seen: set[int] = set()
        current: int | None = tab_id
        while current is not None:
            if current in seen:
                return True
            seen.add(current)
            current = parents.get(current)
    return False


def infer_tree_from_browser_create(
    tabs: Sequence[Tab],
    tab_id: int,
    index: int,
    opener_tab_id: int | None = None,
) -> CreateInference:
    """Infer the tree position of a tab the browser created at ``index``.

    With an opener in the window the tab becomes the opener's child: first
    child when it sits right after the opener, otherwise placed among the
    opener's children by native index. A tab landing outside the opener's
    subtree becomes the last child and must be moved next to its siblings.
    Without an opener, a tab inserted inside a subtree joins it and any other
    tab becomes a root placed among roots by native index.

    Args:
        tabs: The window's existing tabs in browser order, without the new tab.
        tab_id: The new tab.
        index: Its native index.
        opener_tab_id: The tab it was opened from, if any.
    """
    existing = [t for t in tabs if t.tab_id != tab_id]
    by_id = {t.tab_id: t for t in existing}
    new_index = max(0, min(index, len(existing)))
    placeholder = Tab(tab_id=tab_id, window_id=-1, index=new_index)
    order = [*existing[:new_index], placeholder, *existing[new_index:]]
    prev_tab = order[new_index - 1] if new_index > 0 else None
    next_tab = order[new_index + 1] if new_index + 1 < len(order) else None

    opener = by_id.get(opener_tab_id) if opener_tab_id is not None else None
    if opener is not None:
        children = children_of(existing, opener.tab_id)
        if prev_tab is not None and prev_tab.tab_id == opener.tab_id:
            first = children[0].tree_order if children else None
            (key,) = generate_n_lenient(None, first, 1)
            return CreateInference(
                position=TreePosition(opener.tab_id, key),
                reason=f"Opener-based: first child of opener tab {opener.tab_id}",
            )
        if prev_tab is not None and _in_subtree(by_id, prev_tab, opener.tab_id):
            updates = _place_by_browser_order(order, opener.tab_id, [tab_id])
            return CreateInference(
                position=updates[tab_id],
                reason=f"Opener-based: child of opener tab {opener.tab_id}",
            )
        last = children[-1].tree_order if children else None
        (key,) = generate_n_lenient(last, None, 1)
        return CreateInference(
            position=TreePosition(opener.tab_id, key),
            reason=f"Opener-based: made last child of opener tab {opener.tab_id}",
            needs_reposition=True,
        )

    parent = next_tab.parent_tab_id if next_tab is not None else None
    if parent is not None and (
        parent not in by_id or prev_tab is None or not _in_subtree(by_id, prev_tab, parent)
    ):
        parent = None
    updates = _place_by_browser_order(order, parent, [tab_id])
    if parent is not None:
        reason = f"Position-based: inserted within tree of parent {parent}"
    else:
        reason = "Position-based: inserted at root level"
    return CreateInference(position=updates[tab_id], reason=reason)


def promote_on_remove(records: Iterable[Tab], tab_id: int) -> dict[int, TreePosition]:
    """Promote the direct children of a removed tab into its former slot.

    The children become children of the removed tab's parent, keyed between
    the removed tab's former neighbours, keeping their relative order.
    """
    records = list(records)
    removed = next((t for t in records if t.tab_id == tab_id), None)
    if removed is None:
        return {}
    children = children_of(records, tab_id)
    if not children:
        return {}

    group = siblings(records, removed)
    i = next(n for n, t in enumerate(group) if t.tab_id == tab_id)
    before = group[i - 1].tree_order if i > 0 else None
    after = group[i + 1].tree_order if i + 1 < len(group) else None
    keys = generate_n_lenient(before, after, len(children))
    return {
        child.tab_id: TreePosition(parent_tab_id=removed.parent_tab_id, tree_order=key)
        for child, key in zip(children, keys, strict=True)
    }


def flatten_tree_to_browser_order(records: Iterable[Tab]) -> list[int]:
    """Return tab ids in the strip order the tree implies (every subtree contiguous)."""
    return [node.tab.tab_id for node in flatten(build(records), expand_collapsed=True)]


def plan_browser_moves(
    records: Iterable[Tab],
    tab_ids: Iterable[int],
    strip: Sequence[int] | None = None,
) -> list[BrowserMove]:
    """Plan sequential native moves for ``tab_ids`` and all their descendants.

    Each moving tab, in flattened tree order, is placed right after the tab
    that precedes it in the tree; the other tabs are never moved. Indices are
    final positions valid at the time each move is applied, and tabs already
    in place are skipped.

    Args:
        records: The window's records with their tree fields.
        tab_ids: Roots of the subtrees to project.
        strip: The window's current native order. Defaults to the records'
            ``index`` order. Moving tabs missing from it (arriving from
            another window) are inserted.
    """
    records = list(records)
    moving: set[int] = set()
    for tab_id in tab_ids:
        moving.add(tab_id)
        moving.update(descendant_ids(records, tab_id))
    expected = flatten_tree_to_browser_order(records)
    if strip is None:
        strip = [t.tab_id for t in sorted(records, key=lambda t: t.index)]
    current = list(strip)

    moves: list[BrowserMove] = []
    for i, tab_id in enumerate(expected):
        if tab_id not in moving:
            continue
        pos = current.index(tab_id) if tab_id in current else None
        prev_pos = current.index(expected[i - 1]) if i > 0 and expected[i - 1] in current else -1
        if pos is not None and pos == prev_pos + 1:
            continue
        # Removing a tab that sits before its predecessor shifts the predecessor left
        index = prev_pos if pos is not None and pos < prev_pos else prev_pos + 1
        if pos is not None:
            current.pop(pos)
        current.insert(index, tab_id)
        moves.append(BrowserMove(tab_id=tab_id, index=index))
    return moves

"""Resolve move intents to tree positions."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from loguru import logger

from tab_canopy.core.tree.model import (
    children_of,
    is_ancestor,
    sort_by_tree_order,
    tree_ordered_ids,
)
from tab_canopy.core.tree.order_key import generate_n_lenient
from tab_canopy.models.intents import (
    DropAfter,
    DropBefore,
    DropChild,
    MoveIntent,
    RootInsert,
    SiblingDrop,
)
from tab_canopy.models.tab import Tab, TreePosition


class InvalidMoveError(ValueError):
    """A move that would create a cycle or references an unknown target."""


@dataclass(frozen=True)
class _Slot:
    """A gap between two sibling keys under one parent."""

    parent_tab_id: int | None
    before: str | None
    after: str | None


def resolve_intent(records: Iterable[Tab], intent: MoveIntent) -> MoveIntent:
    """Turn a sibling drop into the equivalent drop-after intent.

    With ``ancestor_id`` of None the tab lands after the target's root
    ancestor; otherwise after the child of ``ancestor_id`` on the path down
    to the target (or after the target if it is the ancestor itself).
    """
    if not isinstance(intent, SiblingDrop):
        return intent

    by_id = {t.tab_id: t for t in records}
    target = by_id.get(intent.target_tab_id)
    if target is None:
        msg = f"Unknown drop target {intent.target_tab_id}"
        raise InvalidMoveError(msg)

    current = target
    seen: set[int] = set()
    while current.tab_id not in seen:
        seen.add(current.tab_id)
        parent = by_id.get(current.parent_tab_id) if current.parent_tab_id is not None else None
        if intent.ancestor_id is None and parent is None:
            return DropAfter(current.tab_id)
        if intent.ancestor_id is not None and current.parent_tab_id == intent.ancestor_id:
            return DropAfter(current.tab_id)
        if parent is None:
            break
        current = parent
    return DropAfter(intent.target_tab_id)


def _check_parent(records: list[Tab], moving_ids: Iterable[int], parent_id: int | None) -> None:
    if parent_id is None:
        return
    for moving_id in moving_ids:
        if parent_id == moving_id or is_ancestor(records, moving_id, parent_id):
            msg = f"Cannot move tab {moving_id} under itself or its descendant {parent_id}"
            raise InvalidMoveError(msg)


def _level(records: list[Tab], by_id: dict[int, Tab], parent_id: int | None) -> list[Tab]:
    """Children of ``parent_id`` ordered by key; records with a missing parent count as roots."""
    return sort_by_tree_order(
        t for t in records if (t.parent_tab_id if t.parent_tab_id in by_id else None) == parent_id
    )


def _resolve_slot(records: list[Tab], moving_ids: set[int], intent: MoveIntent) -> _Slot:
    by_id = {t.tab_id: t for t in records}
    intent = resolve_intent(records, intent)

    if isinstance(intent, DropChild):
        if intent.parent_tab_id not in by_id:
            msg = f"Unknown drop target {intent.parent_tab_id}"
            raise InvalidMoveError(msg)
        _check_parent(records, moving_ids, intent.parent_tab_id)
        children = [
            c for c in children_of(records, intent.parent_tab_id) if c.tab_id not in moving_ids
        ]
        first = children[0].tree_order if children else None
        return _Slot(intent.parent_tab_id, None, first)

    if isinstance(intent, (DropBefore, DropAfter)):
        target = by_id.get(intent.target_tab_id)
        if target is None:
            msg = f"Unknown drop target {intent.target_tab_id}"
            raise InvalidMoveError(msg)
        if target.tab_id in moving_ids:
            msg = f"Cannot drop tab {target.tab_id} relative to itself"
            raise InvalidMoveError(msg)
        parent_id = target.parent_tab_id if target.parent_tab_id in by_id else None
        _check_parent(records, moving_ids, parent_id)
        group = [t for t in _level(records, by_id, parent_id) if t.tab_id not in moving_ids]
        i = next(n for n, t in enumerate(group) if t.tab_id == target.tab_id)
        if isinstance(intent, DropBefore):
            before = group[i - 1].tree_order if i > 0 else None
            return _Slot(parent_id, before, target.tree_order)
        after = group[i + 1].tree_order if i + 1 < len(group) else None
        return _Slot(parent_id, target.tree_order, after)

    if isinstance(intent, RootInsert):
        roots = [t for t in _level(records, by_id, None) if t.tab_id not in moving_ids]
        index = max(0, min(intent.index, len(roots)))
        before = roots[index - 1].tree_order if index > 0 else None
        after = roots[index].tree_order if index < len(roots) else None
        return _Slot(None, before, after)

    msg = f"Unsupported move intent: {intent!r}"
    raise TypeError(msg)


def plan_move(records: Iterable[Tab], moving_tab_id: int, intent: MoveIntent) -> TreePosition:
    """Resolve ``intent`` for a single tab to its new parent and key.

    Raises:
        InvalidMoveError: if the result would make the tab its own ancestor,
            or the intent references an unknown tab.
    """
    records = list(records)
    slot = _resolve_slot(records, {moving_tab_id}, intent)
    (key,) = generate_n_lenient(slot.before, slot.after, 1)
    return TreePosition(parent_tab_id=slot.parent_tab_id, tree_order=key)


def plan_multi_move(
    records: Iterable[Tab],
    tab_ids: Sequence[int],
    intent: MoveIntent,
) -> dict[int, TreePosition]:
    """Resolve ``intent`` for a selection of tabs moved together.

    The selection is processed in ascending tree order rather than selection
    order, so the moved tabs keep their prior relative order. Tabs that cannot
    take part (the drop target itself, or tabs the target descends from) are
    left out.

    Returns:
        Mapping of tab id to new position, in tree order.

    Raises:
        InvalidMoveError: if no tab of the selection can be moved.
    """
    records = list(records)
    selected = set(tab_ids)
    ordered = [tab_id for tab_id in tree_ordered_ids(records) if tab_id in selected]

    valid: list[int] = []
    for tab_id in ordered:
        try:
            _resolve_slot(records, {tab_id}, intent)
        except InvalidMoveError as e:
            logger.warning("Skipping tab {} in move: {}", tab_id, e)
            continue
        valid.append(tab_id)
    if not valid:
        msg = f"No movable tabs in selection {list(tab_ids)}"
        raise InvalidMoveError(msg)

    slot = _resolve_slot(records, set(valid), intent)
    keys = generate_n_lenient(slot.before, slot.after, len(valid))
    return {
        tab_id: TreePosition(parent_tab_id=slot.parent_tab_id, tree_order=key)
        for tab_id, key in zip(valid, keys, strict=True)
    }


def make_intent(kind: str, *, target_tab_id: int | None = None, index: int = 0) -> MoveIntent:
    """Build a move intent from a drop kind: child, before, after or root.

    Raises:
        ValueError: for an unknown kind or a missing target.
    """
    if kind == "root":
        return RootInsert(index)
    if target_tab_id is None:
        msg = f"Drop kind {kind!r} needs a target tab"
        raise ValueError(msg)
    if kind == "child":
        return DropChild(target_tab_id)
    if kind == "before":
        return DropBefore(target_tab_id)
    if kind == "after":
        return DropAfter(target_tab_id)
    msg = f"Unknown drop kind {kind!r}; expected child, before, after or root"
    raise ValueError(msg)

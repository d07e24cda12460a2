"""Tests for inferring tree changes from native browser events."""

import random
from collections import Counter
from dataclasses import replace

from tab_canopy.core.sync.inference import (
    BrowserMove,
    flatten_tree_to_browser_order,
    infer_tree_from_browser_create,
    infer_tree_from_browser_move,
    plan_browser_moves,
    promote_on_remove,
)
from tab_canopy.core.tree.model import is_ancestor
from tab_canopy.core.tree.order_key import generate_n
from tab_canopy.models.tab import Tab, TreePosition
from tests.unit.fakes import make_tab, strip_of

# --- Native moves ---


def test_move_inside_parent_subtree_keeps_parent() -> None:
    # A [A1, A2], B; A2 dragged in front of A1
    tabs = strip_of((1, None, "a0"), (2, 1, "a0"), (3, 1, "a1"), (4, None, "a1"))
    inference = infer_tree_from_browser_move(tabs, 3, 1)
    position = inference.updates[3]
    assert position.parent_tab_id == 1
    assert position.tree_order < "a0"
    assert inference.flattened == ()


def test_move_past_a_boundary_breaks_out_to_root() -> None:
    # A [A1], B; A1 dragged behind B
    tabs = strip_of((1, None, "a0"), (2, 1, "a0"), (3, None, "a1"))
    inference = infer_tree_from_browser_move(tabs, 2, 2)
    position = inference.updates[2]
    assert position.parent_tab_id is None
    assert position.tree_order > "a1"


def test_move_to_end_of_former_subtree_stays_under_parent() -> None:
    # A [A1, A2], B; A1 dragged between A2 and B
    tabs = strip_of((1, None, "a0"), (2, 1, "a0"), (3, 1, "a1"), (4, None, "a1"))
    inference = infer_tree_from_browser_move(tabs, 2, 2)
    position = inference.updates[2]
    assert position.parent_tab_id == 1
    assert position.tree_order > "a1"


def test_moving_a_parent_past_its_children_flattens_them() -> None:
    # P [C1, C2], X; P dragged to the end
    tabs = strip_of((1, None, "a0"), (2, 1, "a0"), (3, 1, "a1"), (4, None, "a1"))
    inference = infer_tree_from_browser_move(tabs, 1, 3)
    assert inference.flattened == (2, 3)
    updates = inference.updates
    assert {tab_id: p.parent_tab_id for tab_id, p in updates.items()} == {
        1: None,
        2: None,
        3: None,
    }
    # C1 < C2 < X < P among roots
    assert updates[2].tree_order < updates[3].tree_order < "a1" < updates[1].tree_order


def test_moving_a_parent_between_its_children_lifts_only_those_before_it() -> None:
    # Q, P [C1, C2]; P dragged between C1 and C2
    tabs = strip_of((1, None, "a0"), (2, None, "a1"), (3, 2, "a0"), (4, 2, "a1"))
    inference = infer_tree_from_browser_move(tabs, 2, 2)
    assert inference.flattened == (3,)
    updates = inference.updates
    assert updates[3].parent_tab_id is None
    assert updates[2].parent_tab_id is None
    assert "a0" < updates[3].tree_order < updates[2].tree_order
    # C2 stays under P
    assert 4 not in updates


def test_moving_a_parent_below_a_child_with_children_nests_it_there() -> None:
    # P [C1 [C1a]]; P dragged between C1 and C1a
    tabs = strip_of((1, None, "a0"), (2, 1, "a0"), (3, 2, "a0"))
    inference = infer_tree_from_browser_move(tabs, 1, 1)
    assert inference.flattened == (2,)
    assert inference.updates[2].parent_tab_id is None
    assert inference.updates[1].parent_tab_id == 2
    # P lands in front of C1a
    assert inference.updates[1].tree_order < "a0"


def test_moving_a_parent_into_a_lifted_subtree_does_not_loop() -> None:
    # 1 [2 [3 [4]]]; 1 dragged between 3 and 4
    tabs = strip_of((1, None, "a0"), (2, 1, "a0"), (3, 2, "a0"), (4, 3, "a0"))
    inference = infer_tree_from_browser_move(tabs, 1, 2)
    assert inference.flattened == (2,)
    after = _applied(tabs, inference.updates)
    assert {t.tab_id: t.parent_tab_id for t in after} == {1: 3, 2: None, 3: 2, 4: 3}
    assert inference.updates[1].tree_order < "a0"


def _applied(tabs: list[Tab], updates: dict[int, TreePosition]) -> list[Tab]:
    result: list[Tab] = []
    for tab in tabs:
        position = updates.get(tab.tab_id)
        if position is not None:
            tab = replace(
                tab, parent_tab_id=position.parent_tab_id, tree_order=position.tree_order
            )
        result.append(tab)
    return result


def _random_strip(rng: random.Random) -> list[Tab]:
    count = rng.randint(2, 8)
    parents = {i: rng.choice([None, *range(1, i)]) for i in range(1, count + 1)}
    groups: dict[int | None, list[int]] = {}
    for tab_id, parent in parents.items():
        groups.setdefault(parent, []).append(tab_id)
    orders: dict[int, str] = {}
    for ids in groups.values():
        orders.update(zip(ids, generate_n(None, None, len(ids)), strict=True))
    records = {i: make_tab(i, parents[i], orders[i]) for i in parents}
    return [
        replace(records[tab_id], index=index)
        for index, tab_id in enumerate(flatten_tree_to_browser_order(records.values()))
    ]


def test_random_native_moves_keep_tree_valid() -> None:
    rng = random.Random(20261018)
    for _ in range(500):
        tabs = _random_strip(rng)
        moved = rng.choice(tabs).tab_id
        to_index = rng.randrange(len(tabs))
        after = _applied(tabs, infer_tree_from_browser_move(tabs, moved, to_index).updates)

        ids = {t.tab_id for t in after}
        case = ([(t.tab_id, t.parent_tab_id) for t in tabs], moved, to_index)
        assert not any(is_ancestor(after, t.tab_id, t.tab_id) for t in after), case
        assert all(t.parent_tab_id is None or t.parent_tab_id in ids for t in after), case
        keys = Counter((t.parent_tab_id, t.tree_order) for t in after)
        assert max(keys.values()) == 1, case


def test_move_of_unknown_tab_changes_nothing() -> None:
    tabs = strip_of((1, None, "a0"))
    inference = infer_tree_from_browser_move(tabs, 99, 0)
    assert inference.updates == {}


# --- Native creation ---


def _created_window() -> list[Tab]:
    # A [A1], B
    return strip_of((1, None, "a0"), (2, 1, "a0"), (3, None, "a1"))


def test_create_right_after_opener_becomes_first_child() -> None:
    inference = infer_tree_from_browser_create(_created_window(), 10, 1, opener_tab_id=1)
    assert inference.position.parent_tab_id == 1
    assert inference.position.tree_order < "a0"
    assert inference.reason.startswith("Opener-based: first child")
    assert not inference.needs_reposition


def test_create_inside_opener_subtree_follows_browser_order() -> None:
    inference = infer_tree_from_browser_create(_created_window(), 10, 2, opener_tab_id=1)
    assert inference.position.parent_tab_id == 1
    assert inference.position.tree_order > "a0"
    assert not inference.needs_reposition


def test_create_outside_opener_subtree_needs_reposition() -> None:
    inference = infer_tree_from_browser_create(_created_window(), 10, 3, opener_tab_id=1)
    assert inference.position.parent_tab_id == 1
    assert inference.position.tree_order > "a0"
    assert inference.needs_reposition


def test_create_without_opener_at_end_is_root() -> None:
    inference = infer_tree_from_browser_create(_created_window(), 10, 3)
    assert inference.position.parent_tab_id is None
    assert inference.position.tree_order > "a1"
    assert inference.reason == "Position-based: inserted at root level"


def test_create_without_opener_inside_subtree_joins_it() -> None:
    inference = infer_tree_from_browser_create(_created_window(), 10, 1)
    assert inference.position.parent_tab_id == 1
    assert inference.position.tree_order < "a0"


def test_create_without_opener_at_front_is_first_root() -> None:
    inference = infer_tree_from_browser_create(_created_window(), 10, 0)
    assert inference.position.parent_tab_id is None
    assert inference.position.tree_order < "a0"


def test_create_with_opener_in_another_window_falls_back_to_position() -> None:
    inference = infer_tree_from_browser_create(_created_window(), 10, 3, opener_tab_id=77)
    assert inference.position.parent_tab_id is None
    assert inference.reason.startswith("Position-based")


# --- Removal ---


def test_promote_on_remove_moves_children_into_removed_slot() -> None:
    records = strip_of(
        (1, None, "a0"),
        (2, None, "a1"),
        (3, 2, "a0"),
        (4, 2, "a1"),
        (5, None, "a2"),
    )
    updates = promote_on_remove(records, 2)
    assert set(updates) == {3, 4}
    assert updates[3].parent_tab_id is None
    assert updates[4].parent_tab_id is None
    assert "a0" < updates[3].tree_order < updates[4].tree_order < "a2"


def test_promote_on_remove_to_grandparent() -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"), (3, 2, "a0"))
    updates = promote_on_remove(records, 2)
    assert updates[3].parent_tab_id == 1


def test_promote_on_remove_of_leaf_or_unknown_tab_is_empty() -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"))
    assert promote_on_remove(records, 2) == {}
    assert promote_on_remove(records, 99) == {}


# --- Projection ---


def test_flatten_tree_to_browser_order_keeps_subtrees_contiguous() -> None:
    records = strip_of((1, None, "a1"), (2, None, "a0"), (3, 1, "a0"))
    assert flatten_tree_to_browser_order(records) == [2, 1, 3]


def _apply(strip: list[int], moves: list[BrowserMove]) -> list[int]:
    strip = list(strip)
    for move in moves:
        if move.tab_id in strip:
            strip.remove(move.tab_id)
        strip.insert(move.index, move.tab_id)
    return strip


def test_plan_browser_moves_skips_tabs_already_in_place() -> None:
    records = strip_of((1, None, "a1"), (2, None, "a0"), (3, 1, "a0"))
    # Moving the parent behind tab 2 is enough, its child already follows it
    assert plan_browser_moves(records, [1]) == [BrowserMove(1, 1)]


def test_plan_browser_moves_carries_subtree_forward() -> None:
    # a, b, c [c1, c2], d with c re-keyed after d
    records = strip_of(
        (1, None, "a0"),
        (2, None, "a1"),
        (3, None, "a4"),
        (4, 3, "a0"),
        (5, 3, "a1"),
        (6, None, "a3"),
    )
    moves = plan_browser_moves(records, [3])
    assert [m.tab_id for m in moves] == [3, 4, 5]
    assert _apply([1, 2, 3, 4, 5, 6], moves) == [1, 2, 6, 3, 4, 5]


def test_plan_browser_moves_inserts_tab_from_another_window() -> None:
    records = strip_of((3, None, "a0"), (2, None, "a1"), window_id=2)
    moves = plan_browser_moves(records, [2], strip=[3])
    assert moves == [BrowserMove(2, 1)]


def test_plan_browser_moves_with_nothing_out_of_place() -> None:
    records = strip_of((1, None, "a0"), (2, 1, "a0"))
    assert plan_browser_moves(records, [1]) == []

"""Tree construction and traversal over flat tab records."""

from collections import deque
from collections.abc import Iterable
from functools import cmp_to_key

from tab_canopy.core.tree.order_key import compare
from tab_canopy.models.tab import FlatNode, Tab, TreeNode

_by_tree_order = cmp_to_key(lambda a, b: compare(a.tree_order, b.tree_order))


def sort_by_tree_order(records: Iterable[Tab]) -> list[Tab]:
    """Sort records by key; ties keep their input order."""
    return sorted(records, key=_by_tree_order)


def _children_map(records: Iterable[Tab]) -> dict[int | None, list[Tab]]:
    """Group records by parent, treating unknown parents as root."""
    records = list(records)
    known = {t.tab_id for t in records}
    groups: dict[int | None, list[Tab]] = {}
    for tab in records:
        parent = tab.parent_tab_id if tab.parent_tab_id in known else None
        groups.setdefault(parent, []).append(tab)
    for group in groups.values():
        group.sort(key=_by_tree_order)
    return groups


def build(records: Iterable[Tab]) -> list[TreeNode]:
    """Build the ordered forest of tree nodes from flat records.

    Records whose parent is not among ``records`` become roots. Records caught
    in a parent cycle are unreachable from any root and are attached as roots
    at the point where the cycle is cut, so every record appears exactly once.
    """
    records = list(records)
    groups = _children_map(records)
    placed: set[int] = set()

    def build_node(tab: Tab, depth: int, ancestor_ids: tuple[int, ...]) -> TreeNode:
        placed.add(tab.tab_id)
        child_ancestors = (*ancestor_ids, tab.tab_id)
        children = tuple(
            build_node(child, depth + 1, child_ancestors)
            for child in groups.get(tab.tab_id, [])
            if child.tab_id not in placed
        )
        return TreeNode(tab=tab, children=children, depth=depth, ancestor_ids=ancestor_ids)

    roots = [build_node(tab, 0, ()) for tab in groups.get(None, [])]

    for tab in sort_by_tree_order(records):
        if tab.tab_id not in placed:
            roots.append(build_node(tab, 0, ()))
    return roots


def flatten(
    nodes: Iterable[TreeNode],
    *,
    expand_collapsed: bool = False,
    parent_indent_guides: tuple[bool, ...] = (),
) -> list[FlatNode]:
    """Flatten tree nodes in depth-first pre-order.

    Children of a collapsed node are left out entirely unless
    ``expand_collapsed`` is set (the browser strip always holds every tab).
    """
    nodes = list(nodes)
    result: list[FlatNode] = []
    for i, node in enumerate(nodes):
        is_last = i == len(nodes) - 1
        has_children = bool(node.children)
        result.append(
            FlatNode(
                tab=node.tab,
                depth=node.depth,
                has_children=has_children,
                is_last_child=is_last,
                indent_guides=parent_indent_guides,
                ancestor_ids=node.ancestor_ids,
            )
        )
        if has_children and (expand_collapsed or not node.tab.is_collapsed):
            result.extend(
                flatten(
                    node.children,
                    expand_collapsed=expand_collapsed,
                    parent_indent_guides=(*parent_indent_guides, not is_last),
                )
            )
    return result


def tree_ordered_ids(records: Iterable[Tab]) -> list[int]:
    """Return every tab id in tree pre-order, ignoring collapse state."""
    return [n.tab.tab_id for n in flatten(build(records), expand_collapsed=True)]


def descendant_ids(records: Iterable[Tab], tab_id: int) -> list[int]:
    """Return all ids in the subtree below ``tab_id``, breadth-first.

    The tab itself is excluded. Unknown ids and leaves yield an empty list.
    """
    groups = _children_map(records)
    result: list[int] = []
    seen = {tab_id}
    queue = deque([tab_id])
    while queue:
        current = queue.popleft()
        for child in groups.get(current, []):
            if child.tab_id in seen:
                continue
            seen.add(child.tab_id)
            result.append(child.tab_id)
            queue.append(child.tab_id)
    return result


def is_ancestor(records: Iterable[Tab], candidate_ancestor: int, tab_id: int) -> bool:
    """Return True if ``candidate_ancestor`` is in the ancestor chain of ``tab_id``.

    A tab is never its own ancestor, and an unknown ``tab_id`` has none.
    """
    by_id = {t.tab_id: t for t in records}
    current = by_id.get(tab_id)
    seen: set[int] = set()
    while current is not None and current.parent_tab_id is not None:
        if current.parent_tab_id == candidate_ancestor:
            return True
        if current.tab_id in seen:
            return False
        seen.add(current.tab_id)
        current = by_id.get(current.parent_tab_id)
    return False


def siblings(records: Iterable[Tab], record: Tab) -> list[Tab]:
    """Return all records sharing ``record``'s parent, ordered by key."""
    return sort_by_tree_order(t for t in records if t.parent_tab_id == record.parent_tab_id)


def children_of(records: Iterable[Tab], tab_id: int | None) -> list[Tab]:
    """Return the direct children of ``tab_id`` (roots for None), ordered by key."""
    return sort_by_tree_order(t for t in records if t.parent_tab_id == tab_id)

"""Render a tab tree as indented plain text."""

import io
from collections.abc import Iterable

from tab_canopy.core.tree.model import build, descendant_ids, flatten
from tab_canopy.models.tab import Tab


def render_tree(
    records: Iterable[Tab],
    *,
    expand_collapsed: bool = False,
    show_ids: bool = True,
) -> str:
    """Render records as a box-drawing tree, one tab per line.

    Args:
        records: Tab records of one window.
        expand_collapsed: Also show the children of collapsed tabs.
        show_ids: Append each tab's id.

    Returns:
        The rendered tree, or an empty string for no records.
    """
    records = list(records)
    out = io.StringIO()
    for node in flatten(build(records), expand_collapsed=expand_collapsed):
        tab = node.tab
        prefix = ""
        if node.depth > 0:
            # The root level draws no guide
            prefix = "".join("│   " if guide else "    " for guide in node.indent_guides[1:])
            prefix += "└── " if node.is_last_child else "├── "
        line = tab.display_title
        if tab.active:
            line = f"* {line}"
        if node.has_children and tab.is_collapsed:
            hidden = len(descendant_ids(records, tab.tab_id))
            line += f" [+{hidden}]"
        if show_ids:
            line += f"  (id={tab.tab_id})"
        out.write(f"{prefix}{line}\n")
    return out.getvalue()

"""Domain models for tabs, windows and derived tree nodes."""

from dataclasses import dataclass

DEFAULT_TREE_ORDER = "a0"


@dataclass(frozen=True)
class Tab:
    """A stored browser tab together with its tree position."""

    tab_id: int
    window_id: int
    index: int
    parent_tab_id: int | None = None
    tree_order: str = DEFAULT_TREE_ORDER
    is_collapsed: bool = False
    title: str | None = None
    title_override: str | None = None
    url: str | None = None
    active: bool = False
    pinned: bool = False
    status: str = "complete"

    @property
    def display_title(self) -> str:
        return self.title_override or self.title or self.url or f"Tab {self.tab_id}"


@dataclass(frozen=True)
class Window:
    """A stored browser window."""

    window_id: int
    focused: bool = False
    state: str = "normal"
    incognito: bool = False
    window_type: str = "normal"


@dataclass(frozen=True)
class NativeTab:
    """A tab snapshot as reported by the browser."""

    tab_id: int
    window_id: int
    index: int
    title: str | None = None
    url: str | None = None
    active: bool = False
    pinned: bool = False
    status: str = "complete"
    opener_tab_id: int | None = None


@dataclass(frozen=True)
class NativeWindow:
    """A window snapshot as reported by the browser."""

    window_id: int
    focused: bool = False
    state: str = "normal"
    incognito: bool = False
    window_type: str = "normal"


@dataclass(frozen=True)
class TreePosition:
    """Where a tab sits in the tree: its parent and its key among siblings."""

    parent_tab_id: int | None
    tree_order: str


@dataclass(frozen=True)
class TreeNode:
    """A tab with its ordered children, built fresh from the record set."""

    tab: Tab
    children: tuple["TreeNode", ...] = ()
    depth: int = 0
    ancestor_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class FlatNode:
    """A tree node projected into the linear display order."""

    tab: Tab
    depth: int
    has_children: bool
    is_last_child: bool
    indent_guides: tuple[bool, ...] = ()
    ancestor_ids: tuple[int, ...] = ()

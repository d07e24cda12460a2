"""Work items admitted by the event queue.

Native events mirror the browser's tab and window callbacks. UI items are
requests issued by the tree view before or instead of a native change.
"""

from dataclasses import dataclass, field

from tab_canopy.models.intents import MoveIntent
from tab_canopy.models.tab import NativeTab, NativeWindow, TreePosition

# --- Native browser events ---


@dataclass(frozen=True)
class TabCreated:
    tab: NativeTab


@dataclass(frozen=True)
class TabUpdated:
    tab_id: int
    tab: NativeTab


@dataclass(frozen=True)
class TabMoved:
    tab_id: int
    window_id: int
    from_index: int
    to_index: int


@dataclass(frozen=True)
class TabRemoved:
    tab_id: int
    window_id: int
    is_window_closing: bool = False


@dataclass(frozen=True)
class TabActivated:
    tab_id: int
    window_id: int


@dataclass(frozen=True)
class TabDetached:
    tab_id: int
    old_window_id: int
    old_position: int


@dataclass(frozen=True)
class TabAttached:
    tab_id: int
    new_window_id: int
    new_position: int


@dataclass(frozen=True)
class WindowCreated:
    window: NativeWindow


@dataclass(frozen=True)
class WindowRemoved:
    window_id: int


@dataclass(frozen=True)
class WindowFocusChanged:
    window_id: int


NativeEvent = (
    TabCreated
    | TabUpdated
    | TabMoved
    | TabRemoved
    | TabActivated
    | TabDetached
    | TabAttached
    | WindowCreated
    | WindowRemoved
    | WindowFocusChanged
)

# --- UI-issued items ---


@dataclass(frozen=True)
class MoveTabs:
    """Drag-and-drop of one or more tabs onto a tree position."""

    tab_ids: tuple[int, ...]
    intent: MoveIntent
    window_id: int


@dataclass(frozen=True)
class PendingChild:
    """Declares the tree position of a tab about to be created at a slot."""

    window_id: int
    expected_index: int
    position: TreePosition


@dataclass(frozen=True)
class NewChildTab:
    parent_tab_id: int
    url: str | None = None


@dataclass(frozen=True)
class ToggleCollapse:
    tab_id: int


@dataclass(frozen=True)
class RenameTab:
    tab_id: int
    title_override: str | None


@dataclass(frozen=True)
class CloseTabs:
    tab_ids: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class InitialSync:
    pass


@dataclass(frozen=True)
class ResetStore:
    pass


UiItem = (
    MoveTabs
    | PendingChild
    | NewChildTab
    | ToggleCollapse
    | RenameTab
    | CloseTabs
    | InitialSync
    | ResetStore
)

WorkItem = NativeEvent | UiItem

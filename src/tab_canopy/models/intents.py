"""Move intents: pre-resolution requests describing a tree mutation."""

from dataclasses import dataclass


@dataclass(frozen=True)
class DropChild:
    """Make the moving tab the first child of ``parent_tab_id``."""

    parent_tab_id: int


@dataclass(frozen=True)
class DropBefore:
    """Place the moving tab directly before ``target_tab_id``."""

    target_tab_id: int


@dataclass(frozen=True)
class DropAfter:
    """Place the moving tab directly after ``target_tab_id``."""

    target_tab_id: int


@dataclass(frozen=True)
class RootInsert:
    """Insert the moving tab at ``index`` among the root tabs."""

    index: int


@dataclass(frozen=True)
class SiblingDrop:
    """Drop next to ``target_tab_id`` at the indentation level of ``ancestor_id``.

    ``ancestor_id`` becomes the new parent; ``None`` means root level.
    """

    target_tab_id: int
    ancestor_id: int | None


MoveIntent = DropChild | DropBefore | DropAfter | RootInsert | SiblingDrop

"""Short-lived registries of tree positions announced ahead of native events.

When the reconciler (or the tree view) is about to trigger a native move or
creation, it registers the tree position it expects. The native event that
follows consumes the entry instead of inferring a position from indices.
Entries expire lazily: an expired entry is dropped the next time it is looked
up or a new entry is registered. Entries of closed tabs and windows are
discarded explicitly.
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from loguru import logger

from tab_canopy.config import CREATION_INTENT_TTL, USER_MOVE_INTENT_TTL
from tab_canopy.models.tab import TreePosition


@dataclass(frozen=True)
class UiMoveIntent:
    """A tree position expected for ``tab_id`` until ``expires_at``."""

    tab_id: int
    parent_tab_id: int | None
    tree_order: str
    expires_at: float

    @property
    def position(self) -> TreePosition:
        return TreePosition(parent_tab_id=self.parent_tab_id, tree_order=self.tree_order)


@dataclass(frozen=True)
class PendingChildIntent:
    """A tree position for the next tab created at ``(window_id, index)``."""

    window_id: int
    index: int
    position: TreePosition
    expires_at: float


class IntentRegistry:
    """Move intents keyed by tab id and pending-child intents keyed by slot."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        creation_ttl: float = CREATION_INTENT_TTL,
        user_move_ttl: float = USER_MOVE_INTENT_TTL,
    ) -> None:
        self._clock = clock
        self.creation_ttl = creation_ttl
        self.user_move_ttl = user_move_ttl
        self._moves: dict[int, UiMoveIntent] = {}
        self._pending_children: dict[tuple[int, int], PendingChildIntent] = {}

    def register_move(
        self, tab_id: int, position: TreePosition, *, from_creation: bool = False
    ) -> UiMoveIntent:
        """Record the expected position of ``tab_id``, replacing any earlier one.

        Creation-originated intents get the short TTL, user moves the long one.
        """
        self._drop_expired()
        ttl = self.creation_ttl if from_creation else self.user_move_ttl
        intent = UiMoveIntent(
            tab_id=tab_id,
            parent_tab_id=position.parent_tab_id,
            tree_order=position.tree_order,
            expires_at=self._clock() + ttl,
        )
        self._moves[tab_id] = intent
        logger.debug(
            "Registered move intent for tab {}: parent={}, order={}",
            tab_id, position.parent_tab_id, position.tree_order,
        )
        return intent

    def peek_move(self, tab_id: int) -> UiMoveIntent | None:
        """Return the live intent for ``tab_id`` without consuming it."""
        intent = self._moves.get(tab_id)
        if intent is None:
            return None
        if self._clock() >= intent.expires_at:
            del self._moves[tab_id]
            return None
        return intent

    def consume_move(self, tab_id: int) -> UiMoveIntent | None:
        """Return and remove the live intent for ``tab_id``."""
        intent = self.peek_move(tab_id)
        if intent is not None:
            del self._moves[tab_id]
        return intent

    def register_pending_child(
        self, window_id: int, index: int, position: TreePosition
    ) -> PendingChildIntent:
        self._drop_expired()
        intent = PendingChildIntent(
            window_id=window_id,
            index=index,
            position=position,
            expires_at=self._clock() + self.user_move_ttl,
        )
        self._pending_children[(window_id, index)] = intent
        logger.debug(
            "Registered pending child at window {} index {}: parent={}",
            window_id, index, position.parent_tab_id,
        )
        return intent

    def consume_pending_child(self, window_id: int, index: int) -> PendingChildIntent | None:
        intent = self._pending_children.pop((window_id, index), None)
        if intent is None or self._clock() >= intent.expires_at:
            return None
        return intent

    def discard(self, tab_ids: Iterable[int]) -> None:
        """Forget move intents of tabs that no longer exist."""
        for tab_id in tab_ids:
            self._moves.pop(tab_id, None)

    def discard_window(self, window_id: int) -> None:
        """Forget pending children announced for a closed window."""
        for key in [k for k in self._pending_children if k[0] == window_id]:
            del self._pending_children[key]

    def _drop_expired(self) -> None:
        now = self._clock()
        for tab_id in [i for i, m in self._moves.items() if now >= m.expires_at]:
            del self._moves[tab_id]
        for key in [k for k, p in self._pending_children.items() if now >= p.expires_at]:
            del self._pending_children[key]

    def clear(self) -> None:
        self._moves.clear()
        self._pending_children.clear()

    def __len__(self) -> int:
        return len(self._moves) + len(self._pending_children)

"""Shared test fixtures."""

from collections.abc import Iterator

import pytest

from tab_canopy.core.database.store import TabStore
from tab_canopy.models.tab import Tab
from tests.unit.fakes import strip_of


@pytest.fixture
def store() -> Iterator[TabStore]:
    """Return an empty in-memory tab store."""
    tab_store = TabStore.open(":memory:")
    yield tab_store
    tab_store.close()


@pytest.fixture
def nested_tabs() -> list[Tab]:
    """Window 1 holding a small tree, in browser order.

    a (1)
    ├── a1 (2)
    └── a2 (3)
        └── a2x (4)
    b (5)
    """
    return strip_of(
        (1, None, "a0"),
        (2, 1, "a0"),
        (3, 1, "a1"),
        (4, 3, "a0"),
        (5, None, "a1"),
    )

"""Tree-structured tab management on top of flat browser tab strips."""

from tab_canopy.core.database.store import TabStore
from tab_canopy.core.sync.event_queue import EventQueue
from tab_canopy.core.sync.intents import IntentRegistry
from tab_canopy.core.sync.reconciler import Reconciler
from tab_canopy.protocols import BrowserProtocol, TabStoreProtocol
from tab_canopy.simulator import SimulatedBrowser

__all__ = [
    "BrowserProtocol",
    "EventQueue",
    "IntentRegistry",
    "Reconciler",
    "SimulatedBrowser",
    "TabStore",
    "TabStoreProtocol",
]

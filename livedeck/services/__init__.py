"""Service layer for LiveDeck."""

from .navigation import NavigationService
from .recorder import RecordingStore
from .execution import DriverRegistry, ExecutionEngine
from .sync import ClientReplica, ClientSession, Role, SyncHub
from .presentation import (
    DeckWatcher,
    PresentationRuntime,
    get_presentation_runtime,
    load_deck_file,
    set_presentation_runtime,
)

__all__ = [
    "NavigationService",
    "RecordingStore",
    "DriverRegistry",
    "ExecutionEngine",
    "ClientReplica",
    "ClientSession",
    "Role",
    "SyncHub",
    "DeckWatcher",
    "PresentationRuntime",
    "get_presentation_runtime",
    "load_deck_file",
    "set_presentation_runtime",
]

"""
Presentation runtime package.
Owns the loaded deck and the services that act on it.
"""

from .loader import load_deck_file
from .service import PresentationRuntime, get_presentation_runtime, set_presentation_runtime
from .watcher import DeckWatcher

__all__ = [
    "load_deck_file",
    "PresentationRuntime",
    "get_presentation_runtime",
    "set_presentation_runtime",
    "DeckWatcher",
]

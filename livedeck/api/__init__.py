"""API routes for LiveDeck."""

from .routes import deck, executions, navigation, sync

__all__ = [
    "deck",
    "executions",
    "navigation",
    "sync",
]

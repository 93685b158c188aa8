"""Session recorder package."""

from .store import RecordingStore
from .cast import to_asciicast, write_cast

__all__ = [
    "RecordingStore",
    "to_asciicast",
    "write_cast",
]

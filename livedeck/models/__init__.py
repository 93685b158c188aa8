"""Pydantic models for decks, navigation, executions and the sync channel."""

from .deck import CodeBlock, Deck, Fragment, Slide, code_block_id
from .execution import Execution, ExecutionStatus, RecordingEvent, Stream
from .navigation import NavigationState, Transition

__all__ = [
    "CodeBlock",
    "Deck",
    "Fragment",
    "Slide",
    "code_block_id",
    "Execution",
    "ExecutionStatus",
    "RecordingEvent",
    "Stream",
    "NavigationState",
    "Transition",
]

"""
Client-side view state.

``ClientReplica`` is the reference implementation of how a view applies the
real-time channel: load a snapshot, then apply events strictly in sequence
order. A missing sequence number raises ``SyncGapDetected``, and the view
must then ask for a resync instead of applying partial state.
"""

import logging
from typing import Any, Optional, Union

from livedeck.core.errors import SyncGapDetected
from livedeck.models.events import (
    DeckReplaced,
    ErrorMessage,
    ExecutionEnded,
    ExecutionOutput,
    ExecutionStarted,
    NavigationChanged,
    Snapshot,
    SyncEvent,
    event_adapter,
)
from livedeck.models.execution import Execution, RecordingEvent
from livedeck.models.navigation import NavigationState

logger = logging.getLogger(__name__)


class ClientReplica:
    """What one connected view currently believes."""

    def __init__(self):
        self.deck_id: Optional[str] = None
        self.seq = 0
        self.navigation = NavigationState()
        self.executions: dict[str, Execution] = {}
        self.recordings: dict[str, list[RecordingEvent]] = {}
        self.errors: list[ErrorMessage] = []

    def load_snapshot(self, snapshot: Snapshot) -> None:
        """
        Replace state with a snapshot.

        Snapshots sent for a resync only carry recordings for runs touched
        since the view's last event; recordings the view already holds for
        other runs still listed in the snapshot are kept.
        """
        self.deck_id = snapshot.deck_id
        self.seq = snapshot.seq
        self.navigation = snapshot.navigation
        self.executions = {e.run_id: e for e in snapshot.executions}
        recordings = {
            run_id: events for run_id, events in self.recordings.items()
            if run_id in self.executions
        }
        for run_id, events in snapshot.recordings.items():
            recordings[run_id] = list(events)
        self.recordings = recordings

    def apply(self, event: SyncEvent) -> bool:
        """
        Apply one sequenced event. Returns False for an already-seen event.

        Raises ``SyncGapDetected`` if an event was skipped.
        """
        if event.seq <= self.seq:
            return False
        if event.seq != self.seq + 1:
            raise SyncGapDetected(self.seq + 1, event.seq)

        if isinstance(event, DeckReplaced):
            self.deck_id = event.deck_id
            finished = [run_id for run_id, e in self.executions.items() if e.is_terminal]
            for run_id in finished:
                self.executions.pop(run_id)
                self.recordings.pop(run_id, None)
        elif isinstance(event, NavigationChanged):
            self.navigation = event.state
        elif isinstance(event, ExecutionStarted):
            if event.execution is not None:
                self.executions[event.run_id] = event.execution
            self.recordings.setdefault(event.run_id, [])
        elif isinstance(event, ExecutionOutput):
            events = self.recordings.setdefault(event.run_id, [])
            if event.event.offset == len(events):
                events.append(event.event)
        elif isinstance(event, ExecutionEnded):
            if event.execution is not None:
                self.executions[event.run_id] = event.execution
        else:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")

        self.seq = event.seq
        return True

    def receive(self, message: Union[dict[str, Any], SyncEvent, Snapshot, ErrorMessage]) -> None:
        """Apply any server message, parsing raw JSON-decoded dicts first."""
        if isinstance(message, dict):
            kind = message.get("type")
            if kind == "snapshot":
                message = Snapshot.model_validate(message)
            elif kind == "error":
                message = ErrorMessage.model_validate(message)
            else:
                message = event_adapter.validate_python(message)

        if isinstance(message, Snapshot):
            self.load_snapshot(message)
        elif isinstance(message, ErrorMessage):
            self.errors.append(message)
        else:
            self.apply(message)

    def state(self) -> dict[str, Any]:
        """Comparable view of everything this replica renders from."""
        return {
            "deck_id": self.deck_id,
            "seq": self.seq,
            "navigation": self.navigation.as_tuple(),
            "executions": {
                run_id: (e.code_block_id, e.status.value, e.exit_code)
                for run_id, e in sorted(self.executions.items())
            },
            "recordings": {
                run_id: b"".join(ev.data for ev in events)
                for run_id, events in sorted(self.recordings.items())
            },
        }

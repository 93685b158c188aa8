"""
Sync hub: the single source of truth for what every view should show.

The hub assigns every state-changing event a sequence number and fans it
out to each connected view's queue. Sequence assignment and enqueueing
happen without an ``await`` in between, so on the event loop every client
receives events in the same global order.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Union

from livedeck.core.errors import Forbidden
from livedeck.models.events import (
    CONTROL_COMMANDS,
    ErrorMessage,
    ExecutionEnded,
    ExecutionOutput,
    ExecutionStarted,
    Snapshot,
    SyncEvent,
)

logger = logging.getLogger(__name__)

Message = Union[SyncEvent, Snapshot, ErrorMessage]
# Builds a snapshot; receives the set of run ids to include recordings for,
# or None for every run.
SnapshotBuilder = Callable[[int, Optional[set[str]]], Snapshot]


class Role(str, Enum):
    PRESENTER = "presenter"
    AUDIENCE = "audience"


@dataclass
class ClientSession:
    """A connected view. Destroyed on disconnect."""
    client_id: str
    role: Role
    queue: asyncio.Queue
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    delivered_seq: int = 0
    resyncs: int = 0
    closed: bool = False

    @property
    def is_presenter(self) -> bool:
        return self.role is Role.PRESENTER

    async def next_message(self) -> Optional[Message]:
        """Wait for the next outbound message; ``None`` means the hub closed."""
        message = await self.queue.get()
        if isinstance(message, (SyncEvent, Snapshot)):
            self.delivered_seq = message.seq
        return message


class SyncHub:
    """Sequencing, fan-out and resynchronisation for connected views."""

    def __init__(
        self,
        snapshot_builder: SnapshotBuilder,
        client_queue_size: int = 1024,
        event_log_size: int = 4096,
    ):
        self._build_snapshot = snapshot_builder
        self._client_queue_size = client_queue_size
        self._clients: dict[str, ClientSession] = {}
        self._log: deque[SyncEvent] = deque(maxlen=event_log_size)
        self._run_seq: dict[str, int] = {}
        self._seq = 0

    @property
    def seq(self) -> int:
        return self._seq

    # -- connections --------------------------------------------------------

    def connect(self, role: Union[Role, str]) -> ClientSession:
        """Register a view and queue its initial snapshot."""
        session = ClientSession(
            client_id=uuid.uuid4().hex[:12],
            role=Role(role),
            queue=asyncio.Queue(maxsize=self._client_queue_size),
        )
        self._clients[session.client_id] = session
        session.queue.put_nowait(self.snapshot_for(0))
        logger.info(f"🔌 {session.role.value} {session.client_id} connected ({self.client_count()} total)")
        return session

    def disconnect(self, session: ClientSession) -> None:
        if self._clients.pop(session.client_id, None) is not None:
            session.closed = True
            logger.info(f"👋 {session.role.value} {session.client_id} disconnected ({self.client_count()} total)")

    def close(self) -> None:
        """Tell every connection to stop sending; used at shutdown."""
        for session in list(self._clients.values()):
            _drain(session.queue)
            session.queue.put_nowait(None)
            self.disconnect(session)

    def client_count(self, role: Optional[Role] = None) -> int:
        return sum(1 for s in self._clients.values() if role is None or s.role is role)

    def client_counts(self) -> dict[str, int]:
        return {role.value: self.client_count(role) for role in Role}

    # -- broadcasting -------------------------------------------------------

    def publish(self, event: SyncEvent) -> SyncEvent:
        """Sequence an event, log it and enqueue it for every view."""
        self._seq += 1
        event = event.model_copy(update={"seq": self._seq})
        self._log.append(event)
        if isinstance(event, (ExecutionStarted, ExecutionOutput, ExecutionEnded)):
            self._run_seq[event.run_id] = event.seq

        for session in list(self._clients.values()):
            self._deliver(session, event)
        return event

    def send(self, session: ClientSession, message: ErrorMessage) -> None:
        """Queue an unsequenced message for one view only."""
        if not session.closed:
            self._deliver(session, message)

    def resync(self, session: ClientSession, since_seq: Optional[int] = None) -> None:
        """Replace whatever is pending for a view with a fresh snapshot."""
        since = session.delivered_seq if since_seq is None else since_seq
        _drain(session.queue)
        session.queue.put_nowait(self.snapshot_for(since))
        session.resyncs += 1

    def _deliver(self, session: ClientSession, message: Message) -> None:
        try:
            session.queue.put_nowait(message)
        except asyncio.QueueFull:
            # Never hand a slow view a partial stream; it gets a snapshot instead
            logger.warning(f"Client {session.client_id} fell behind; sending a snapshot")
            self.resync(session)

    # -- catch-up -----------------------------------------------------------

    def snapshot_for(self, since_seq: int = 0) -> Snapshot:
        """
        Snapshot for a view that has applied everything up to ``since_seq``.

        Recordings are included for every run touched after ``since_seq``
        (all runs when ``since_seq`` is 0).
        """
        runs = None if since_seq <= 0 else {
            run_id for run_id, seq in self._run_seq.items() if seq > since_seq
        }
        return self._build_snapshot(self._seq, runs)

    def events_since(self, seq: int) -> Optional[list[SyncEvent]]:
        """Logged events after ``seq``, or ``None`` if the log no longer reaches back."""
        if seq >= self._seq:
            return []
        if not self._log or self._log[0].seq > seq + 1:
            return None
        return [event for event in self._log if event.seq > seq]

    def forget_runs(self, keep: set[str]) -> None:
        """Drop run bookkeeping for runs that no longer exist."""
        for run_id in list(self._run_seq):
            if run_id not in keep:
                del self._run_seq[run_id]

    # -- authority ----------------------------------------------------------

    @staticmethod
    def authorize(session: ClientSession, command_type: str) -> None:
        """Only presenters may issue control commands."""
        if command_type in CONTROL_COMMANDS and not session.is_presenter:
            raise Forbidden(session.role.value, command_type)


def _drain(queue: asyncio.Queue) -> None:
    while True:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            return

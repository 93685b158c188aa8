"""Append-only per-run recording store."""

import asyncio
import logging
from dataclasses import dataclass, field
from itertools import count
from typing import AsyncIterator, Optional

from livedeck.core.errors import RunAlreadyTerminal, RunNotFound
from livedeck.models.execution import RecordingEvent, Stream

logger = logging.getLogger(__name__)


@dataclass
class RunLog:
    """Mutable log for one run; only the store touches it."""
    run_id: str
    code_block_id: str
    events: list[RecordingEvent] = field(default_factory=list)
    byte_count: int = 0
    terminal: bool = False
    closed_order: int = 0
    spawned: bool = True
    changed: asyncio.Event = field(default_factory=asyncio.Event)

    def notify(self) -> None:
        """Wake every tail waiting on this log."""
        self.changed.set()
        self.changed = asyncio.Event()


class RecordingStore:
    """
    Append-only log of terminal output keyed by run id.

    Writes for a run come from that run's capture task only, so appends keep
    their order. Reads return tuples copied from the log, and tails follow
    live appends until the run is closed.

    Retention: at most ``max_runs_per_block`` finished runs are kept per code
    block and the store holds at most ``max_total_bytes`` across runs. When a
    cap is exceeded the oldest finished runs are evicted first. Running runs
    and the run that has just finished are never evicted.
    """

    def __init__(self, max_runs_per_block: int = 5, max_total_bytes: int = 32 * 1024 * 1024):
        self.max_runs_per_block = max_runs_per_block
        self.max_total_bytes = max_total_bytes
        self._runs: dict[str, RunLog] = {}
        self._total_bytes = 0
        self._close_counter = count(1)

    # -- writes -------------------------------------------------------------

    def open_run(self, run_id: str, code_block_id: str) -> None:
        if run_id in self._runs:
            raise ValueError(f"Run {run_id} already exists")
        self._runs[run_id] = RunLog(run_id=run_id, code_block_id=code_block_id)

    def append(self, run_id: str, stream: Stream, data: bytes, time_ms: int) -> RecordingEvent:
        log = self._get(run_id)
        if log.terminal:
            raise RunAlreadyTerminal(run_id)
        if log.events and time_ms <= log.events[-1].time_ms:
            raise ValueError(
                f"Run {run_id}: time {time_ms}ms is not after {log.events[-1].time_ms}ms"
            )

        event = RecordingEvent(
            run_id=run_id,
            offset=len(log.events),
            time_ms=time_ms,
            stream=Stream(stream),
            data=bytes(data),
        )
        log.events.append(event)
        log.byte_count += len(event.data)
        self._total_bytes += len(event.data)
        log.notify()
        return event

    def close_run(self, run_id: str, spawned: bool = True) -> None:
        """
        Mark a run finished. Closing twice is a no-op.

        Runs whose process never started (``spawned=False``) do not count
        towards the per-block cap; only the latest of them is kept per block.
        """
        log = self._get(run_id)
        if log.terminal:
            return
        log.terminal = True
        log.spawned = spawned
        log.closed_order = next(self._close_counter)
        log.notify()
        self._enforce_retention(keep=run_id)

    def clear_terminal(self) -> int:
        """Drop every finished run, e.g. when the deck is reloaded."""
        finished = [run_id for run_id, log in self._runs.items() if log.terminal]
        for run_id in finished:
            self._evict(run_id)
        return len(finished)

    # -- reads --------------------------------------------------------------

    def read(self, run_id: str, from_offset: int = 0) -> tuple[RecordingEvent, ...]:
        """All events at or after ``from_offset``."""
        if from_offset < 0:
            raise ValueError("from_offset must be >= 0")
        return tuple(self._get(run_id).events[from_offset:])

    async def tail(self, run_id: str, from_offset: int = 0) -> AsyncIterator[RecordingEvent]:
        """
        Yield events from ``from_offset`` onwards, following live appends.

        The iterator ends once the run is closed and every event has been
        yielded, or when the run is evicted while being tailed.
        """
        if from_offset < 0:
            raise ValueError("from_offset must be >= 0")
        log = self._get(run_id)
        offset = from_offset
        while True:
            while offset < len(log.events):
                yield log.events[offset]
                offset += 1
            if log.terminal or self._runs.get(run_id) is not log:
                return
            await log.changed.wait()

    def has_run(self, run_id: str) -> bool:
        return run_id in self._runs

    def is_terminal(self, run_id: str) -> bool:
        return self._get(run_id).terminal

    def length(self, run_id: str) -> int:
        return len(self._get(run_id).events)

    def code_block_of(self, run_id: str) -> str:
        return self._get(run_id).code_block_id

    def run_ids(self, code_block_id: Optional[str] = None) -> list[str]:
        return [
            run_id for run_id, log in self._runs.items()
            if code_block_id is None or log.code_block_id == code_block_id
        ]

    def total_bytes(self) -> int:
        return self._total_bytes

    # -- internals ----------------------------------------------------------

    def _get(self, run_id: str) -> RunLog:
        log = self._runs.get(run_id)
        if log is None:
            raise RunNotFound(run_id)
        return log

    def _evict(self, run_id: str) -> None:
        log = self._runs.pop(run_id)
        self._total_bytes -= log.byte_count
        log.notify()
        logger.debug(f"Evicted recording {run_id} ({log.byte_count} bytes)")

    def _finished_oldest_first(
        self,
        code_block_id: Optional[str] = None,
        spawned: Optional[bool] = None,
    ) -> list[RunLog]:
        finished = [
            log for log in self._runs.values()
            if log.terminal
            and (code_block_id is None or log.code_block_id == code_block_id)
            and (spawned is None or log.spawned == spawned)
        ]
        return sorted(finished, key=lambda log: log.closed_order)

    def _enforce_retention(self, keep: str) -> None:
        block_id = self._runs[keep].code_block_id
        finished = self._finished_oldest_first(block_id, spawned=True)
        for log in finished[:max(len(finished) - self.max_runs_per_block, 0)]:
            self._evict(log.run_id)
        for log in self._finished_oldest_first(block_id, spawned=False)[:-1]:
            self._evict(log.run_id)

        for log in self._finished_oldest_first():
            if self._total_bytes <= self.max_total_bytes:
                break
            if log.run_id != keep:
                self._evict(log.run_id)

        if self._total_bytes > self.max_total_bytes:
            logger.warning(
                f"Recordings hold {self._total_bytes} bytes, above the "
                f"{self.max_total_bytes} byte cap, in running or latest runs"
            )

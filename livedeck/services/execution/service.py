"""
Execution engine: runs code blocks as subprocesses and records their output.

Each run is driven by one supervisor task that owns all mutation of that
run (single writer). Two reader tasks capture stdout and stderr, timestamp
every chunk relative to process start and append it to the recording store
before it is published, so slow viewers can never cause stored output loss.
"""

import asyncio
import logging
import os
import signal
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from livedeck.core.debug import increment_execution_count
from livedeck.core.errors import (
    AlreadyRunning,
    CodeBlockNotFound,
    NotRunning,
    ProcessSpawnFailed,
    RunNotFound,
    RunStillRunning,
)
from livedeck.models.deck import CodeBlock, Deck
from livedeck.models.events import ExecutionEnded, ExecutionOutput, ExecutionStarted, SyncEvent
from livedeck.models.execution import Execution, ExecutionStatus, RecordingEvent, Stream
from livedeck.services.recorder import RecordingStore, write_cast

from .drivers import DriverRegistry, build_environment

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
OUTPUT_DRAIN_SECONDS = 5.0

EventPublisher = Callable[[SyncEvent], Any]
# Receives the run ids still stored after finished runs were dropped
PruneListener = Callable[[set[str]], Any]


def split_utf8(data: bytes) -> tuple[bytes, bytes]:
    """Split ``data`` into complete UTF-8 text and an incomplete trailing sequence."""
    for back in range(1, min(4, len(data)) + 1):
        byte = data[-back]
        if byte & 0xC0 == 0x80:
            continue
        if byte < 0x80:
            return data, b""
        needed = 4 if byte >= 0xF0 else 3 if byte >= 0xE0 else 2 if byte >= 0xC0 else 1
        if back < needed:
            return data[:-back], data[-back:]
        return data, b""
    return data, b""


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunHandle:
    """Engine-side state of one run; mutated only by its supervisor."""
    execution: Execution
    source: str
    process: Optional[asyncio.subprocess.Process] = None
    supervisor: Optional[asyncio.Task] = None
    started_monotonic: float = 0.0
    last_time_ms: int = -1
    kill_requested: bool = False
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def run_id(self) -> str:
        return self.execution.run_id


class ExecutionEngine:
    """Starts, kills and records code block runs for the current deck."""

    def __init__(
        self,
        store: RecordingStore,
        drivers: DriverRegistry,
        publish: Optional[EventPublisher] = None,
        kill_grace_seconds: float = 3.0,
        cast_dir: Optional[Path] = None,
        terminal_size: tuple[int, int] = (80, 24),
        on_prune: Optional[PruneListener] = None,
    ):
        self._store = store
        self._base_drivers = drivers
        self._drivers = drivers
        self._publish = publish or (lambda event: None)
        self.kill_grace_seconds = kill_grace_seconds
        self._cast_dir = cast_dir
        self._terminal_size = terminal_size
        self._on_prune = on_prune
        self._deck: Optional[Deck] = None
        self._runs: dict[str, RunHandle] = {}
        self._by_block: dict[str, str] = {}

    @property
    def store(self) -> RecordingStore:
        return self._store

    def set_deck(self, deck: Deck) -> None:
        self._deck = deck
        self._drivers = self._base_drivers.with_overrides(deck.drivers)

    def detach_all(self) -> None:
        """
        Forget code-block lookups after a deck reload.

        Running processes keep running and keep publishing under their run
        ids, but can no longer be found (or killed) through a block id.
        Finished runs are dropped along with their recordings.
        """
        for run_id, handle in list(self._runs.items()):
            if handle.execution.is_terminal:
                del self._runs[run_id]
        if self._by_block:
            logger.info(f"Detached {len(self._by_block)} running execution(s) from the old deck")
        self._by_block.clear()

    # -- control ------------------------------------------------------------

    async def start(self, code_block_id: str) -> Execution:
        block = self._find_block(code_block_id)
        running_id = self._by_block.get(block.id)
        if running_id is not None:
            raise AlreadyRunning(block.id, running_id)

        run_id = uuid.uuid4().hex
        execution = Execution(code_block_id=block.id, run_id=run_id, started_at=_now())
        handle = RunHandle(execution=execution, source=block.source)
        self._runs[run_id] = handle
        self._by_block[block.id] = run_id
        self._store.open_run(run_id, block.id)
        increment_execution_count()

        try:
            driver = self._drivers.resolve(block)
            process = await asyncio.create_subprocess_exec(
                *driver.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(driver.workdir) if driver.workdir else None,
                env=build_environment(driver),
                start_new_session=os.name == "posix",
            )
        except ProcessSpawnFailed as exc:
            self._fail_spawn(handle, exc.message)
            exc.details["run_id"] = run_id
            raise
        except (OSError, ValueError) as exc:
            self._fail_spawn(handle, str(exc))
            raise ProcessSpawnFailed(block.id, str(exc), run_id=run_id) from exc

        handle.process = process
        handle.started_monotonic = time.monotonic()
        handle.execution = execution.model_copy(update={"pid": process.pid})
        logger.info(f"▶️  Started {block.driver_name} block {block.id} as run {run_id} (pid {process.pid})")
        self._publish(ExecutionStarted(code_block_id=block.id, run_id=run_id, execution=handle.execution))

        handle.supervisor = asyncio.create_task(self._supervise(handle), name=f"run-{run_id}")
        if handle.kill_requested:
            self._signal(process, signal.SIGTERM)
        return handle.execution

    async def kill(self, code_block_id: str) -> Execution:
        """
        Terminate a block's running process and wait for confirmation.

        SIGTERM first; if the process is still alive after the grace period it
        is killed outright. Returns the terminal execution.
        """
        run_id = self._by_block.get(code_block_id)
        if run_id is None:
            raise NotRunning(code_block_id)
        return await self.kill_run(run_id)

    async def kill_run(self, run_id: str) -> Execution:
        handle = self._runs.get(run_id)
        if handle is None:
            raise RunNotFound(run_id)
        if handle.execution.is_terminal:
            return handle.execution

        # Only a kill that lands before the process exits decides the outcome
        if handle.process is None or handle.process.returncode is None:
            handle.kill_requested = True
        if handle.process is not None:
            self._signal(handle.process, signal.SIGTERM)
        try:
            await asyncio.wait_for(handle.done.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Run {run_id} ignored SIGTERM for {self.kill_grace_seconds}s, sending SIGKILL")
            # The process may still be spawning; keep escalating until it ends
            while not handle.done.is_set():
                if handle.process is not None:
                    self._signal(handle.process, getattr(signal, "SIGKILL", signal.SIGTERM))
                try:
                    await asyncio.wait_for(handle.done.wait(), timeout=self.kill_grace_seconds)
                except asyncio.TimeoutError:
                    continue
        return handle.execution

    async def shutdown(self) -> None:
        """Kill every running process; used when the server stops."""
        running = [h.run_id for h in self._runs.values() if not h.execution.is_terminal]
        if running:
            logger.info(f"Stopping {len(running)} running execution(s)")
            await asyncio.gather(*(self.kill_run(run_id) for run_id in running), return_exceptions=True)

    # -- reads --------------------------------------------------------------

    def get_execution(self, run_id: str) -> Execution:
        handle = self._runs.get(run_id)
        if handle is None:
            raise RunNotFound(run_id)
        return handle.execution

    def executions(self) -> list[Execution]:
        return [handle.execution for handle in self._runs.values()]

    def running(self) -> list[Execution]:
        return [h.execution for h in self._runs.values() if not h.execution.is_terminal]

    def running_for(self, code_block_id: str) -> Optional[Execution]:
        run_id = self._by_block.get(code_block_id)
        return self._runs[run_id].execution if run_id else None

    def get_recording(self, run_id: str) -> tuple[RecordingEvent, ...]:
        """The immutable recording of a finished run."""
        if not self._store.has_run(run_id):
            raise RunNotFound(run_id)
        if not self._store.is_terminal(run_id):
            raise RunStillRunning(run_id)
        return self._store.read(run_id)

    def tail_recording(self, run_id: str, from_offset: int = 0) -> AsyncIterator[RecordingEvent]:
        """Live events from any offset; ends when the run finishes."""
        if not self._store.has_run(run_id):
            raise RunNotFound(run_id)
        return self._store.tail(run_id, from_offset)

    # -- internals ----------------------------------------------------------

    def _find_block(self, code_block_id: str) -> CodeBlock:
        block = self._deck.find_code_block(code_block_id) if self._deck else None
        if block is None:
            raise CodeBlockNotFound(code_block_id)
        return block

    def _fail_spawn(self, handle: RunHandle, reason: str) -> None:
        logger.error(f"❌ Could not start block {handle.execution.code_block_id}: {reason}")
        handle.execution = handle.execution.model_copy(update={
            "status": ExecutionStatus.FAILED,
            "ended_at": _now(),
            "error": reason,
        })
        self._store.close_run(handle.run_id, spawned=False)
        self._release(handle)
        handle.done.set()
        self._publish(ExecutionStarted(
            code_block_id=handle.execution.code_block_id,
            run_id=handle.run_id,
            execution=handle.execution,
        ))
        self._publish(ExecutionEnded(
            run_id=handle.run_id,
            status=ExecutionStatus.FAILED,
            exit_code=None,
            execution=handle.execution,
        ))
        self._prune()

    async def _supervise(self, handle: RunHandle) -> None:
        process = handle.process
        feeder = asyncio.create_task(self._feed_stdin(process, handle.source))
        readers = [
            asyncio.create_task(self._capture(handle, process.stdout, Stream.STDOUT)),
            asyncio.create_task(self._capture(handle, process.stderr, Stream.STDERR)),
        ]
        try:
            exit_code = await process.wait()
            _, pending = await asyncio.wait(readers, timeout=OUTPUT_DRAIN_SECONDS)
            for task in pending:
                # A detached grandchild still holds the pipe open
                task.cancel()
            await asyncio.gather(feeder, *readers, return_exceptions=True)
        except asyncio.CancelledError:
            self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
            for task in (feeder, *readers):
                task.cancel()
            raise
        except Exception:
            logger.exception(f"Supervisor for run {handle.run_id} failed")
            exit_code = process.returncode
        self._finish(handle, exit_code)

    async def _feed_stdin(self, process: asyncio.subprocess.Process, source: str) -> None:
        try:
            process.stdin.write(source.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Process closed stdin before reading all of its source")
        finally:
            process.stdin.close()

    async def _capture(self, handle: RunHandle, pipe: asyncio.StreamReader, stream: Stream) -> None:
        pending = b""
        while True:
            chunk = await pipe.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            data, pending = split_utf8(pending + chunk)
            if data:
                self._record(handle, stream, data)
        if pending:
            self._record(handle, stream, pending)

    def _record(self, handle: RunHandle, stream: Stream, data: bytes) -> None:
        elapsed_ms = int((time.monotonic() - handle.started_monotonic) * 1000)
        time_ms = max(elapsed_ms, handle.last_time_ms + 1)
        handle.last_time_ms = time_ms
        event = self._store.append(handle.run_id, stream, data, time_ms)
        self._publish(ExecutionOutput(run_id=handle.run_id, event=event))

    def _finish(self, handle: RunHandle, exit_code: Optional[int]) -> None:
        if handle.kill_requested:
            status = ExecutionStatus.KILLED
        elif exit_code == 0:
            status = ExecutionStatus.SUCCEEDED
        else:
            status = ExecutionStatus.FAILED

        handle.execution = handle.execution.model_copy(update={
            "status": status,
            "ended_at": _now(),
            "exit_code": exit_code,
            "pid": None,
        })
        self._store.close_run(handle.run_id)
        self._release(handle)
        handle.done.set()
        logger.info(
            f"⏹️  Run {handle.run_id} {status.value} "
            f"(exit {exit_code}, {handle.execution.duration_ms}ms)"
        )
        self._publish(ExecutionEnded(
            run_id=handle.run_id,
            status=status,
            exit_code=exit_code,
            execution=handle.execution,
        ))
        self._save_cast(handle)
        self._prune()

    def _release(self, handle: RunHandle) -> None:
        block_id = handle.execution.code_block_id
        if self._by_block.get(block_id) == handle.run_id:
            del self._by_block[block_id]

    def _prune(self) -> None:
        """Drop finished runs whose recordings the store has evicted."""
        dropped = [
            run_id for run_id, handle in self._runs.items()
            if handle.execution.is_terminal and not self._store.has_run(run_id)
        ]
        for run_id in dropped:
            del self._runs[run_id]
        if dropped and self._on_prune:
            self._on_prune(set(self._store.run_ids()))

    def _save_cast(self, handle: RunHandle) -> None:
        if self._cast_dir is None or not self._store.has_run(handle.run_id):
            return
        width, height = self._terminal_size
        try:
            write_cast(
                self._cast_dir / f"{handle.run_id}.cast",
                self._store.read(handle.run_id),
                width=width,
                height=height,
                title=handle.execution.code_block_id,
                timestamp=handle.execution.started_at,
            )
        except OSError:
            logger.exception(f"Could not save recording for run {handle.run_id}")

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            if os.name == "posix":
                # The run leads its own session; children may outlive the leader
                os.killpg(process.pid, sig)
            elif process.returncode is None:
                process.send_signal(sig)
        except (ProcessLookupError, PermissionError):
            pass

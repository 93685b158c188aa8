"""
Unit tests for the execution engine.

These run real ``sh`` processes.
"""
import asyncio
import sys
import time
from unittest.mock import patch

import pytest

from livedeck.core.config import DriverConfig, default_drivers
from livedeck.core.errors import (
    AlreadyRunning,
    CodeBlockNotFound,
    DriverNotFound,
    NotRunning,
    ProcessSpawnFailed,
    RunNotFound,
    RunStillRunning,
)
from livedeck.models.deck import Deck, code_block_id
from livedeck.models.events import ExecutionEnded, ExecutionOutput, ExecutionStarted, event_adapter
from livedeck.models.execution import ExecutionStatus, Stream
from livedeck.services.execution import DriverRegistry, ExecutionEngine
from livedeck.services.execution.service import split_utf8
from livedeck.services.recorder import RecordingStore

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX shell")

ECHO = code_block_id(1, 0)
FAIL = code_block_id(1, 1)
SLEEP = code_block_id(1, 2)


@pytest.fixture
def published():
    return []


@pytest.fixture
def engine(deck, published):
    engine = ExecutionEngine(
        RecordingStore(),
        DriverRegistry(default_drivers()),
        publish=published.append,
        kill_grace_seconds=1.0,
    )
    engine.set_deck(deck)
    return engine


def _single_block(engine, **block):
    """Point the engine at a one-slide deck holding just ``block``."""
    drivers = block.pop("drivers", {})
    engine.set_deck(Deck.from_document({"drivers": drivers, "slides": [{"code_blocks": [block]}]}))
    return code_block_id(0, 0)


async def _wait_finished(engine, run_id, timeout=10):
    async def poll():
        while not engine.get_execution(run_id).is_terminal:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout=timeout)
    return engine.get_execution(run_id)


class TestRun:
    """Tests for starting code blocks."""

    @pytest.mark.asyncio
    async def test_successful_run_is_recorded(self, engine, published):
        """Test that stdout is captured and the run succeeds."""
        execution = await engine.start(ECHO)
        assert execution.status is ExecutionStatus.RUNNING
        assert execution.pid is not None

        finished = await _wait_finished(engine, execution.run_id)

        assert finished.status is ExecutionStatus.SUCCEEDED
        assert finished.exit_code == 0
        assert finished.ended_at is not None
        recording = engine.get_recording(execution.run_id)
        assert b"".join(e.data for e in recording) == b"hello\n"
        assert all(e.stream is Stream.STDOUT for e in recording)

        types = [type(e) for e in published]
        assert types[0] is ExecutionStarted
        assert types[-1] is ExecutionEnded
        assert ExecutionOutput in types

    @pytest.mark.asyncio
    async def test_failing_run_then_rerun(self, engine):
        """Test a non-zero exit and that a rerun gets a fresh run id."""
        first = await engine.start(FAIL)
        finished = await _wait_finished(engine, first.run_id)

        assert finished.status is ExecutionStatus.FAILED
        assert finished.exit_code == 1
        recording = engine.get_recording(first.run_id)
        assert [e.stream for e in recording] == [Stream.STDERR]
        assert recording[0].data == b"oops\n"

        second = await engine.start(FAIL)
        assert second.run_id != first.run_id
        await _wait_finished(engine, second.run_id)
        assert len(engine.executions()) == 2

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, engine):
        """Test that a running block cannot be started again."""
        execution = await engine.start(SLEEP)
        try:
            with pytest.raises(AlreadyRunning) as exc_info:
                await engine.start(SLEEP)
            assert exc_info.value.details["run_id"] == execution.run_id
        finally:
            await engine.kill(SLEEP)

    @pytest.mark.asyncio
    async def test_unknown_block(self, engine):
        """Test that unknown block ids are rejected before spawning."""
        with pytest.raises(CodeBlockNotFound):
            await engine.start("does-not-exist")
        assert engine.executions() == []

    @pytest.mark.asyncio
    async def test_output_times_strictly_increase(self, engine):
        """Test that rapid output still gets strictly increasing timestamps."""
        deck = Deck.from_document({"slides": [{"code_blocks": [{
            "language": "sh",
            "source": "for i in 1 2 3 4 5 6 7 8; do echo line$i; echo err$i >&2; done",
        }]}]})
        engine.set_deck(deck)

        execution = await engine.start(code_block_id(0, 0))
        await _wait_finished(engine, execution.run_id)

        recording = engine.get_recording(execution.run_id)
        times = [e.time_ms for e in recording]
        assert times == sorted(set(times))
        assert [e.offset for e in recording] == list(range(len(recording)))
        stdout = b"".join(e.data for e in recording if e.stream is Stream.STDOUT)
        assert stdout.decode().split() == [f"line{i}" for i in range(1, 9)]

    @pytest.mark.asyncio
    async def test_binary_output_is_kept_exactly(self, engine, published):
        """Test that output which is not valid UTF-8 is recorded and sent unchanged."""
        block = _single_block(engine, language="sh", source="printf '\\377\\376ok'")

        execution = await engine.start(block)
        await _wait_finished(engine, execution.run_id)

        assert b"".join(e.data for e in engine.get_recording(execution.run_id)) == b"\xff\xfeok"
        sent = [e for e in published if isinstance(e, ExecutionOutput)]
        received = [event_adapter.validate_json(e.model_dump_json()) for e in sent]
        assert b"".join(e.event.data for e in received) == b"\xff\xfeok"

    @pytest.mark.asyncio
    async def test_recording_unavailable_while_running(self, engine):
        """Test that the full recording is only served once the run ended."""
        execution = await engine.start(SLEEP)
        try:
            with pytest.raises(RunStillRunning):
                engine.get_recording(execution.run_id)
        finally:
            await engine.kill(SLEEP)

        assert engine.get_recording(execution.run_id) == engine.get_recording(execution.run_id)
        with pytest.raises(RunNotFound):
            engine.get_recording("missing")


class TestKill:
    """Tests for stopping code blocks."""

    @pytest.mark.asyncio
    async def test_kill_running_block(self, engine, published):
        """Test that a killed run ends as killed and frees the block."""
        execution = await engine.start(SLEEP)

        killed = await engine.kill(SLEEP)

        assert killed.run_id == execution.run_id
        assert killed.status is ExecutionStatus.KILLED
        assert engine.running_for(SLEEP) is None
        assert engine.running() == []
        ended = [e for e in published if isinstance(e, ExecutionEnded)]
        assert ended[-1].status is ExecutionStatus.KILLED

    @pytest.mark.asyncio
    async def test_kill_escalates_when_term_is_ignored(self, engine):
        """Test that a process ignoring SIGTERM is killed after the grace period."""
        deck = Deck.from_document({"slides": [{"code_blocks": [{
            "language": "sh",
            "source": "trap '' TERM; echo ready; while true; do sleep 0.1; done",
        }]}]})
        engine.set_deck(deck)
        engine.kill_grace_seconds = 0.3
        block = code_block_id(0, 0)

        execution = await engine.start(block)
        killed = await asyncio.wait_for(engine.kill(block), timeout=10)

        assert killed.run_id == execution.run_id
        assert killed.status is ExecutionStatus.KILLED

    @pytest.mark.asyncio
    async def test_output_before_kill_is_recorded(self, engine, published):
        """Test that output produced before a kill is kept and sent before the end event."""
        block = _single_block(engine, language="sh", source="echo before; sleep 30")

        execution = await engine.start(block)

        async def first_output():
            while engine.store.length(execution.run_id) == 0:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(first_output(), timeout=5)
        killed = await engine.kill(block)

        assert killed.status is ExecutionStatus.KILLED
        recording = engine.get_recording(execution.run_id)
        assert b"before\n" in b"".join(e.data for e in recording)
        types = [type(e) for e in published]
        last_output = max(i for i, t in enumerate(types) if t is ExecutionOutput)
        assert last_output < types.index(ExecutionEnded)

    @pytest.mark.asyncio
    async def test_kill_after_exit_keeps_exit_status(self, engine):
        """Test that a kill arriving after the shell exited does not rewrite its outcome."""
        # The background sleep keeps stdout open after the shell exits
        block = _single_block(engine, language="sh", source="sleep 2 & exit 1")

        execution = await engine.start(block)
        await asyncio.sleep(0.5)
        begin = time.monotonic()
        finished = await engine.kill(block)
        elapsed = time.monotonic() - begin

        assert finished.run_id == execution.run_id
        assert finished.status is ExecutionStatus.FAILED
        assert finished.exit_code == 1
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_kill_during_slow_spawn_escalates(self, engine):
        """Test that a kill issued while the process is still spawning ends the run."""
        block = _single_block(
            engine,
            driver="stubborn",
            source="",
            drivers={"stubborn": {
                "command": "sh",
                "args": ["-c", "trap '' TERM; while true; do sleep 0.1; done"],
            }},
        )
        engine.kill_grace_seconds = 0.2
        spawn = asyncio.create_subprocess_exec

        async def slow_spawn(*args, **kwargs):
            process = await spawn(*args, **kwargs)
            await asyncio.sleep(0.5)
            return process

        with patch.object(asyncio, "create_subprocess_exec", side_effect=slow_spawn):
            start_task = asyncio.create_task(engine.start(block))
            await asyncio.sleep(0.05)
            killed = await asyncio.wait_for(engine.kill(block), timeout=10)
            await start_task

        assert killed.status is ExecutionStatus.KILLED
        assert engine.running() == []

    @pytest.mark.asyncio
    async def test_kill_idle_block(self, engine):
        """Test that killing a block that is not running is an error."""
        with pytest.raises(NotRunning):
            await engine.kill(ECHO)

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, engine):
        """Test that shutdown leaves no running processes."""
        await engine.start(SLEEP)

        await engine.shutdown()

        assert engine.running() == []


class TestSpawnFailure:
    """Tests for interpreters that cannot be started."""

    @pytest.mark.asyncio
    async def test_missing_command_records_failed_run(self, deck, published):
        """Test that a spawn failure produces a failed run and events."""
        drivers = default_drivers()
        drivers["sh"] = DriverConfig(command="livedeck-no-such-interpreter")
        engine = ExecutionEngine(RecordingStore(), DriverRegistry(drivers), publish=published.append)
        engine.set_deck(deck)

        with pytest.raises(ProcessSpawnFailed) as exc_info:
            await engine.start(ECHO)

        run_id = exc_info.value.details["run_id"]
        execution = engine.get_execution(run_id)
        assert execution.status is ExecutionStatus.FAILED
        assert execution.error
        assert engine.running_for(ECHO) is None
        assert engine.get_recording(run_id) == ()
        assert [type(e) for e in published] == [ExecutionStarted, ExecutionEnded]

    @pytest.mark.asyncio
    async def test_unknown_language(self, engine):
        """Test that a block without a matching driver fails to start."""
        deck = Deck.from_document({"slides": [{"code_blocks": [{"language": "cobol", "source": ""}]}]})
        engine.set_deck(deck)

        with pytest.raises(DriverNotFound) as exc_info:
            await engine.start(code_block_id(0, 0))

        assert exc_info.value.details["driver"] == "cobol"

    @pytest.mark.asyncio
    async def test_deck_driver_override(self, engine):
        """Test that a deck can declare its own interpreter."""
        deck = Deck.from_document({
            "drivers": {"greeting": {"command": "sh", "args": ["-c", "echo custom"]}},
            "slides": [{"code_blocks": [{"driver": "greeting", "source": "ignored"}]}],
        })
        engine.set_deck(deck)

        execution = await engine.start(code_block_id(0, 0))
        await _wait_finished(engine, execution.run_id)

        assert b"".join(e.data for e in engine.get_recording(execution.run_id)) == b"custom\n"

    @pytest.mark.asyncio
    async def test_spawn_failures_keep_earlier_recordings(self, published):
        """Test that failed starts do not push real runs out of retention."""
        engine = ExecutionEngine(
            RecordingStore(max_runs_per_block=1),
            DriverRegistry(default_drivers()),
            publish=published.append,
        )
        block = _single_block(engine, language="sh", source="echo ok")
        execution = await engine.start(block)
        await _wait_finished(engine, execution.run_id)

        failed = []
        for _ in range(3):
            _single_block(engine, driver="livedeck-missing", source="")
            with pytest.raises(DriverNotFound) as exc_info:
                await engine.start(block)
            failed.append(exc_info.value.details["run_id"])

        assert engine.store.run_ids(block) == [execution.run_id, failed[-1]]
        assert engine.get_execution(execution.run_id).status is ExecutionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_evicted_runs_are_reported(self, deck, published):
        """Test that the prune listener hears which runs are still stored."""
        pruned = []
        engine = ExecutionEngine(
            RecordingStore(max_runs_per_block=1),
            DriverRegistry(default_drivers()),
            publish=published.append,
            on_prune=pruned.append,
        )
        engine.set_deck(deck)

        first = await engine.start(ECHO)
        await _wait_finished(engine, first.run_id)
        second = await engine.start(ECHO)
        await _wait_finished(engine, second.run_id)

        assert pruned == [{second.run_id}]
        with pytest.raises(RunNotFound):
            engine.get_execution(first.run_id)



class TestSplitUtf8:
    """Tests for keeping multi-byte characters in one chunk."""

    def test_complete_text(self):
        assert split_utf8("héllo".encode()) == ("héllo".encode(), b"")

    def test_incomplete_trailing_character(self):
        data = "ab€".encode()
        complete, pending = split_utf8(data[:-1])

        assert complete == b"ab"
        assert pending == data[2:-1]
        assert (complete + pending + data[-1:]).decode() == "ab€"

    def test_empty(self):
        assert split_utf8(b"") == (b"", b"")

"""Presentation runtime: wires the deck, navigation, execution and sync together."""

import asyncio
import logging
from typing import Optional

from livedeck.core import Settings, get_settings
from livedeck.core.errors import DeckLoadError, Forbidden, LiveDeckError
from livedeck.models.deck import Deck
from livedeck.models.events import (
    DeckReplaced,
    ErrorMessage,
    GotoSlide,
    KillExecution,
    NavigationChanged,
    Next,
    Prev,
    Resync,
    RunCodeBlock,
    Snapshot,
)
from livedeck.models.execution import Execution
from livedeck.models.navigation import NavigationState, Transition
from livedeck.services.execution import DriverRegistry, ExecutionEngine
from livedeck.services.navigation import NavigationService
from livedeck.services.recorder import RecordingStore
from livedeck.services.sync import ClientSession, SyncHub

from .loader import load_deck_file

logger = logging.getLogger(__name__)


class PresentationRuntime:
    """
    Process-wide presentation state with an explicit lifecycle.

    Created when the first deck loads, reset on every reload and shut down
    with the server. Navigation commands and execution starts are serialised
    by one lock so several presenter views cannot interleave; kills wait for
    the process outside that lock so a slow shutdown never stalls navigation.
    """

    def __init__(self, deck: Deck, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._deck = deck
        self._lock = asyncio.Lock()

        self.store = RecordingStore(
            max_runs_per_block=self._settings.recording_max_runs_per_block,
            max_total_bytes=self._settings.recording_max_total_bytes,
        )
        self.hub = SyncHub(
            self._build_snapshot,
            client_queue_size=self._settings.sync_client_queue_size,
            event_log_size=self._settings.sync_event_log_size,
        )
        self.navigation = NavigationService(deck, on_transition=self._on_transition)
        self.engine = ExecutionEngine(
            self.store,
            DriverRegistry(self._settings.drivers),
            publish=self.hub.publish,
            kill_grace_seconds=self._settings.kill_grace_seconds,
            cast_dir=self._settings.recordings_dir if self._settings.persist_recordings else None,
            terminal_size=(self._settings.terminal_width, self._settings.terminal_height),
            on_prune=self.hub.forget_runs,
        )
        self.engine.set_deck(deck)

    @property
    def deck(self) -> Deck:
        return self._deck

    @property
    def settings(self) -> Settings:
        return self._settings

    # -- deck lifecycle -----------------------------------------------------

    async def reload(self, deck: Deck) -> None:
        """Swap in a new deck and tell every view."""
        async with self._lock:
            previous = self._deck
            self._deck = deck
            self.engine.detach_all()
            self.engine.set_deck(deck)
            dropped = self.store.clear_terminal()
            self.hub.forget_runs(set(self.store.run_ids()))
            self.hub.publish(DeckReplaced(deck_id=deck.id, title=deck.title, slide_count=len(deck)))
            self.navigation.reset(deck)
        logger.info(f"🔄 Deck {previous.id} replaced by {deck.id} ({dropped} recording(s) dropped)")

    async def reload_from_file(self) -> Deck:
        if self._settings.deck_path is None:
            raise DeckLoadError("No deck file configured")
        deck = load_deck_file(self._settings.deck_path)
        await self.reload(deck)
        return deck

    async def shutdown(self) -> None:
        await self.engine.shutdown()
        self.hub.close()

    # -- navigation ---------------------------------------------------------

    def current_state(self) -> NavigationState:
        return self.navigation.current_state()

    async def next(self) -> Transition:
        async with self._lock:
            return self.navigation.next()

    async def prev(self) -> Transition:
        async with self._lock:
            return self.navigation.prev()

    async def goto_slide(self, index: int) -> Transition:
        async with self._lock:
            return self.navigation.goto_slide(index)

    # -- execution ----------------------------------------------------------

    async def run_code_block(self, code_block_id: str) -> Execution:
        async with self._lock:
            return await self.engine.start(code_block_id)

    async def kill_execution(self, code_block_id: str) -> Execution:
        return await self.engine.kill(code_block_id)

    # -- commands -----------------------------------------------------------

    async def handle_command(self, session: ClientSession, command) -> None:
        """
        Apply a command received from a view.

        Control errors go back to the issuing presenter only. Audience views
        are receive-only; their control commands are dropped.
        """
        if isinstance(command, Resync):
            self.hub.resync(session, command.last_seq)
            return

        try:
            self.hub.authorize(session, command.type)
        except Forbidden as e:
            logger.warning(e.message)
            return

        try:
            await self.execute(command)
        except LiveDeckError as e:
            logger.info(f"Command {command.type} from {session.client_id} failed: {e.message}")
            self.hub.send(session, ErrorMessage(code=e.code, message=e.message, command=command.type))

    async def execute(self, command):
        if isinstance(command, Next):
            return await self.next()
        if isinstance(command, Prev):
            return await self.prev()
        if isinstance(command, GotoSlide):
            return await self.goto_slide(command.index)
        if isinstance(command, RunCodeBlock):
            return await self.run_code_block(command.code_block_id)
        if isinstance(command, KillExecution):
            return await self.kill_execution(command.code_block_id)
        raise TypeError(f"Unhandled command: {type(command).__name__}")

    # -- internals ----------------------------------------------------------

    def _on_transition(self, state: NavigationState) -> None:
        self.hub.publish(NavigationChanged.from_state(state))

    def _build_snapshot(self, seq: int, runs: Optional[set[str]]) -> Snapshot:
        recordings = {
            run_id: list(self.store.read(run_id))
            for run_id in self.store.run_ids()
            if runs is None or run_id in runs
        }
        tails = {
            execution.run_id: self.store.length(execution.run_id)
            for execution in self.engine.running()
            if self.store.has_run(execution.run_id)
        }
        return Snapshot(
            deck_id=self._deck.id,
            seq=seq,
            navigation=self.navigation.current_state(),
            executions=self.engine.executions(),
            recordings=recordings,
            tails=tails,
        )


_presentation_runtime: Optional[PresentationRuntime] = None


def get_presentation_runtime() -> PresentationRuntime:
    """Get the process-wide runtime, loading the configured deck on first use."""
    global _presentation_runtime
    if _presentation_runtime is None:
        settings = get_settings()
        if settings.deck_path is None:
            raise DeckLoadError("No deck configured; set LIVEDECK_DECK_PATH")
        _presentation_runtime = PresentationRuntime(load_deck_file(settings.deck_path), settings)
    return _presentation_runtime


def set_presentation_runtime(runtime: Optional[PresentationRuntime]) -> None:
    """Install (or clear) the process-wide runtime."""
    global _presentation_runtime
    _presentation_runtime = runtime

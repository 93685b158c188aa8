"""Polls the deck document and triggers a reload when it changes."""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from livedeck.core.errors import DeckLoadError
from livedeck.models.deck import Deck

from .loader import load_deck_file

logger = logging.getLogger(__name__)

DeckCallback = Callable[[Deck], Awaitable[None]]


class DeckWatcher:
    """
    Watches one deck file by polling its size and mtime.

    A change must be stable for one extra interval before it is loaded, so a
    half-written file is not picked up. Parse failures are logged and the
    current deck stays in place.
    """

    def __init__(self, path: Path, on_change: DeckCallback, interval: float = 0.5):
        self.path = Path(path)
        self.interval = interval
        self._on_change = on_change
        self._task: Optional[asyncio.Task] = None
        self._signature = self._stat()
        self._last_deck_id: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, current_deck_id: Optional[str] = None) -> None:
        if self.running:
            return
        self._last_deck_id = current_deck_id
        self._task = asyncio.create_task(self._run(), name="deck-watcher")
        logger.info(f"👀 Watching {self.path} for changes")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def check(self) -> bool:
        """Check once; returns True if a new deck was handed to the callback."""
        signature = self._stat()
        if signature == self._signature:
            return False

        await asyncio.sleep(self.interval)
        if self._stat() != signature:
            # Still being written; pick it up on the next pass
            return False
        self._signature = signature
        if signature is None:
            logger.warning(f"Deck file {self.path} disappeared; keeping the current deck")
            return False

        try:
            deck = load_deck_file(self.path)
        except DeckLoadError as e:
            logger.error(f"Not reloading: {e.message}")
            return False
        if deck.id == self._last_deck_id:
            return False

        self._last_deck_id = deck.id
        await self._on_change(deck)
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check()
            except Exception:
                logger.exception("Deck reload failed")

    def _stat(self) -> Optional[tuple[int, int]]:
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return (stat.st_mtime_ns, stat.st_size)

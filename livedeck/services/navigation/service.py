"""Slide/fragment navigation state machine."""

import logging
from typing import Callable, Optional

from livedeck.core.errors import OutOfRange
from livedeck.models.deck import Deck
from livedeck.models.navigation import NavigationState, Transition

logger = logging.getLogger(__name__)

TransitionListener = Callable[[NavigationState], None]


class NavigationService:
    """
    Owns the current ``NavigationState`` for one deck load.

    Every position satisfies ``0 <= slide_index < len(deck)`` and
    ``0 <= fragment_index <= last_fragment_of(slide)``. Operations that would
    leave that range are clamped no-ops (``next``/``prev``) or raise
    ``OutOfRange`` (``goto_slide``). Only changed transitions reach the
    listener, so boundary presses never produce broadcast noise.

    The service is synchronous and expects a single writer; the presentation
    runtime serialises callers.
    """

    def __init__(self, deck: Deck, on_transition: Optional[TransitionListener] = None):
        self._deck = deck
        self._state = NavigationState()
        self._on_transition = on_transition

    @property
    def deck(self) -> Deck:
        return self._deck

    def current_state(self) -> NavigationState:
        """Read-only snapshot of the current position."""
        return self._state

    def next(self) -> Transition:
        slide, fragment = self._state.as_tuple()
        if fragment < self._deck.last_fragment_of(slide):
            return self._move(slide, fragment + 1)
        if slide < len(self._deck) - 1:
            return self._move(slide + 1, 0)
        return Transition(state=self._state, changed=False)

    def prev(self) -> Transition:
        slide, fragment = self._state.as_tuple()
        if fragment > 0:
            return self._move(slide, fragment - 1)
        if slide > 0:
            # Land on the previous slide's last fragment so nothing is skipped
            return self._move(slide - 1, self._deck.last_fragment_of(slide - 1))
        return Transition(state=self._state, changed=False)

    def goto_slide(self, index: int) -> Transition:
        if not 0 <= index < len(self._deck):
            raise OutOfRange(index, len(self._deck))
        return self._move(index, 0)

    def reset(self, deck: Deck) -> Transition:
        """Install a newly loaded deck and return to the first position."""
        self._deck = deck
        self._state = NavigationState()
        logger.info(f"Navigation reset for deck {deck.id} ({len(deck)} slides)")
        self._emit()
        return Transition(state=self._state, changed=True)

    def _move(self, slide: int, fragment: int) -> Transition:
        target = NavigationState(slide_index=slide, fragment_index=fragment)
        if target == self._state:
            return Transition(state=self._state, changed=False)
        self._state = target
        logger.debug(f"Navigated to slide {slide}, fragment {fragment}")
        self._emit()
        return Transition(state=target, changed=True)

    def _emit(self) -> None:
        if self._on_transition:
            self._on_transition(self._state)

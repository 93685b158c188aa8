"""
Unit tests for the navigation state machine.
"""
import random

import pytest

from livedeck.core.errors import OutOfRange
from livedeck.models.deck import Deck
from livedeck.models.navigation import NavigationState
from livedeck.services.navigation import NavigationService


def _state(slide, fragment):
    return NavigationState(slide_index=slide, fragment_index=fragment)


@pytest.fixture
def transitions():
    return []


@pytest.fixture
def service(deck, transitions):
    return NavigationService(deck, on_transition=transitions.append)


class TestNext:
    """Tests for moving forward."""

    def test_steps_through_fragments_then_slides(self, service):
        """Test 3 fragments on slide 0 followed by a slide without fragments."""
        visited = [service.next().state.as_tuple() for _ in range(3)]

        assert visited == [(0, 1), (0, 2), (1, 0)]

    def test_reaches_last_position_after_total_minus_one(self, service, deck):
        """Test that every fragment is visited exactly once."""
        seen = [service.current_state().as_tuple()]
        for _ in range(deck.total_fragments - 1):
            seen.append(service.next().state.as_tuple())

        assert len(set(seen)) == deck.total_fragments
        assert seen[-1] == (2, 1)

    def test_next_at_end_is_noop(self, service, deck, transitions):
        """Test that pressing next on the last fragment changes nothing."""
        for _ in range(deck.total_fragments - 1):
            service.next()
        transitions.clear()

        result = service.next()

        assert result.changed is False
        assert result.state == _state(2, 1)
        assert transitions == []


class TestPrev:
    """Tests for moving backward."""

    def test_prev_lands_on_last_fragment_of_previous_slide(self, service):
        """Test that stepping back onto a slide shows all of its fragments."""
        service.goto_slide(1)

        assert service.prev().state == _state(0, 2)

    def test_prev_at_start_is_noop(self, service, transitions):
        """Test that pressing prev on the first fragment changes nothing."""
        result = service.prev()

        assert result.changed is False
        assert result.state == _state(0, 0)
        assert transitions == []

    def test_prev_undoes_next(self, service, deck):
        """Test that prev after a changing next returns to the same position."""
        for _ in range(deck.total_fragments - 1):
            before = service.current_state()
            assert service.next().changed
            service.prev()
            assert service.current_state() == before
            service.next()


class TestGotoSlide:
    """Tests for jumping to a slide."""

    def test_goto_first_fragment(self, service):
        """Test that goto lands on the slide's first fragment."""
        result = service.goto_slide(2)

        assert result.changed is True
        assert result.state == _state(2, 0)

    @pytest.mark.parametrize("index", [-1, 3, 100])
    def test_goto_out_of_range(self, service, transitions, index):
        """Test that invalid indices raise and leave the state untouched."""
        with pytest.raises(OutOfRange) as exc_info:
            service.goto_slide(index)

        assert exc_info.value.details == {"index": index, "slide_count": 3}
        assert service.current_state() == _state(0, 0)
        assert transitions == []

    def test_goto_current_position_is_unchanged(self, service, transitions):
        """Test that jumping to where we already are emits nothing."""
        result = service.goto_slide(0)

        assert result.changed is False
        assert transitions == []


class TestTransitions:
    """Tests for listener notifications and invariants."""

    def test_listener_receives_changed_states(self, service, transitions):
        """Test that every changing operation notifies once."""
        service.next()
        service.goto_slide(2)
        service.prev()

        assert transitions == [_state(0, 1), _state(2, 0), _state(1, 0)]

    def test_reset_installs_new_deck(self, service, transitions):
        """Test that a reload returns to the first position."""
        service.goto_slide(2)
        new_deck = Deck.from_document({"slides": [{"title": "only"}]})

        result = service.reset(new_deck)

        assert service.deck is new_deck
        assert result.state == _state(0, 0)
        assert transitions[-1] == _state(0, 0)

    def test_random_walk_stays_in_bounds(self, service, deck):
        """Test that arbitrary command sequences never leave the deck."""
        rng = random.Random(42)
        for _ in range(500):
            op = rng.choice(["next", "prev", "goto"])
            if op == "next":
                service.next()
            elif op == "prev":
                service.prev()
            else:
                try:
                    service.goto_slide(rng.randint(-1, len(deck)))
                except OutOfRange:
                    pass

            state = service.current_state()
            assert 0 <= state.slide_index < len(deck)
            assert 0 <= state.fragment_index <= deck.last_fragment_of(state.slide_index)

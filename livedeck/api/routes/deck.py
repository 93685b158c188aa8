"""Deck API endpoints."""
import logging
from typing import Any

from fastapi import APIRouter

from livedeck.api.errors import as_http_exception
from livedeck.core import get_debug_status
from livedeck.core.errors import LiveDeckError
from livedeck.services.presentation import get_presentation_runtime

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["deck"])


@router.get("/deck")
async def get_deck() -> dict[str, Any]:
    """
    Get the currently loaded deck.

    Code block ids in the response are the ones every execution endpoint
    and real-time command expects.
    """
    runtime = get_presentation_runtime()
    deck = runtime.deck
    return {
        **deck.model_dump(mode="json", exclude={"drivers"}),
        "slide_count": len(deck),
        "total_fragments": deck.total_fragments,
    }


@router.post("/deck/reload")
async def reload_deck() -> dict[str, Any]:
    """Reload the deck document from disk and reset every view to the first slide."""
    runtime = get_presentation_runtime()
    try:
        deck = await runtime.reload_from_file()
    except LiveDeckError as e:
        logger.error(f"Deck reload failed: {e.message}")
        raise as_http_exception(e)

    return {
        "deck_id": deck.id,
        "slide_count": len(deck),
        "seq": runtime.hub.seq,
    }


@router.get("/status")
async def get_status() -> dict[str, Any]:
    """Current deck, broadcast position and connected views."""
    runtime = get_presentation_runtime()
    return {
        "deck_id": runtime.deck.id,
        "seq": runtime.hub.seq,
        "navigation": runtime.current_state().model_dump(),
        "clients": runtime.hub.client_counts(),
        "running": len(runtime.engine.running()),
        "recording_bytes": runtime.store.total_bytes(),
        **get_debug_status(),
    }

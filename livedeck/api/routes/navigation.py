"""Navigation API endpoints.

HTTP fallback for presenter tools that cannot hold a WebSocket open (e.g. a
clicker bridge). Same semantics as the real-time commands.
"""
import logging
from typing import Any

from fastapi import APIRouter

from livedeck.api.errors import as_http_exception
from livedeck.core.errors import OutOfRange
from livedeck.models.navigation import Transition
from livedeck.services.presentation import get_presentation_runtime

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/navigation", tags=["navigation"])


def _transition_response(transition: Transition) -> dict[str, Any]:
    return {
        **transition.state.model_dump(),
        "changed": transition.changed,
    }


@router.get("")
async def get_navigation() -> dict[str, Any]:
    """Get the current slide and fragment."""
    runtime = get_presentation_runtime()
    return runtime.current_state().model_dump()


@router.post("/next")
async def next_fragment() -> dict[str, Any]:
    """Advance one fragment, or to the next slide."""
    return _transition_response(await get_presentation_runtime().next())


@router.post("/prev")
async def prev_fragment() -> dict[str, Any]:
    """Step back one fragment, or to the previous slide's last fragment."""
    return _transition_response(await get_presentation_runtime().prev())


@router.post("/goto/{index}")
async def goto_slide(index: int) -> dict[str, Any]:
    """Jump to a slide's first fragment."""
    try:
        transition = await get_presentation_runtime().goto_slide(index)
    except OutOfRange as e:
        raise as_http_exception(e)
    return _transition_response(transition)

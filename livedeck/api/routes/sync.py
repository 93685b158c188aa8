"""Real-time presenter/audience channel."""
import asyncio
import logging
from contextlib import suppress
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from livedeck.models.events import Command, command_adapter
from livedeck.services.presentation import get_presentation_runtime
from livedeck.services.sync import ClientSession, Role

logger = logging.getLogger(__name__)
router = APIRouter(tags=["sync"])


def parse_command(raw: str) -> Optional[Command]:
    """Parse a client message; malformed or unknown messages are ignored."""
    try:
        return command_adapter.validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid command: {e.error_count()} error(s) in {raw[:200]!r}")
        return None


@router.websocket("/ws")
async def sync_socket(websocket: WebSocket, role: str = Query(default=Role.AUDIENCE.value)):
    """
    Connect a presenter or audience view.

    The first message is always a full snapshot; after that the view gets
    every sequenced event in order. Views that detect a gap send
    ``{"type": "resync", "last_seq": N}`` and receive a new snapshot.
    """
    try:
        client_role = Role(role)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    runtime = get_presentation_runtime()
    await websocket.accept()
    session = runtime.hub.connect(client_role)
    sender = asyncio.create_task(_send_loop(websocket, session), name=f"ws-send-{session.client_id}")

    try:
        while True:
            raw = await websocket.receive_text()
            command = parse_command(raw)
            if command is not None:
                await runtime.handle_command(session, command)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception(f"Connection {session.client_id} failed")
    finally:
        runtime.hub.disconnect(session)
        sender.cancel()
        with suppress(asyncio.CancelledError):
            await sender


async def _send_loop(websocket: WebSocket, session: ClientSession) -> None:
    while True:
        message = await session.next_message()
        if message is None:
            await websocket.close()
            return
        try:
            await websocket.send_text(message.model_dump_json())
        except (WebSocketDisconnect, RuntimeError, OSError):
            logger.debug(f"Connection {session.client_id} closed while sending")
            return

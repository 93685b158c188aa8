"""Code execution and recording API endpoints."""
import logging
from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse, StreamingResponse

from livedeck.api.errors import as_http_exception
from livedeck.api.sse import sse_done, sse_event
from livedeck.core.errors import LiveDeckError
from livedeck.services.presentation import get_presentation_runtime
from livedeck.services.recorder import to_asciicast

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["executions"])


@router.post("/code-blocks/{code_block_id}/run", status_code=201)
async def run_code_block(code_block_id: str) -> dict[str, Any]:
    """
    Start a code block.

    Returns 409 if the block is already running and 502 if its interpreter
    could not be started; in that case the failed run is still recorded.
    """
    runtime = get_presentation_runtime()
    try:
        execution = await runtime.run_code_block(code_block_id)
    except LiveDeckError as e:
        raise as_http_exception(e)
    return execution.model_dump(mode="json")


@router.post("/code-blocks/{code_block_id}/kill")
async def kill_code_block(code_block_id: str) -> dict[str, Any]:
    """Stop a running code block and wait until the process is gone."""
    runtime = get_presentation_runtime()
    try:
        execution = await runtime.kill_execution(code_block_id)
    except LiveDeckError as e:
        raise as_http_exception(e)
    return execution.model_dump(mode="json")


@router.get("/executions")
async def list_executions() -> dict[str, Any]:
    """All runs for the current deck load, oldest first."""
    runtime = get_presentation_runtime()
    executions = [e.model_dump(mode="json") for e in runtime.engine.executions()]
    return {"executions": executions, "total": len(executions)}


@router.get("/executions/{run_id}")
async def get_execution(run_id: str) -> dict[str, Any]:
    runtime = get_presentation_runtime()
    try:
        execution = runtime.engine.get_execution(run_id)
    except LiveDeckError as e:
        raise as_http_exception(e)
    return execution.model_dump(mode="json")


@router.get("/runs/{run_id}/recording")
async def get_recording(run_id: str) -> dict[str, Any]:
    """The complete recording of a finished run."""
    runtime = get_presentation_runtime()
    try:
        events = runtime.engine.get_recording(run_id)
    except LiveDeckError as e:
        raise as_http_exception(e)
    return {
        "run_id": run_id,
        "events": [event.model_dump(mode="json") for event in events],
        "total": len(events),
    }


@router.get("/runs/{run_id}/cast", response_class=PlainTextResponse)
async def get_cast(run_id: str) -> PlainTextResponse:
    """A finished run as an asciicast v2 document for standard terminal players."""
    runtime = get_presentation_runtime()
    try:
        events = runtime.engine.get_recording(run_id)
        execution = runtime.engine.get_execution(run_id)
    except LiveDeckError as e:
        raise as_http_exception(e)

    settings = runtime.settings
    cast = to_asciicast(
        events,
        width=settings.terminal_width,
        height=settings.terminal_height,
        title=execution.code_block_id,
        timestamp=execution.started_at,
    )
    return PlainTextResponse(
        cast,
        media_type="application/x-asciicast",
        headers={"Content-Disposition": f'inline; filename="{run_id}.cast"'},
    )


@router.get("/runs/{run_id}/tail")
async def tail_recording(run_id: str, offset: int = Query(default=0, ge=0)):
    """
    Stream a run's output from ``offset`` as Server-Sent Events.

    Works for running and finished runs alike; a view that reconnects passes
    the offset it already has. Emits:
    - {"type": "output", ...RecordingEvent} - one per chunk
    - {"type": "done", "status": "...", "exit_code": N} - run finished
    """
    runtime = get_presentation_runtime()
    try:
        events = runtime.engine.tail_recording(run_id, offset)
    except LiveDeckError as e:
        raise as_http_exception(e)

    async def event_stream():
        async for event in events:
            yield sse_event("output", event.model_dump(mode="json"))
        try:
            execution = runtime.engine.get_execution(run_id)
        except LiveDeckError:
            yield sse_done()
            return
        yield sse_done({"status": execution.status.value, "exit_code": execution.exit_code})

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )

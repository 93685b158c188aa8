"""Server-Sent Event formatting helpers."""
import json


def sse_event(event_type: str, data: dict | None = None) -> str:
    """Format a Server-Sent Event."""
    payload = {"type": event_type, **(data or {})}
    return f"data: {json.dumps(payload)}\n\n"


def sse_done(data: dict | None = None) -> str:
    """Send completion SSE."""
    return sse_event("done", data)

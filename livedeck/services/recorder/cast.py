"""asciicast v2 export so any standard terminal player can replay a run."""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from livedeck.models.execution import RecordingEvent

logger = logging.getLogger(__name__)

CAST_VERSION = 2


def cast_header(
    width: int = 80,
    height: int = 24,
    title: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> dict:
    header = {"version": CAST_VERSION, "width": width, "height": height}
    if timestamp is not None:
        header["timestamp"] = int(timestamp.timestamp())
    if title:
        header["title"] = title
    return header


def to_asciicast(
    events: Iterable[RecordingEvent],
    width: int = 80,
    height: int = 24,
    title: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> str:
    """
    Render recording events as an asciicast v2 document.

    stderr has no dedicated event code in the format, so both streams are
    written as ``"o"`` output in time order.
    """
    lines = [json.dumps(cast_header(width, height, title, timestamp))]
    for event in events:
        lines.append(json.dumps([round(event.time_ms / 1000, 3), "o", event.text]))
    return "\n".join(lines) + "\n"


def write_cast(path: Path, events: Iterable[RecordingEvent], **header) -> Path:
    """Write a cast file, creating the parent directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_asciicast(events, **header), encoding="utf-8")
    logger.info(f"Saved recording to {path}")
    return path

"""Execution and recording models."""
import base64
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer, field_validator


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class Stream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class Execution(BaseModel):
    """
    One invocation of a code block.

    Instances are snapshots: the engine replaces its record with an updated
    copy on every status change, so readers never see a half-written record.
    """
    model_config = ConfigDict(frozen=True)

    code_block_id: str = Field(..., description="Code block that was run")
    run_id: str = Field(..., description="Unique run identifier")
    status: ExecutionStatus = Field(default=ExecutionStatus.RUNNING, description="Lifecycle status")
    started_at: datetime = Field(..., description="Wall-clock start time")
    ended_at: Optional[datetime] = Field(default=None, description="Wall-clock end time")
    exit_code: Optional[int] = Field(default=None, description="Process exit code")
    error: Optional[str] = Field(default=None, description="Spawn or driver error")
    pid: Optional[int] = Field(default=None, description="Process id while running")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> Optional[int]:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)


class RecordingEvent(BaseModel):
    """
    A timestamped chunk of terminal output.

    On the wire ``data`` is base64 so arbitrary bytes survive unchanged;
    ``text`` carries a lossy UTF-8 rendering for display.
    """
    model_config = ConfigDict(frozen=True)

    run_id: str = Field(..., description="Run this output belongs to")
    offset: int = Field(..., ge=0, description="Position in the run's log")
    time_ms: int = Field(..., ge=0, description="Milliseconds since process start")
    stream: Stream = Field(..., description="stdout or stderr")
    data: bytes = Field(default=b"", description="Raw output bytes")

    @field_validator("data", mode="before")
    @classmethod
    def decode_data(cls, value):
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value

    @field_serializer("data", when_used="json")
    def serialize_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")

    @computed_field
    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

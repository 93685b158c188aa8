"""
Real-time channel message models.

Server-to-client events form a closed set discriminated by ``type``; every
event carries the hub-assigned ``seq``. Client-to-server commands are a
separate closed set. Both are parsed with pydantic discriminated unions so
unknown shapes are rejected at the edge.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .execution import Execution, ExecutionStatus, RecordingEvent
from .navigation import NavigationState


# =============================================================================
# Events (server -> client, sequenced)
# =============================================================================

class SyncEvent(BaseModel):
    """Base for all sequenced events; ``seq`` is 0 until the hub publishes it."""

    seq: int = Field(default=0, ge=0, description="Global broadcast sequence number")


class DeckReplaced(SyncEvent):
    type: Literal["deck_replaced"] = "deck_replaced"
    deck_id: str
    title: str = ""
    slide_count: int = Field(..., ge=1)


class NavigationChanged(SyncEvent):
    type: Literal["navigation_changed"] = "navigation_changed"
    slide_index: int = Field(..., ge=0)
    fragment_index: int = Field(..., ge=0)

    @classmethod
    def from_state(cls, state: NavigationState) -> "NavigationChanged":
        return cls(slide_index=state.slide_index, fragment_index=state.fragment_index)

    @property
    def state(self) -> NavigationState:
        return NavigationState(slide_index=self.slide_index, fragment_index=self.fragment_index)


class ExecutionStarted(SyncEvent):
    type: Literal["execution_started"] = "execution_started"
    code_block_id: str
    run_id: str
    execution: Optional[Execution] = None


class ExecutionOutput(SyncEvent):
    type: Literal["execution_output"] = "execution_output"
    run_id: str
    event: RecordingEvent


class ExecutionEnded(SyncEvent):
    type: Literal["execution_ended"] = "execution_ended"
    run_id: str
    status: ExecutionStatus
    exit_code: Optional[int] = None
    execution: Optional[Execution] = None


Event = Annotated[
    Union[DeckReplaced, NavigationChanged, ExecutionStarted, ExecutionOutput, ExecutionEnded],
    Field(discriminator="type"),
]
event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


# =============================================================================
# Unsequenced server messages
# =============================================================================

class Snapshot(BaseModel):
    """Full state a view needs to render from scratch."""

    type: Literal["snapshot"] = "snapshot"
    deck_id: str
    seq: int = Field(..., ge=0, description="Last sequence number reflected in this snapshot")
    navigation: NavigationState
    executions: list[Execution] = Field(default_factory=list)
    recordings: dict[str, list[RecordingEvent]] = Field(
        default_factory=dict,
        description="Recorded output for runs the client may have missed"
    )
    tails: dict[str, int] = Field(
        default_factory=dict,
        description="Next recording offset for each running run"
    )


class ErrorMessage(BaseModel):
    """Control error, delivered only to the presenter that caused it."""

    type: Literal["error"] = "error"
    code: str
    message: str
    command: Optional[str] = None


# =============================================================================
# Commands (client -> server)
# =============================================================================

class Next(BaseModel):
    type: Literal["next"] = "next"


class Prev(BaseModel):
    type: Literal["prev"] = "prev"


class GotoSlide(BaseModel):
    type: Literal["goto_slide"] = "goto_slide"
    index: int


class RunCodeBlock(BaseModel):
    type: Literal["run_code_block"] = "run_code_block"
    code_block_id: str


class KillExecution(BaseModel):
    type: Literal["kill_execution"] = "kill_execution"
    code_block_id: str


class Resync(BaseModel):
    """Request a fresh snapshot; allowed for every role."""

    type: Literal["resync"] = "resync"
    last_seq: int = Field(default=0, ge=0)


Command = Annotated[
    Union[Next, Prev, GotoSlide, RunCodeBlock, KillExecution, Resync],
    Field(discriminator="type"),
]
command_adapter: TypeAdapter[Command] = TypeAdapter(Command)

CONTROL_COMMANDS = frozenset({"next", "prev", "goto_slide", "run_code_block", "kill_execution"})

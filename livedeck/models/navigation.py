"""Navigation position models."""
from pydantic import BaseModel, ConfigDict, Field


class NavigationState(BaseModel):
    """Where the presentation currently is."""
    model_config = ConfigDict(frozen=True)

    slide_index: int = Field(default=0, ge=0, description="Current slide")
    fragment_index: int = Field(default=0, ge=0, description="Current fragment within the slide")

    def as_tuple(self) -> tuple[int, int]:
        return (self.slide_index, self.fragment_index)


class Transition(BaseModel):
    """Result of a navigation operation."""
    model_config = ConfigDict(frozen=True)

    state: NavigationState
    changed: bool = False

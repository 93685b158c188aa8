"""Deck-related Pydantic models.

A ``Deck`` is built once per load from the parsed deck document and is never
mutated afterwards; a reload builds a new one and swaps it in.
"""
import hashlib
import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from livedeck.core.config import DriverConfig

CODE_BLOCK_ID_LENGTH = 16


def code_block_id(slide_index: int, position: int) -> str:
    """Deterministic identity of a code block, stable across reloads."""
    digest = hashlib.sha256(f"{slide_index}:{position}".encode("utf-8")).hexdigest()
    return digest[:CODE_BLOCK_ID_LENGTH]


class Fragment(BaseModel):
    """A progressive-reveal step within a slide."""
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="Ordinal within the slide")
    content: str = Field(default="", description="Opaque fragment content")


class CodeBlock(BaseModel):
    """An executable snippet embedded in a slide."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Hash of slide index and block position")
    slide_index: int = Field(..., ge=0, description="Owning slide")
    position: int = Field(..., ge=0, description="Block position within the slide")
    language: str = Field(default="shell", description="Language/interpreter tag")
    source: str = Field(default="", description="Source text fed to the interpreter")
    driver: Optional[str] = Field(default=None, description="Explicit driver name, overrides language")
    connection: Optional[str] = Field(default=None, description="Named connection of the driver to use")
    title: Optional[str] = Field(default=None, description="Optional caption")

    @property
    def driver_name(self) -> str:
        return (self.driver or self.language or "shell").lower()


class Slide(BaseModel):
    """A slide: ordered fragments plus its code blocks."""
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="Zero-based slide index")
    title: Optional[str] = Field(default=None, description="Slide title")
    notes: str = Field(default="", description="Presenter notes")
    fragments: tuple[Fragment, ...] = Field(default=(), description="Progressive-reveal steps")
    code_blocks: tuple[CodeBlock, ...] = Field(default=(), description="Executable snippets")

    @model_validator(mode="after")
    def check_fragment_ordinals(self) -> "Slide":
        for expected, fragment in enumerate(self.fragments):
            if fragment.index != expected:
                raise ValueError(
                    f"slide {self.index}: fragment ordinals must be contiguous from 0, "
                    f"got {fragment.index} at position {expected}"
                )
        return self

    @property
    def fragment_count(self) -> int:
        """A slide without declared fragments counts as one implicit fragment."""
        return max(len(self.fragments), 1)

    @property
    def last_fragment(self) -> int:
        return self.fragment_count - 1


class Deck(BaseModel):
    """The full ordered set of slides for one load."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Content hash identifying this load's document")
    title: str = Field(default="", description="Presentation title")
    slides: tuple[Slide, ...] = Field(..., min_length=1, description="Ordered slides")
    drivers: dict[str, DriverConfig] = Field(
        default_factory=dict,
        description="Per-deck interpreter overrides"
    )

    @model_validator(mode="after")
    def check_slide_indices(self) -> "Deck":
        for expected, slide in enumerate(self.slides):
            if slide.index != expected:
                raise ValueError(f"slide indices must be contiguous from 0, got {slide.index}")
        return self

    def __len__(self) -> int:
        return len(self.slides)

    @property
    def total_fragments(self) -> int:
        return sum(slide.fragment_count for slide in self.slides)

    def last_fragment_of(self, slide_index: int) -> int:
        return self.slides[slide_index].last_fragment

    def code_blocks(self) -> list[CodeBlock]:
        return [block for slide in self.slides for block in slide.code_blocks]

    def find_code_block(self, block_id: str) -> Optional[CodeBlock]:
        return next((b for b in self.code_blocks() if b.id == block_id), None)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Deck":
        """
        Build a deck from the parsed deck document.

        The document shape is ``{"title", "drivers", "slides": [{"title",
        "notes", "fragments": [str | {"content"}], "code_blocks": [{"language",
        "source" | "code", "driver", "connection", "title"}]}]}``. Ordinals and code block ids
        are derived from positions, never read from the document.
        """
        slides = []
        for slide_index, raw_slide in enumerate(document.get("slides") or []):
            fragments = tuple(
                Fragment(index=i, content=_fragment_content(raw))
                for i, raw in enumerate(raw_slide.get("fragments") or [])
            )
            blocks = tuple(
                CodeBlock(
                    id=code_block_id(slide_index, position),
                    slide_index=slide_index,
                    position=position,
                    language=raw.get("language") or "shell",
                    source=raw.get("source", raw.get("code", "")),
                    driver=raw.get("driver"),
                    connection=raw.get("connection"),
                    title=raw.get("title"),
                )
                for position, raw in enumerate(raw_slide.get("code_blocks") or [])
            )
            slides.append(Slide(
                index=slide_index,
                title=raw_slide.get("title"),
                notes=raw_slide.get("notes", ""),
                fragments=fragments,
                code_blocks=blocks,
            ))

        return cls(
            id=document_id(document),
            title=document.get("title", ""),
            slides=tuple(slides),
            drivers=document.get("drivers") or {},
        )


def document_id(document: dict[str, Any]) -> str:
    """Stable hash of a deck document's canonical JSON form."""
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:CODE_BLOCK_ID_LENGTH]


def _fragment_content(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("content", ""))
    return str(raw)

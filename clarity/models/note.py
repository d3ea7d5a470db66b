"""
Note and Tag models.

Notes are owned by the capture layer. Extraction fills the derived fields
(title, intent, next step, inferred project); the user may edit them or
resolve the next step.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class NextStepType(str, Enum):
    """How a suggested next step gets resolved."""

    DATE = "date"
    CONTACT = "contact"
    DECISION = "decision"
    SIMPLE = "simple"

    @classmethod
    def parse(cls, value: str | None) -> "NextStepType":
        """Lenient conversion from inference output; unknown values become SIMPLE."""
        if not value:
            return cls.SIMPLE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.SIMPLE


class NextStep(BaseModel):
    """Inferred next step attached to a note."""

    text: str = Field(..., description="What should happen next")
    category: NextStepType = Field(default=NextStepType.SIMPLE, description="Resolution category")
    resolved: bool = Field(default=False, description="Whether the user resolved it")
    resolution: str | None = Field(default=None, description="How it was resolved")
    resolved_at: datetime | None = Field(default=None, description="When it was resolved")


class Note(BaseModel):
    """
    A captured note: typed text, transcribed audio or OCR'd image text.

    The core never deletes notes; deletion belongs to the capture layer.
    """

    id: str = Field(..., description="Unique note ID (note_xxx)")
    content: str = Field(default="", description="Free text content")
    transcript: str | None = Field(default=None, description="Speech-to-text transcript")

    # Derived by extraction
    title: str = Field(default="", description="Short title, empty until extracted")
    intent: str | None = Field(default=None, description="Derived intent label")
    intent_confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Confidence of the intent label"
    )
    next_step: NextStep | None = Field(default=None, description="Inferred next step")
    inferred_project_name: str | None = Field(
        default=None, description="Project name suggested by extraction"
    )
    project_id: str | None = Field(default=None, description="Assigned project")
    extracted_at: datetime | None = Field(default=None, description="Last successful extraction")

    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last update timestamp")

    @property
    def text(self) -> str:
        """Text used for inference: content, falling back to the transcript."""
        if self.content.strip():
            return self.content
        return self.transcript or ""

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        if self.content:
            return self.content[:50]
        if self.transcript:
            return self.transcript[:50]
        return "Untitled Note"

    def has_derived_fields(self) -> bool:
        """True once an extraction has populated this note."""
        return self.extracted_at is not None


class Tag(BaseModel):
    """Tag attached to notes through the note_tags join table."""

    id: str = Field(..., description="Unique tag ID (tag_xxx)")
    name: str = Field(..., description="Tag name, unique case-insensitively")
    color_hex: str = Field(default="007AFF", description="Display colour")

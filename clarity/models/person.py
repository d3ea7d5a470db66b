"""
People mentioned across notes.
"""

from datetime import datetime

from pydantic import BaseModel, Field


def normalize_name(name: str) -> str:
    """Deduplication key for people: lowercased and trimmed."""
    return name.strip().lower()


class MentionedPerson(BaseModel):
    """
    A unique person mentioned in one or more notes.

    One record per normalized name. mention_count counts distinct notes
    that mention the person.
    """

    id: str = Field(..., description="Unique person ID (person_xxx)")
    name: str = Field(..., description="Display name as first mentioned")
    normalized_name: str = Field(..., description="Lowercased, trimmed name")
    mention_count: int = Field(default=1, ge=0)
    first_mentioned_at: datetime = Field(default_factory=datetime.now)
    last_mentioned_at: datetime = Field(default_factory=datetime.now)
    open_commitment_count: int = Field(default=0, ge=0)
    is_archived: bool = Field(default=False)

    @property
    def initials(self) -> str:
        parts = self.name.split()
        if len(parts) >= 2:
            return f"{parts[0][0]}{parts[-1][0]}".upper()
        if parts:
            return parts[0][0].upper()
        return "?"

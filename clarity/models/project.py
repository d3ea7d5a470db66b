"""
Project model with alias list for matching.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


def initial_aliases(name: str) -> list[str]:
    """
    Aliases seeded when a project is created.

    Lowercase name, name without spaces, and an acronym for multi-word names.
    """
    lowered = name.strip().lower()
    if not lowered:
        return []
    aliases = [lowered]
    compact = lowered.replace(" ", "")
    if compact not in aliases:
        aliases.append(compact)
    words = lowered.split()
    if len(words) > 1:
        acronym = "".join(word[0] for word in words)
        if acronym not in aliases:
            aliases.append(acronym)
    return aliases


class Project(BaseModel):
    """
    Long-running container a note can belong to.

    Aliases are ordered oldest first and unique case-insensitively.
    """

    id: str = Field(..., description="Unique project ID (proj_xxx)")
    name: str = Field(..., description="Display name")
    aliases: list[str] = Field(default_factory=list, description="Ordered, lowercase aliases")
    is_archived: bool = Field(default=False)
    note_count: int = Field(default=0, ge=0)
    last_activity_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def has_alias(self, alias: str) -> bool:
        needle = alias.strip().lower()
        return any(existing.lower() == needle for existing in self.aliases)


class MatchType(str, Enum):
    """Which scoring layer produced a match."""

    ALIAS = "alias"
    FUZZY = "fuzzy"


class ProjectMatch(BaseModel):
    """Result of ProjectMatcher.find_match."""

    project: Project
    confidence: float = Field(..., ge=0.0, le=1.0)
    match_type: MatchType
    # Below the high-confidence threshold the user should confirm the assignment
    needs_confirmation: bool = False

"""
Session snapshot models (local rollup, never persisted long-term).
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class MomentumDirection(str, Enum):
    """Activity trend comparing this window to the prior one."""

    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class WarningType(str, Enum):
    """Kinds of attention warnings surfaced in the snapshot."""

    STALLED = "stalled"
    COMMITMENT = "commitment"
    DECISION_WITHOUT_ACTION = "decision_without_action"
    OVERDUE = "overdue"


class AttentionWarning(BaseModel):
    """Something that needs the user's attention."""

    type: WarningType
    title: str
    description: str
    days_since_issue: int = Field(default=0, ge=0)
    related_item_id: str | None = None


class StalledItem(BaseModel):
    """An open item whose last activity is older than the stalled threshold."""

    id: str
    kind: str  # action, commitment, unresolved
    content: str
    days_since_activity: int
    source_note_id: str


class ProjectSummary(BaseModel):
    """Per-project activity in the snapshot."""

    id: str
    name: str
    note_count: int
    last_activity_at: datetime | None = None
    days_since_activity: int | None = None


class SessionSnapshot(BaseModel):
    """
    Cheap "what's going on right now" rollup.

    is_stale is True whenever a note was saved since generation or the
    freshness window elapsed.
    """

    generated_at: datetime
    total_notes: int = 0
    notes_today: int = 0
    notes_this_week: int = 0
    open_actions: int = 0
    open_commitments: int = 0
    unresolved_count: int = 0
    stalled_count: int = 0
    momentum: MomentumDirection = MomentumDirection.FLAT
    activity_this_window: int = 0
    activity_prior_window: int = 0
    stalled_items: list[StalledItem] = Field(default_factory=list)
    warnings: list[AttentionWarning] = Field(default_factory=list)
    top_projects: list[ProjectSummary] = Field(default_factory=list)
    is_stale: bool = False

    @property
    def has_attention_items(self) -> bool:
        return self.stalled_count > 0 or self.open_commitments > 0 or bool(self.warnings)

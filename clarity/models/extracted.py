"""
Structured items extracted from a note.

Every item carries a mandatory back-reference to its source note. Items are
created only by extraction; users may flip completion/resolution flags.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class DecisionStatus(str, Enum):
    """Lifecycle of a decision."""

    ACTIVE = "active"
    PENDING = "pending"
    SUPERSEDED = "superseded"
    REVERSED = "reversed"


class ActionPriority(str, Enum):
    """Priority of an action."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class ExtractedItem(BaseModel):
    """Fields shared by all extracted items."""

    id: str = Field(..., description="Unique item ID")
    source_note_id: str = Field(..., description="Note the item was extracted from")
    content: str = Field(..., description="Free-text content")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    updated_at: datetime = Field(
        default_factory=datetime.now, description="Last activity timestamp"
    )

    @property
    def last_activity(self) -> datetime:
        return max(self.created_at, self.updated_at)


class ExtractedDecision(ExtractedItem):
    """Something that was decided."""

    affects: str = Field(default="", description="What the decision affects")
    confidence: str = Field(default="medium", description="high, medium or low")
    status: DecisionStatus = Field(default=DecisionStatus.ACTIVE)

    @property
    def is_active(self) -> bool:
        return self.status in (DecisionStatus.ACTIVE, DecisionStatus.PENDING)


class ExtractedAction(ExtractedItem):
    """Something that needs doing."""

    owner: str = Field(default="me", description="Who owns the action")
    deadline: str = Field(default="TBD", description="Free-text deadline")
    priority: ActionPriority = Field(default=ActionPriority.NORMAL)
    is_completed: bool = Field(default=False)
    is_blocked: bool = Field(default=False)

    @property
    def is_overdue(self) -> bool:
        deadline = self.deadline.lower()
        return any(marker in deadline for marker in ("overdue", "yesterday", "last week"))

    @property
    def requires_attention(self) -> bool:
        return not self.is_completed and (
            self.is_blocked or self.is_overdue or self.priority == ActionPriority.URGENT
        )


class ExtractedCommitment(ExtractedItem):
    """A promise made by someone. content holds the 'what'."""

    who: str = Field(default="me", description="Who committed")
    is_completed: bool = Field(default=False)

    @property
    def is_user_commitment(self) -> bool:
        who = self.who.strip().lower()
        return who in ("me", "i") or "myself" in who


class UnresolvedItem(ExtractedItem):
    """Something left ambiguous by the note."""

    reason: str = Field(default="ambiguous", description="no decision, no owner, ambiguous...")
    is_resolved: bool = Field(default=False)

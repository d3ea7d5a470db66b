"""
Daily digest models.

One digest per calendar day, keyed by the day's start. Sub-records are
stored as child rows referencing the digest.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from clarity.models.session import MomentumDirection


class DigestWarningType(str, Enum):
    STALLED = "stalled"
    OVERDUE = "overdue"
    COMMITMENT = "commitment"

    @classmethod
    def parse(cls, value: str | None) -> "DigestWarningType":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.STALLED


class SuggestedPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: str | None) -> "SuggestedPriority":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.HIGH


class DigestHighlight(BaseModel):
    content: str


class DigestWarning(BaseModel):
    type: DigestWarningType = DigestWarningType.STALLED
    content: str
    days_since_issue: int = Field(default=0, ge=0)


class SuggestedAction(BaseModel):
    content: str
    reason: str = ""
    project_name: str | None = None
    priority: SuggestedPriority = SuggestedPriority.HIGH


class DailyDigest(BaseModel):
    """
    AI-authored summary for one calendar day.

    Immutable once generated, except through an explicit regenerate which
    replaces it in place (same id, same date key).
    """

    id: str = Field(..., description="Unique digest ID (digest_xxx)")
    digest_date: datetime = Field(..., description="Start of the calendar day")
    generated_at: datetime = Field(default_factory=datetime.now)
    narrative: str = Field(default="", description="What matters today")
    highlights: list[DigestHighlight] = Field(default_factory=list)
    warnings: list[DigestWarning] = Field(default_factory=list)
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)

    # Snapshot metrics at generation time
    open_item_count: int = 0
    stalled_item_count: int = 0
    momentum: MomentumDirection = MomentumDirection.FLAT
    active_project_count: int = 0
    notes_yesterday: int = 0
    notes_this_week: int = 0

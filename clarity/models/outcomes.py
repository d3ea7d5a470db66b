"""
Outcome values returned across the service boundary.

Operations that cross the inference boundary never raise to the caller;
they report one of these statuses so the UI can render loading, error,
retry and upgrade states.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from clarity.models.digest import DailyDigest
from clarity.models.extracted import (
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    UnresolvedItem,
)
from clarity.models.note import Note, Tag
from clarity.models.person import MentionedPerson
from clarity.models.project import ProjectMatch


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    QUOTA_EXCEEDED = "quota_exceeded"
    INFERENCE_FAILED = "inference_failed"
    PARSE_FAILED = "parse_failed"
    NOT_FOUND = "not_found"
    IN_PROGRESS = "in_progress"


class ExtractionOutcome(BaseModel):
    """Result of ExtractionOrchestrator.process_note_save."""

    status: ExtractionStatus
    note_id: str
    note: Note | None = None
    tags: list[Tag] = Field(default_factory=list)
    decisions: list[ExtractedDecision] = Field(default_factory=list)
    actions: list[ExtractedAction] = Field(default_factory=list)
    commitments: list[ExtractedCommitment] = Field(default_factory=list)
    unresolved: list[UnresolvedItem] = Field(default_factory=list)
    people: list[MentionedPerson] = Field(default_factory=list)
    project_match: ProjectMatch | None = None
    failed_fields: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def retryable(self) -> bool:
        return self.status == ExtractionStatus.INFERENCE_FAILED


class DigestStatus(str, Enum):
    GENERATED = "generated"
    EXISTING = "existing"
    QUOTA_EXCEEDED = "quota_exceeded"
    INFERENCE_FAILED = "inference_failed"
    PARSE_FAILED = "parse_failed"


class DigestOutcome(BaseModel):
    """Result of DailyDigestScheduler.check_and_generate / regenerate."""

    status: DigestStatus
    digest_date: datetime
    digest: DailyDigest | None = None
    failed_fields: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def retryable(self) -> bool:
        return self.status in (DigestStatus.INFERENCE_FAILED, DigestStatus.PARSE_FAILED)


class NoteSaveOutcome(BaseModel):
    """Result of IntelligenceEngine.save_note."""

    note: Note | None = None
    quota_exceeded: bool = False
    extraction: ExtractionOutcome | None = None

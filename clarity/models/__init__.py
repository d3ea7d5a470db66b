"""
Data models for Clarity.

Layers:
1. Capture: Note, Tag, ExtractedURL
2. Extraction: decisions, actions, commitments, unresolved items, people
3. Organisation: Project, ProjectMatch
4. Rollups: SessionSnapshot, DailyDigest
5. Metering: QuotaState, ConsumeResult
"""

from clarity.models.digest import (
    DailyDigest,
    DigestHighlight,
    DigestWarning,
    DigestWarningType,
    SuggestedAction,
    SuggestedPriority,
)
from clarity.models.extracted import (
    ActionPriority,
    DecisionStatus,
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    ExtractedItem,
    UnresolvedItem,
)
from clarity.models.note import NextStep, NextStepType, Note, Tag
from clarity.models.outcomes import (
    DigestOutcome,
    DigestStatus,
    ExtractionOutcome,
    ExtractionStatus,
    NoteSaveOutcome,
)
from clarity.models.person import MentionedPerson, normalize_name
from clarity.models.project import MatchType, Project, ProjectMatch, initial_aliases
from clarity.models.quota import (
    ConsumeResult,
    ConsumeStatus,
    QuotaCategory,
    QuotaPolicy,
    QuotaState,
    ResetPolicy,
)
from clarity.models.session import (
    AttentionWarning,
    MomentumDirection,
    ProjectSummary,
    SessionSnapshot,
    StalledItem,
    WarningType,
)
from clarity.models.url import ExtractedURL

__all__ = [
    # Capture
    "Note",
    "Tag",
    "NextStep",
    "NextStepType",
    "ExtractedURL",
    # Extraction
    "ExtractedItem",
    "ExtractedDecision",
    "ExtractedAction",
    "ExtractedCommitment",
    "UnresolvedItem",
    "DecisionStatus",
    "ActionPriority",
    "MentionedPerson",
    "normalize_name",
    # Projects
    "Project",
    "ProjectMatch",
    "MatchType",
    "initial_aliases",
    # Session
    "SessionSnapshot",
    "AttentionWarning",
    "WarningType",
    "MomentumDirection",
    "ProjectSummary",
    "StalledItem",
    # Digest
    "DailyDigest",
    "DigestHighlight",
    "DigestWarning",
    "DigestWarningType",
    "SuggestedAction",
    "SuggestedPriority",
    # Quota
    "QuotaCategory",
    "ResetPolicy",
    "QuotaPolicy",
    "QuotaState",
    "ConsumeStatus",
    "ConsumeResult",
    # Outcomes
    "ExtractionStatus",
    "ExtractionOutcome",
    "DigestStatus",
    "DigestOutcome",
    "NoteSaveOutcome",
]

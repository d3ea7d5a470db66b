"""
Base interface for note persistence.

The store owns every table the pipeline touches: notes, derived items,
people, projects, URLs, digests and quota state.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from clarity.models.digest import DailyDigest
from clarity.models.extracted import (
    DecisionStatus,
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    UnresolvedItem,
)
from clarity.models.note import Note, Tag
from clarity.models.person import MentionedPerson
from clarity.models.project import Project
from clarity.models.quota import QuotaState
from clarity.models.url import ExtractedURL


class ExtractionWrite(BaseModel):
    """Everything one extraction writes for a note, applied atomically."""

    note: Note
    tags: list[str] = Field(default_factory=list)
    decisions: list[ExtractedDecision] = Field(default_factory=list)
    actions: list[ExtractedAction] = Field(default_factory=list)
    commitments: list[ExtractedCommitment] = Field(default_factory=list)
    unresolved: list[UnresolvedItem] = Field(default_factory=list)
    people: list[str] = Field(default_factory=list)
    # Project found by this extraction; applied only to notes still unassigned
    matched_project_id: str | None = None
    # False for degraded writes that only carry salvaged note fields
    replace_items: bool = True


class ExtractionWriteResult(BaseModel):
    """Rows as persisted by apply_extraction."""

    note: Note
    tags: list[Tag] = Field(default_factory=list)
    people: list[MentionedPerson] = Field(default_factory=list)


class NoteStore(ABC):
    """Abstract base class for note storage implementations."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the store (create tables/schema)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections."""
        pass

    # ═══════════════════════════════════════════════════════════
    # NOTES
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_note(self, note: Note) -> None:
        """Insert a new note."""
        pass

    @abstractmethod
    async def get_note(self, note_id: str) -> Note | None:
        """
        Retrieve a note by ID.

        Returns:
            Note or None if not found
        """
        pass

    @abstractmethod
    async def update_note(self, note: Note) -> None:
        """
        Persist note fields.

        Raises:
            NotFoundError: If the note no longer exists
        """
        pass

    @abstractmethod
    async def delete_note(self, note_id: str) -> bool:
        """
        Delete a note together with its derived items, tag links, mentions
        and URLs. People and project counters are recomputed.

        Returns:
            True if a note was deleted
        """
        pass

    @abstractmethod
    async def list_notes(self, since: datetime | None = None, limit: int | None = None) -> list[Note]:
        """Notes newest first, optionally created at or after since."""
        pass

    @abstractmethod
    async def count_notes(self, since: datetime | None = None) -> int:
        pass

    @abstractmethod
    async def get_note_tags(self, note_id: str) -> list[Tag]:
        pass

    @abstractmethod
    async def list_tags(self) -> list[Tag]:
        pass

    # ═══════════════════════════════════════════════════════════
    # EXTRACTION
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def apply_extraction(self, write: ExtractionWrite, at: datetime) -> ExtractionWriteResult:
        """
        Write one extraction result in a single transaction.

        Re-checks that the note still exists inside the transaction. Items
        previously derived from the note are replaced; tag links and person
        mentions are inserted idempotently.

        Raises:
            NotFoundError: If the note was deleted; nothing is written
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # EXTRACTED ITEMS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def list_decisions(self, note_id: str | None = None) -> list[ExtractedDecision]:
        pass

    @abstractmethod
    async def list_actions(
        self, note_id: str | None = None, open_only: bool = False
    ) -> list[ExtractedAction]:
        pass

    @abstractmethod
    async def list_commitments(
        self, note_id: str | None = None, open_only: bool = False
    ) -> list[ExtractedCommitment]:
        pass

    @abstractmethod
    async def list_unresolved(
        self, note_id: str | None = None, open_only: bool = False
    ) -> list[UnresolvedItem]:
        pass

    @abstractmethod
    async def set_action_completed(
        self, action_id: str, completed: bool, at: datetime
    ) -> ExtractedAction:
        """
        Raises:
            NotFoundError: If the action does not exist
        """
        pass

    @abstractmethod
    async def set_commitment_completed(
        self, commitment_id: str, completed: bool, at: datetime
    ) -> ExtractedCommitment:
        pass

    @abstractmethod
    async def set_unresolved_resolved(
        self, item_id: str, resolved: bool, at: datetime
    ) -> UnresolvedItem:
        pass

    @abstractmethod
    async def set_decision_status(
        self, decision_id: str, status: DecisionStatus, at: datetime
    ) -> ExtractedDecision:
        pass

    # ═══════════════════════════════════════════════════════════
    # PEOPLE
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def list_people(self, include_archived: bool = False) -> list[MentionedPerson]:
        """People ordered by mention count, with open commitment counts filled."""
        pass

    @abstractmethod
    async def get_person(self, normalized_name: str) -> MentionedPerson | None:
        pass

    # ═══════════════════════════════════════════════════════════
    # PROJECTS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_project(self, project: Project) -> None:
        """
        Raises:
            ValidationError: If a project with the same name exists
        """
        pass

    @abstractmethod
    async def get_project(self, project_id: str) -> Project | None:
        pass

    @abstractmethod
    async def update_project(self, project: Project) -> None:
        """Persist name, archive flag and the ordered alias list."""
        pass

    @abstractmethod
    async def delete_project(self, project_id: str) -> bool:
        """Delete a project; its notes become unassigned."""
        pass

    @abstractmethod
    async def list_projects(self, include_archived: bool = True) -> list[Project]:
        pass

    @abstractmethod
    async def assign_note_project(
        self, note_id: str, project_id: str | None, at: datetime
    ) -> Note:
        """
        Move a note to a project (or unassign) and refresh both projects'
        note counts and activity.

        Raises:
            NotFoundError: If the note or project does not exist
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # URLS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_urls(self, urls: list[ExtractedURL]) -> list[ExtractedURL]:
        """Insert URLs not yet recorded for their note. Returns the new rows."""
        pass

    @abstractmethod
    async def update_url(self, url: ExtractedURL) -> None:
        pass

    @abstractmethod
    async def list_urls(self, note_id: str | None = None) -> list[ExtractedURL]:
        pass

    # ═══════════════════════════════════════════════════════════
    # DAILY DIGESTS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def get_digest(self, digest_date: datetime) -> DailyDigest | None:
        """Digest for the calendar day starting at digest_date."""
        pass

    @abstractmethod
    async def upsert_digest(self, digest: DailyDigest) -> DailyDigest:
        """
        Insert or replace the digest for its date.

        An existing row keeps its id; sub-records are replaced.

        Returns:
            The stored digest
        """
        pass

    @abstractmethod
    async def list_digests(self, limit: int = 30) -> list[DailyDigest]:
        pass

    # ═══════════════════════════════════════════════════════════
    # QUOTA
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def load_quota_states(self) -> list[QuotaState]:
        pass

    @abstractmethod
    async def save_quota_states(self, states: list[QuotaState]) -> None:
        pass

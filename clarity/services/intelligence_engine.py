"""
Intelligence Engine - wires the note pipeline together.

Brings together:
- Note store and LLM provider
- Quota ledger gating notes, extraction, resolution and digests
- Extraction orchestrator and project matcher
- Session aggregator and daily digest scheduler
- Background URL metadata fetching
"""

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from clarity.config import Config
from clarity.core.llm.base import LLMProvider
from clarity.core.store.base import NoteStore
from clarity.models.digest import DailyDigest
from clarity.models.extracted import (
    DecisionStatus,
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    UnresolvedItem,
)
from clarity.models.note import Note
from clarity.models.outcomes import DigestOutcome, ExtractionOutcome, NoteSaveOutcome
from clarity.models.person import MentionedPerson
from clarity.models.project import Project, ProjectMatch, initial_aliases
from clarity.models.quota import ConsumeResult, QuotaCategory, QuotaState
from clarity.models.session import SessionSnapshot
from clarity.models.url import ExtractedURL
from clarity.services.daily_digest_scheduler import DailyDigestScheduler, DigestInputs
from clarity.services.extraction_orchestrator import ExtractionOrchestrator
from clarity.services.project_matcher import ProjectMatcher
from clarity.services.quota_ledger import QuotaLedger
from clarity.services.session_aggregator import SessionAggregator
from clarity.services.url_metadata import UrlMetadataFetcher, detect_urls
from clarity.utils.calendar import start_of_day
from clarity.utils.exceptions import NotFoundError, ValidationError
from clarity.utils.id_generator import generate_note_id, generate_project_id, generate_url_id
from clarity.utils.logger import get_logger

logger = get_logger(__name__)


class IntelligenceEngine:
    """
    Explicit service object constructed once per process.

    Features:
    - Note capture with quota gating and automatic extraction
    - Project matching with learning from user corrections
    - Staleness-gated session snapshot
    - Once-per-day digest
    - URL metadata enrichment in the background
    """

    def __init__(
        self,
        llm: LLMProvider,
        store: NoteStore,
        config: Config,
        url_fetcher: UrlMetadataFetcher | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize Intelligence Engine.

        Args:
            llm: LLM provider for extraction and digests
            store: Note store
            config: Configuration object
            url_fetcher: Optional fetcher (created from config when enabled)
            clock: Source of "now", injectable for tests
        """
        self.llm = llm
        self.store = store
        self.config = config
        self._clock = clock

        self.ledger = QuotaLedger(
            policies=config.quota.policies(), free_grant=config.quota.free_grant, clock=clock
        )
        self.matcher = ProjectMatcher.from_config(config.matcher)
        self.session = SessionAggregator(config.session, clock=clock)
        self.extraction = ExtractionOrchestrator(
            llm=llm,
            store=store,
            ledger=self.ledger,
            matcher=self.matcher,
            config=config,
            clock=clock,
        )
        self.digests = DailyDigestScheduler(
            llm=llm, store=store, ledger=self.ledger, config=config, clock=clock
        )

        if url_fetcher is None and config.url_fetch.enabled:
            url_fetcher = UrlMetadataFetcher(config.url_fetch, clock=clock)
        self.url_fetcher = url_fetcher
        self._background: set[asyncio.Task] = set()

    async def initialize(self) -> None:
        """Initialize the store and load persisted quota state."""
        logger.info("Initializing Intelligence Engine")

        await self.store.initialize()
        logger.info("Note store initialized")

        for state in await self.store.load_quota_states():
            if state.category in self.ledger.policies:
                self.ledger.restore(state)
        if self.ledger.reset_if_period_elapsed():
            await self._persist_quota()

        logger.info("Intelligence Engine ready")

    async def close(self) -> None:
        """Wait for background work, then close connections."""
        logger.info("Shutting down Intelligence Engine")

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        if self.url_fetcher is not None:
            await self.url_fetcher.close()
        await self.llm.close()
        await self.store.close()

        logger.info("Intelligence Engine shutdown complete")

    async def _persist_quota(self) -> None:
        await self.store.save_quota_states(self.ledger.states())

    # ═══════════════════════════════════════════════════════════
    # NOTES
    # ═══════════════════════════════════════════════════════════

    async def save_note(
        self,
        content: str = "",
        transcript: str | None = None,
        project_id: str | None = None,
        extract: bool = True,
    ) -> NoteSaveOutcome:
        """
        Capture a new note and run the pipeline on it.

        Args:
            content: Typed or OCR'd text
            transcript: Speech-to-text output
            project_id: Project chosen up front by the user
            extract: Run extraction right away

        Returns:
            NoteSaveOutcome; quota_exceeded is set when the notes allowance is used up

        Raises:
            ValidationError: If both content and transcript are empty
            NotFoundError: If project_id does not exist
        """
        if not (content or "").strip() and not (transcript or "").strip():
            raise ValidationError("Note content cannot be empty")

        if project_id is not None and await self.store.get_project(project_id) is None:
            raise NotFoundError(f"Project not found: {project_id}", {"project_id": project_id})

        consumed = self.ledger.consume(QuotaCategory.NOTES)
        if not consumed.granted:
            return NoteSaveOutcome(quota_exceeded=True)
        await self._persist_quota()

        now = self._clock()
        note = Note(
            id=generate_note_id(),
            content=content or "",
            transcript=transcript,
            project_id=project_id,
            created_at=now,
            updated_at=now,
        )
        await self.store.add_note(note)
        self.session.mark_stale()

        logger.info(
            f"Note saved: {note.id}",
            extra={"note_id": note.id, "operation": "save_note", "chars": len(note.text)},
        )

        self._schedule_url_fetch(note)

        extraction = None
        if extract:
            extraction = await self.process_note(note.id)
            if extraction.note is not None:
                note = extraction.note

        return NoteSaveOutcome(note=note, extraction=extraction)

    async def process_note(self, note_id: str) -> ExtractionOutcome:
        """
        Run (or retry) extraction for a stored note.

        Re-running on an already extracted note replaces its derived items.
        """
        note = await self.store.get_note(note_id)
        if note is None:
            raise NotFoundError(f"Note not found: {note_id}", {"note_id": note_id})

        outcome = await self.extraction.process_note_save(
            note, tags=await self.store.list_tags()
        )
        self.session.mark_stale()
        return outcome

    async def get_note(self, note_id: str) -> Note | None:
        return await self.store.get_note(note_id)

    async def list_notes(self, limit: int | None = None) -> list[Note]:
        return await self.store.list_notes(limit=limit)

    async def get_note_details(self, note_id: str) -> dict[str, Any]:
        """Note with its tags, derived items and URLs."""
        note = await self.store.get_note(note_id)
        if note is None:
            raise NotFoundError(f"Note not found: {note_id}", {"note_id": note_id})

        return {
            "note": note,
            "tags": await self.store.get_note_tags(note_id),
            "decisions": await self.store.list_decisions(note_id),
            "actions": await self.store.list_actions(note_id),
            "commitments": await self.store.list_commitments(note_id),
            "unresolved": await self.store.list_unresolved(note_id),
            "urls": await self.store.list_urls(note_id),
        }

    async def delete_note(self, note_id: str) -> None:
        """
        Delete a note and everything derived from it.

        Raises:
            NotFoundError: If the note does not exist
        """
        if not await self.store.delete_note(note_id):
            raise NotFoundError(f"Note not found: {note_id}", {"note_id": note_id})
        self.session.mark_stale()
        logger.info(f"Note deleted: {note_id}", extra={"note_id": note_id})

    async def resolve_next_step(
        self, note_id: str, resolution: str
    ) -> tuple[Note | None, ConsumeResult]:
        """
        Resolve a note's suggested next step.

        Returns:
            (updated note or None when the quota is exhausted, consume result)

        Raises:
            NotFoundError: If the note does not exist
            ValidationError: If the note has no next step or it is already resolved
        """
        note = await self.store.get_note(note_id)
        if note is None:
            raise NotFoundError(f"Note not found: {note_id}", {"note_id": note_id})
        if note.next_step is None:
            raise ValidationError("Note has no next step", {"note_id": note_id})
        if note.next_step.resolved:
            raise ValidationError("Next step already resolved", {"note_id": note_id})

        self.ledger.reset_if_period_elapsed(self._clock())
        consumed = self.ledger.consume(QuotaCategory.RESOLUTION)
        await self._persist_quota()
        if not consumed.granted:
            return None, consumed

        now = self._clock()
        note.next_step = note.next_step.model_copy(
            update={"resolved": True, "resolution": resolution.strip(), "resolved_at": now}
        )
        note.updated_at = now
        await self.store.update_note(note)
        self.session.mark_stale()
        return note, consumed

    # ═══════════════════════════════════════════════════════════
    # URLS
    # ═══════════════════════════════════════════════════════════

    def _schedule_url_fetch(self, note: Note) -> None:
        urls = detect_urls(note.text)
        if not urls:
            return

        task = asyncio.create_task(self._record_urls(note.id, urls))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background URL processing failed: {error}",
                extra={"error_type": type(error).__name__},
            )

    async def _record_urls(self, note_id: str, urls: list[str]) -> list[ExtractedURL]:
        """Insert URL rows, then enrich each one. Failures stay on the row."""
        records = await self.store.add_urls(
            [ExtractedURL(id=generate_url_id(), url=url, source_note_id=note_id) for url in urls]
        )
        if self.url_fetcher is None:
            return records

        enriched = []
        for record in records:
            record = await self.url_fetcher.enrich(record)
            await self.store.update_url(record)
            enriched.append(record)
        return enriched

    async def list_urls(self, note_id: str | None = None) -> list[ExtractedURL]:
        return await self.store.list_urls(note_id)

    # ═══════════════════════════════════════════════════════════
    # PROJECTS
    # ═══════════════════════════════════════════════════════════

    async def create_project(self, name: str, aliases: list[str] | None = None) -> Project:
        """
        Create a project with aliases seeded from its name.

        Raises:
            ValidationError: If the name is empty or already used
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Project name cannot be empty")

        seeded = list(initial_aliases(name))
        for alias in aliases or []:
            alias = alias.strip().lower()
            if alias and alias not in seeded:
                seeded.append(alias)

        now = self._clock()
        project = Project(
            id=generate_project_id(),
            name=name,
            aliases=seeded[: self.config.matcher.max_aliases],
            created_at=now,
            updated_at=now,
        )
        await self.store.add_project(project)
        logger.info(f"Project created: {project.name}", extra={"project_id": project.id})
        return project

    async def list_projects(self, include_archived: bool = True) -> list[Project]:
        return await self.store.list_projects(include_archived=include_archived)

    async def archive_project(self, project_id: str, archived: bool = True) -> Project:
        project = await self._require_project(project_id)
        project.is_archived = archived
        project.updated_at = self._clock()
        await self.store.update_project(project)
        self.session.mark_stale()
        return project

    async def add_project_alias(self, project_id: str, alias: str) -> Project:
        project = await self._require_project(project_id)
        alias = alias.strip().lower()
        if len(alias) < 2:
            raise ValidationError("Alias must be at least 2 characters", {"alias": alias})
        if not project.has_alias(alias):
            project.aliases.append(alias)
            project.updated_at = self._clock()
            await self.store.update_project(project)
        return project

    async def match_project(self, text: str) -> ProjectMatch | None:
        projects = await self.store.list_projects(include_archived=False)
        return self.matcher.find_match(text, projects)

    async def assign_project(self, note_id: str, project_id: str | None) -> Note:
        """
        Move a note to a project chosen by the user.

        Moving a note away from a project it was automatically given (or
        whose name was inferred for it) teaches the target project aliases.

        Raises:
            NotFoundError: If the note or project does not exist
        """
        note = await self.store.get_note(note_id)
        if note is None:
            raise NotFoundError(f"Note not found: {note_id}", {"note_id": note_id})

        corrected = project_id is not None and project_id != note.project_id
        was_inferred = note.project_id is not None or bool(note.inferred_project_name)
        if corrected and was_inferred:
            project = await self._require_project(project_id)
            previous = await self.store.get_project(note.project_id) if note.project_id else None
            inferred = note.inferred_project_name or (previous.name if previous else None)
            if self.matcher.learn_from_correction(note.text, project, inferred_name=inferred):
                project.updated_at = self._clock()
                await self.store.update_project(project)

        updated = await self.store.assign_note_project(note_id, project_id, self._clock())
        self.session.mark_stale()
        return updated

    async def _require_project(self, project_id: str) -> Project:
        project = await self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project not found: {project_id}", {"project_id": project_id})
        return project

    # ═══════════════════════════════════════════════════════════
    # EXTRACTED ITEMS
    # ═══════════════════════════════════════════════════════════

    async def complete_action(self, action_id: str, completed: bool = True) -> ExtractedAction:
        action = await self.store.set_action_completed(action_id, completed, self._clock())
        self.session.mark_stale()
        return action

    async def complete_commitment(
        self, commitment_id: str, completed: bool = True
    ) -> ExtractedCommitment:
        commitment = await self.store.set_commitment_completed(
            commitment_id, completed, self._clock()
        )
        self.session.mark_stale()
        return commitment

    async def resolve_unresolved(self, item_id: str, resolved: bool = True) -> UnresolvedItem:
        item = await self.store.set_unresolved_resolved(item_id, resolved, self._clock())
        self.session.mark_stale()
        return item

    async def set_decision_status(
        self, decision_id: str, status: DecisionStatus
    ) -> ExtractedDecision:
        decision = await self.store.set_decision_status(decision_id, status, self._clock())
        self.session.mark_stale()
        return decision

    async def list_people(self) -> list[MentionedPerson]:
        return await self.store.list_people()

    # ═══════════════════════════════════════════════════════════
    # SESSION AND DIGEST
    # ═══════════════════════════════════════════════════════════

    async def refresh_session(self, force: bool = False) -> SessionSnapshot:
        """Snapshot of current activity, recomputed only when stale (or forced)."""
        if force:
            self.session.mark_stale()
        return self.session.refresh_if_needed(
            notes=await self.store.list_notes(),
            actions=await self.store.list_actions(),
            commitments=await self.store.list_commitments(),
            unresolved=await self.store.list_unresolved(),
            decisions=await self.store.list_decisions(),
            projects=await self.store.list_projects(include_archived=False),
        )

    async def digest_inputs(self, today: datetime | date | None = None) -> DigestInputs:
        day = start_of_day(today or self._clock())
        yesterday = day - timedelta(days=1)

        notes = await self.store.list_notes(limit=self.config.digest.recent_notes_window)
        return DigestInputs(
            snapshot=await self.refresh_session(),
            recent_notes=notes,
            open_commitments=await self.store.list_commitments(open_only=True),
            projects=await self.store.list_projects(include_archived=False),
            notes_yesterday=await self.store.count_notes(since=yesterday)
            - await self.store.count_notes(since=day),
        )

    async def check_daily_digest(self, today: datetime | date | None = None) -> DigestOutcome:
        """Today's digest, generated on first request of the day."""
        day = start_of_day(today or self._clock())
        return await self.digests.check_and_generate(day, lambda: self.digest_inputs(day))

    async def regenerate_daily_digest(self, today: datetime | date | None = None) -> DigestOutcome:
        day = start_of_day(today or self._clock())
        return await self.digests.regenerate(day, lambda: self.digest_inputs(day))

    async def get_digest(self, day: datetime | date) -> DailyDigest | None:
        return await self.store.get_digest(start_of_day(day))

    async def list_digests(self, limit: int = 30) -> list[DailyDigest]:
        return await self.store.list_digests(limit)

    # ═══════════════════════════════════════════════════════════
    # QUOTA
    # ═══════════════════════════════════════════════════════════

    def quota_status(self) -> list[QuotaState]:
        return self.ledger.states()

    def can_consume(self, category: QuotaCategory) -> bool:
        return self.ledger.can_consume(category)

    async def get_statistics(self) -> dict[str, Any]:
        """Counts for the health/stats endpoint."""
        return {
            "notes": await self.store.count_notes(),
            "projects": len(await self.store.list_projects()),
            "people": len(await self.store.list_people()),
            "open_actions": len(await self.store.list_actions(open_only=True)),
            "quota": {s.category.value: s.remaining for s in self.ledger.states()},
        }

"""
Per-note extraction: one inference call per note save.

Flow:
1. Reject if the note is already being extracted
2. Gate on the extraction quota
3. One inference call, bounded by the configured timeout
4. Lenient parse of the JSON payload
5. Resolve the inferred project through ProjectMatcher
6. Write everything in one store transaction that re-checks the note exists
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from clarity.config import Config
from clarity.core.llm.base import LLMProvider
from clarity.core.store.base import ExtractionWrite, NoteStore
from clarity.models.extracted import (
    ActionPriority,
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    UnresolvedItem,
)
from clarity.models.inference import ExtractionPayload, ParsedPayload, parse_payload
from clarity.models.note import NextStep, NextStepType, Note, Tag
from clarity.models.outcomes import ExtractionOutcome, ExtractionStatus
from clarity.models.person import normalize_name
from clarity.models.project import Project
from clarity.models.quota import QuotaCategory
from clarity.services.project_matcher import ProjectMatcher
from clarity.services.quota_ledger import QuotaLedger
from clarity.utils.concurrency import KeyedGuard
from clarity.utils.exceptions import LLMError, NotFoundError, ParseError
from clarity.utils.id_generator import generate_item_id
from clarity.utils.logger import get_logger

logger = get_logger(__name__)

MAX_TITLE_CHARS = 100
MAX_TAGS = 5
SELF_REFERENCES = frozenset({"me", "i", "myself"})

EXTRACTION_SYSTEM_PROMPT = """You turn a short personal note into structured data.
Respond with a single JSON object with these keys:
- "title": 3 to 8 word title
- "tags": up to 5 short lowercase topic tags
- "intent": one of "action", "decision", "idea", "update", "reminder", "question", "reference"
- "intent_confidence": number between 0 and 1
- "decisions": list of {"content", "affects", "confidence": "high"|"medium"|"low"}
- "actions": list of {"content", "owner", "deadline", "priority": "urgent"|"high"|"normal"|"low"}
- "commitments": list of {"who", "what"}
- "unresolved": list of {"content", "reason": "no_decision"|"no_owner"|"ambiguous"|"blocked"}
- "mentioned_people": list of names of people mentioned, excluding the author
- "inferred_project": name of the project the note is about, or null
- "next_step": the single most useful next step, or null
- "next_step_type": "date"|"contact"|"decision"|"simple"
Use "me" for things the author owns. Use "TBD" when no deadline is stated.
Leave lists empty rather than guessing."""

_PRIORITIES = {
    "urgent": ActionPriority.URGENT,
    "critical": ActionPriority.URGENT,
    "high": ActionPriority.HIGH,
    "medium": ActionPriority.NORMAL,
    "normal": ActionPriority.NORMAL,
    "low": ActionPriority.LOW,
}


def sample_text(text: str, max_chars: int, chunk_chars: int) -> str:
    """
    Bound long input: beginning, quarters, middle and end chunks.

    Text at or under max_chars is returned unchanged.
    """
    if len(text) <= max_chars:
        return text

    last_start = len(text) - chunk_chars
    starts = [0, len(text) // 4, len(text) // 2, (len(text) * 3) // 4, last_start]
    chunks = []
    for start in sorted(set(max(0, min(s, last_start)) for s in starts)):
        chunks.append(text[start : start + chunk_chars].strip())
    return "\n[...]\n".join(chunks)


class ExtractionOrchestrator:
    """
    Derives structured facts from a saved note.

    Holds a per-note guard so two extractions for the same note never run
    concurrently; a second call returns IN_PROGRESS immediately.
    """

    def __init__(
        self,
        llm: LLMProvider,
        store: NoteStore,
        ledger: QuotaLedger,
        matcher: ProjectMatcher,
        config: Config,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the orchestrator.

        Args:
            llm: LLM provider used for the extraction call
            store: Note store the results are written to
            ledger: Quota ledger gating the extraction category
            matcher: Resolves the inferred project name to a project
            config: Configuration (llm timeout, extraction limits)
            clock: Source of "now", injectable for tests
        """
        self.llm = llm
        self.store = store
        self.ledger = ledger
        self.matcher = matcher
        self.config = config
        self._clock = clock
        self._guard = KeyedGuard()

    def is_processing(self, note_id: str) -> bool:
        return self._guard.is_held(note_id)

    async def process_note_save(
        self,
        note: Note,
        text: str | None = None,
        projects: list[Project] | None = None,
        tags: list[Tag] | None = None,
    ) -> ExtractionOutcome:
        """
        Run extraction for a saved note.

        Args:
            note: The saved note
            text: Transcript or content to analyse (defaults to the note's text)
            projects: Candidate projects (loaded from the store when omitted)
            tags: Existing tags, used to reuse their spelling

        Returns:
            ExtractionOutcome; never raises for inference or parse problems
        """
        if self._guard.is_held(note.id):
            logger.info(
                f"Extraction already in flight for note {note.id}",
                extra={"note_id": note.id, "operation": "process_note_save"},
            )
            return ExtractionOutcome(status=ExtractionStatus.IN_PROGRESS, note_id=note.id)

        with self._guard.hold(note.id):
            return await self._process(note, text, projects, tags)

    async def _process(
        self,
        note: Note,
        text: str | None,
        projects: list[Project] | None,
        tags: list[Tag] | None,
    ) -> ExtractionOutcome:
        text = (text if text is not None else note.text).strip()
        if not text:
            logger.info(f"Note {note.id} has no text to extract", extra={"note_id": note.id})
            return ExtractionOutcome(
                status=ExtractionStatus.PARSE_FAILED, note_id=note.id, note=note, error="empty note"
            )

        # Quota gate: check and consume without a suspension point in between
        reset = self.ledger.reset_if_period_elapsed(self._clock())
        if not self.ledger.can_consume(QuotaCategory.EXTRACTION):
            if reset:
                await self._persist_quota()
            return ExtractionOutcome(
                status=ExtractionStatus.QUOTA_EXCEEDED, note_id=note.id, note=note
            )
        consumed = self.ledger.consume(QuotaCategory.EXTRACTION)
        await self._persist_quota()

        try:
            raw = await self._infer(text)
        except (asyncio.TimeoutError, LLMError) as e:
            return await self._inference_failed(note, consumed, str(e) or "timeout")
        except Exception as e:
            logger.error(
                f"Unexpected inference error for note {note.id}: {e}",
                extra={"note_id": note.id, "error_type": type(e).__name__},
            )
            return await self._inference_failed(note, consumed, str(e))

        try:
            parsed = parse_payload(ExtractionPayload, raw)
        except ParseError as e:
            logger.warning(
                f"Unparseable extraction response for note {note.id}: {e.message}",
                extra={"note_id": note.id, **e.context},
            )
            return ExtractionOutcome(
                status=ExtractionStatus.PARSE_FAILED, note_id=note.id, note=note, error=e.message
            )

        if parsed.degraded:
            logger.warning(
                f"Partial extraction for note {note.id}",
                extra={"note_id": note.id, "failed_fields": parsed.failed_fields},
            )

        return await self._apply(note, text, parsed, projects, tags)

    async def _infer(self, text: str) -> str:
        prompt = "Note:\n" + sample_text(
            text, self.config.extraction.max_input_chars, self.config.extraction.sample_chunk_chars
        )
        return await self.llm.complete_json(
            prompt,
            system=EXTRACTION_SYSTEM_PROMPT,
            timeout=self.config.llm.timeout,
            max_tokens=self.config.extraction.max_tokens,
            temperature=self.config.extraction.temperature,
        )

    async def _inference_failed(self, note: Note, consumed, error: str) -> ExtractionOutcome:
        self.ledger.refund(consumed)
        await self._persist_quota()
        logger.warning(
            f"Extraction inference failed for note {note.id}: {error}",
            extra={"note_id": note.id, "operation": "process_note_save"},
        )
        return ExtractionOutcome(
            status=ExtractionStatus.INFERENCE_FAILED, note_id=note.id, note=note, error=error
        )

    async def _persist_quota(self) -> None:
        await self.store.save_quota_states(self.ledger.states())

    # ═══════════════════════════════════════════════════════════
    # APPLYING RESULTS
    # ═══════════════════════════════════════════════════════════

    async def _apply(
        self,
        note: Note,
        text: str,
        parsed: ParsedPayload,
        projects: list[Project] | None,
        tags: list[Tag] | None,
    ) -> ExtractionOutcome:
        payload: ExtractionPayload = parsed.payload
        failed = set(parsed.failed_fields)
        now = self._clock()

        updated = self._updated_note(note, payload, failed, now)

        match = None
        if updated.project_id is None:
            if projects is None:
                projects = await self.store.list_projects(include_archived=False)
            match_text = f"{payload.inferred_project or ''} {text}"
            match = self.matcher.find_match(match_text, projects)
            if match is not None:
                updated.project_id = match.project.id

        write = ExtractionWrite(
            note=updated,
            tags=self._tag_names(payload.tags, tags),
            decisions=[
                ExtractedDecision(
                    id=generate_item_id("decision"),
                    source_note_id=note.id,
                    content=d.content.strip(),
                    affects=d.affects.strip(),
                    confidence=(d.confidence or "medium").strip().lower(),
                    created_at=now,
                    updated_at=now,
                )
                for d in payload.decisions
                if d.content.strip()
            ],
            actions=[
                ExtractedAction(
                    id=generate_item_id("action"),
                    source_note_id=note.id,
                    content=a.content.strip(),
                    owner=a.owner.strip() or "me",
                    deadline=a.deadline.strip() or "TBD",
                    priority=_PRIORITIES.get(a.priority.strip().lower(), ActionPriority.NORMAL),
                    created_at=now,
                    updated_at=now,
                )
                for a in payload.actions
                if a.content.strip()
            ],
            commitments=[
                ExtractedCommitment(
                    id=generate_item_id("commitment"),
                    source_note_id=note.id,
                    content=c.what.strip(),
                    who=c.who.strip() or "me",
                    created_at=now,
                    updated_at=now,
                )
                for c in payload.commitments
                if c.what.strip()
            ],
            unresolved=[
                UnresolvedItem(
                    id=generate_item_id("unresolved"),
                    source_note_id=note.id,
                    content=u.content.strip(),
                    reason=u.reason.strip() or "ambiguous",
                    created_at=now,
                    updated_at=now,
                )
                for u in payload.unresolved
                if u.content.strip()
            ],
            people=self._people(payload.mentioned_people),
            matched_project_id=match.project.id if match is not None else None,
            replace_items=not parsed.salvaged,
        )

        try:
            result = await self.store.apply_extraction(write, now)
        except NotFoundError as e:
            logger.info(
                f"Note {note.id} deleted during extraction, discarding results",
                extra={"note_id": note.id, **e.context},
            )
            return ExtractionOutcome(status=ExtractionStatus.NOT_FOUND, note_id=note.id)

        if match is not None and result.note.project_id != match.project.id:
            match = None

        status = ExtractionStatus.PARSE_FAILED if parsed.degraded else ExtractionStatus.SUCCESS
        logger.info(
            f"Extraction applied to note {note.id}",
            extra={
                "note_id": note.id,
                "status": status.value,
                "actions": len(write.actions),
                "decisions": len(write.decisions),
                "commitments": len(write.commitments),
                "people": len(result.people),
                "project_id": result.note.project_id,
            },
        )

        return ExtractionOutcome(
            status=status,
            note_id=note.id,
            note=result.note,
            tags=result.tags,
            decisions=write.decisions,
            actions=write.actions,
            commitments=write.commitments,
            unresolved=write.unresolved,
            people=result.people,
            project_match=match,
            failed_fields=parsed.failed_fields,
        )

    def _updated_note(
        self, note: Note, payload: ExtractionPayload, failed: set[str], now: datetime
    ) -> Note:
        """Copy of note with derived fields that parsed filled in."""
        updates: dict = {"extracted_at": now, "updated_at": now}

        if "title" not in failed and payload.title and payload.title.strip():
            updates["title"] = payload.title.strip()[:MAX_TITLE_CHARS]
        if "intent" not in failed and payload.intent:
            updates["intent"] = payload.intent.strip().lower()
        if "intent_confidence" not in failed and payload.intent_confidence is not None:
            updates["intent_confidence"] = max(0.0, min(1.0, payload.intent_confidence))
        if "inferred_project" not in failed and payload.inferred_project:
            updates["inferred_project_name"] = payload.inferred_project.strip()

        # A next step the user already resolved is kept
        resolved = note.next_step is not None and note.next_step.resolved
        if "next_step" not in failed and payload.next_step and payload.next_step.strip() and not resolved:
            updates["next_step"] = NextStep(
                text=payload.next_step.strip(),
                category=NextStepType.parse(payload.next_step_type),
            )

        return note.model_copy(update=updates, deep=True)

    def _tag_names(self, names: list[str], existing: list[Tag] | None) -> list[str]:
        """Clean tag names, reusing the spelling of existing tags."""
        known = {tag.name.lower(): tag.name for tag in existing or []}
        cleaned: dict[str, str] = {}
        for name in names:
            name = name.strip().lstrip("#").strip()
            if not name:
                continue
            key = name.lower()
            cleaned.setdefault(key, known.get(key, key))
        return list(cleaned.values())[:MAX_TAGS]

    def _people(self, names: list[str]) -> list[str]:
        """Deduplicate by normalized name and drop references to the author."""
        people: dict[str, str] = {}
        for name in names:
            key = normalize_name(name)
            if not key or key in SELF_REFERENCES:
                continue
            people.setdefault(key, name.strip())
        return list(people.values())

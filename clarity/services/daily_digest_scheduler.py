"""
Daily digest scheduling: at most one AI-authored digest per calendar day.

check_and_generate and regenerate share one single-flight slot per date, so
concurrent callers for the same day collapse into a single inference call
and all observe the same outcome.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta

from pydantic import BaseModel, Field

from clarity.config import Config
from clarity.core.llm.base import LLMProvider
from clarity.core.store.base import NoteStore
from clarity.models.digest import (
    DailyDigest,
    DigestHighlight,
    DigestWarning,
    DigestWarningType,
    SuggestedAction,
    SuggestedPriority,
)
from clarity.models.extracted import ExtractedCommitment
from clarity.models.inference import DigestPayload, parse_payload
from clarity.models.note import Note
from clarity.models.outcomes import DigestOutcome, DigestStatus
from clarity.models.project import Project
from clarity.models.quota import ConsumeResult, QuotaCategory
from clarity.models.session import SessionSnapshot
from clarity.services.quota_ledger import QuotaLedger
from clarity.utils.calendar import days_between, start_of_day
from clarity.utils.concurrency import SingleFlight
from clarity.utils.exceptions import LLMError, ParseError
from clarity.utils.id_generator import generate_digest_id
from clarity.utils.logger import get_logger

logger = get_logger(__name__)

ACTIVE_PROJECT_DAYS = 7
MAX_CONTEXT_COMMITMENTS = 10

DIGEST_SYSTEM_PROMPT = """You write a short morning briefing from someone's recent notes.
Respond with a single JSON object with these keys:
- "narrative": two or three sentences on what matters today
- "highlights": list of short strings worth celebrating or remembering
- "warnings": list of {"type": "stalled"|"overdue"|"commitment", "content", "days_since_issue"}
- "suggested_actions": list of {"content", "reason", "project_name", "priority": "high"|"medium"|"low"}
Be specific and refer to the notes. Keep every list to three entries or fewer."""


class DigestInputs(BaseModel):
    """Local state a digest is generated from."""

    snapshot: SessionSnapshot
    recent_notes: list[Note] = Field(default_factory=list)
    open_commitments: list[ExtractedCommitment] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    notes_yesterday: int = 0


InputsProvider = DigestInputs | Callable[[], Awaitable[DigestInputs]]


class DailyDigestScheduler:
    """Generates, persists and deduplicates daily digests."""

    def __init__(
        self,
        llm: LLMProvider,
        store: NoteStore,
        ledger: QuotaLedger,
        config: Config,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.llm = llm
        self.store = store
        self.ledger = ledger
        self.config = config
        self._clock = clock
        self._flights = SingleFlight()

    def is_generating(self, today: datetime | date) -> bool:
        return self._flights.in_flight(start_of_day(today))

    async def check_and_generate(
        self, today: datetime | date, inputs: InputsProvider
    ) -> DigestOutcome:
        """
        Return today's digest, generating it if none exists yet.

        Args:
            today: Any time on the day (normalized to its start)
            inputs: DigestInputs, or an async callable producing them lazily

        Returns:
            DigestOutcome: EXISTING (no inference), GENERATED, QUOTA_EXCEEDED,
            INFERENCE_FAILED or PARSE_FAILED
        """
        day = start_of_day(today)
        return await self._flights.run(day, lambda: self._check(day, inputs))

    async def regenerate(self, today: datetime | date, inputs: InputsProvider) -> DigestOutcome:
        """
        Generate the digest for today even if one exists, replacing it in place.

        The only path that overwrites an existing digest.
        """
        day = start_of_day(today)
        return await self._flights.run(day, lambda: self._regenerate(day, inputs))

    async def _check(self, day: datetime, inputs: InputsProvider) -> DigestOutcome:
        existing = await self.store.get_digest(day)
        if existing is not None:
            logger.debug(f"Digest already exists for {day.date()}", extra={"digest_id": existing.id})
            return DigestOutcome(status=DigestStatus.EXISTING, digest_date=day, digest=existing)
        return await self._generate(day, inputs, existing_id=None)

    async def _regenerate(self, day: datetime, inputs: InputsProvider) -> DigestOutcome:
        existing = await self.store.get_digest(day)
        logger.info(
            f"Regenerating digest for {day.date()}",
            extra={"digest_date": day.isoformat(), "replacing": existing.id if existing else None},
        )
        return await self._generate(day, inputs, existing_id=existing.id if existing else None)

    async def _generate(
        self, day: datetime, inputs: InputsProvider, existing_id: str | None
    ) -> DigestOutcome:
        reset = self.ledger.reset_if_period_elapsed(self._clock())
        if not self.ledger.can_consume(QuotaCategory.DAILY_DIGEST):
            return await self._quota_exceeded(day, reset)

        # Inputs are gathered before a unit is spent
        if callable(inputs):
            inputs = await inputs()

        consumed = self.ledger.consume(QuotaCategory.DAILY_DIGEST)
        if not consumed.granted:
            return await self._quota_exceeded(day, reset)
        await self._persist_quota()

        try:
            raw = await self.llm.complete_json(
                self.build_prompt(day, inputs),
                system=DIGEST_SYSTEM_PROMPT,
                timeout=self.config.llm.timeout,
                max_tokens=self.config.digest.max_tokens,
                temperature=self.config.digest.temperature,
            )
        except (asyncio.TimeoutError, LLMError) as e:
            return await self._inference_failed(day, consumed, str(e) or "timeout")
        except Exception as e:
            logger.error(
                f"Unexpected digest inference error: {e}",
                extra={"digest_date": day.isoformat(), "error_type": type(e).__name__},
            )
            return await self._inference_failed(day, consumed, str(e))

        try:
            parsed = parse_payload(DigestPayload, raw)
        except ParseError as e:
            logger.warning(
                f"Unparseable digest response for {day.date()}: {e.message}", extra=e.context
            )
            return DigestOutcome(status=DigestStatus.PARSE_FAILED, digest_date=day, error=e.message)

        payload: DigestPayload = parsed.payload
        if not (payload.narrative or payload.highlights or payload.suggested_actions):
            logger.warning(
                f"Digest response for {day.date()} had no usable content",
                extra={"failed_fields": parsed.failed_fields},
            )
            return DigestOutcome(
                status=DigestStatus.PARSE_FAILED,
                digest_date=day,
                failed_fields=parsed.failed_fields,
                error="empty digest",
            )

        digest = self._build_digest(day, payload, inputs, existing_id)
        stored = await self.store.upsert_digest(digest)

        status = DigestStatus.PARSE_FAILED if parsed.degraded else DigestStatus.GENERATED
        if parsed.degraded:
            logger.warning(
                f"Partial digest stored for {day.date()}",
                extra={"digest_id": stored.id, "failed_fields": parsed.failed_fields},
            )
        else:
            logger.info(f"Digest generated for {day.date()}", extra={"digest_id": stored.id})

        return DigestOutcome(
            status=status, digest_date=day, digest=stored, failed_fields=parsed.failed_fields
        )

    async def _quota_exceeded(self, day: datetime, reset: bool) -> DigestOutcome:
        if reset:
            await self._persist_quota()
        logger.info(f"Digest quota exhausted for {day.date()}")
        return DigestOutcome(status=DigestStatus.QUOTA_EXCEEDED, digest_date=day)

    async def _inference_failed(
        self, day: datetime, consumed: ConsumeResult, error: str
    ) -> DigestOutcome:
        self.ledger.refund(consumed)
        await self._persist_quota()
        logger.warning(
            f"Digest inference failed for {day.date()}: {error}",
            extra={"digest_date": day.isoformat()},
        )
        return DigestOutcome(status=DigestStatus.INFERENCE_FAILED, digest_date=day, error=error)

    async def _persist_quota(self) -> None:
        await self.store.save_quota_states(self.ledger.states())

    # ═══════════════════════════════════════════════════════════
    # PROMPT AND RESULT
    # ═══════════════════════════════════════════════════════════

    def build_prompt(self, day: datetime, inputs: DigestInputs) -> str:
        """Render the local context: recent notes, open commitments and the rollup."""
        window = self.config.digest.recent_notes_window
        preview = self.config.digest.note_preview_chars
        names = {project.id: project.name for project in inputs.projects}
        snapshot = inputs.snapshot

        lines = [f"Today is {day.strftime('%A, %B %d, %Y')}.", "", "Recent notes:"]
        notes = sorted(inputs.recent_notes, key=lambda n: n.created_at, reverse=True)[:window]
        if not notes:
            lines.append("- (no notes yet)")
        for note in notes:
            project = names.get(note.project_id, "Inbox")
            text = " ".join(note.text.split())[:preview]
            lines.append(f"- [{project}] {note.display_title}: {text}")

        lines += ["", "Open commitments:"]
        commitments = [c for c in inputs.open_commitments if not c.is_completed]
        if not commitments:
            lines.append("- none")
        for commitment in commitments[:MAX_CONTEXT_COMMITMENTS]:
            age = days_between(commitment.created_at, day)
            lines.append(f"- {commitment.who}: {commitment.content} ({age} days open)")

        lines += [
            "",
            f"Momentum: {snapshot.momentum.value} "
            f"({snapshot.activity_this_window} this week vs {snapshot.activity_prior_window} last week)",
            f"Open actions: {snapshot.open_actions}, stalled items: {snapshot.stalled_count}, "
            f"unresolved: {snapshot.unresolved_count}",
            f"Notes yesterday: {inputs.notes_yesterday}, this week: {snapshot.notes_this_week}",
        ]
        for item in snapshot.stalled_items[:5]:
            lines.append(f"- stalled {item.kind}: {item.content} ({item.days_since_activity} days)")

        return "\n".join(lines)

    def _build_digest(
        self,
        day: datetime,
        payload: DigestPayload,
        inputs: DigestInputs,
        existing_id: str | None,
    ) -> DailyDigest:
        snapshot = inputs.snapshot
        active_since = day - timedelta(days=ACTIVE_PROJECT_DAYS)

        return DailyDigest(
            id=existing_id or generate_digest_id(),
            digest_date=day,
            generated_at=self._clock(),
            narrative=(payload.narrative or "").strip(),
            highlights=[DigestHighlight(content=h.strip()) for h in payload.highlights if h.strip()],
            warnings=[
                DigestWarning(
                    type=DigestWarningType.parse(w.type),
                    content=w.content.strip(),
                    days_since_issue=max(0, w.days_since_issue),
                )
                for w in payload.warnings
            ],
            suggested_actions=[
                SuggestedAction(
                    content=a.content.strip(),
                    reason=a.reason.strip(),
                    project_name=a.project_name,
                    priority=SuggestedPriority.parse(a.priority),
                )
                for a in payload.suggested_actions
            ],
            open_item_count=snapshot.open_actions
            + snapshot.open_commitments
            + snapshot.unresolved_count,
            stalled_item_count=snapshot.stalled_count,
            momentum=snapshot.momentum,
            active_project_count=sum(
                1
                for p in inputs.projects
                if not p.is_archived and p.last_activity_at and p.last_activity_at >= active_since
            ),
            notes_yesterday=inputs.notes_yesterday,
            notes_this_week=snapshot.notes_this_week,
        )

"""
Tests for DailyDigestScheduler.

Tests cover:
1. At most one digest per calendar day
2. Concurrent callers share one inference call
3. Explicit regeneration in place
4. Quota gate, refunds and retries
5. Parse failures and degraded digests
6. Prompt context and stored metrics
"""

import asyncio
from datetime import date, datetime, timedelta

import pytest

from clarity.models.digest import DigestWarningType, SuggestedPriority
from clarity.models.extracted import ExtractedCommitment
from clarity.models.note import Note
from clarity.models.outcomes import DigestStatus
from clarity.models.project import Project
from clarity.models.quota import ConsumeStatus, QuotaCategory, QuotaState
from clarity.models.session import MomentumDirection, SessionSnapshot
from clarity.services.daily_digest_scheduler import DailyDigestScheduler, DigestInputs
from clarity.services.quota_ledger import QuotaLedger
from clarity.utils.exceptions import LLMError, StoreError
from conftest import START, ScriptedLLM

TODAY = datetime(2024, 6, 1)

DIGEST_PAYLOAD = {
    "narrative": "Launch week. QA is the open question.",
    "highlights": ["Pricing page shipped"],
    "warnings": [{"type": "commitment", "content": "Sarah owes the deck", "days_since_issue": 3}],
    "suggested_actions": [
        {
            "content": "Confirm QA owner",
            "reason": "Blocks Friday",
            "project_name": "StockAlarm",
            "priority": "high",
        }
    ],
}


def make_inputs(**kwargs) -> DigestInputs:
    values = {"snapshot": SessionSnapshot(generated_at=START)}
    values.update(kwargs)
    return DigestInputs(**values)


@pytest.fixture
def ledger(config, clock) -> QuotaLedger:
    return QuotaLedger(config.quota.policies(), clock=clock)


@pytest.fixture
def scheduler(llm, store, ledger, config, clock) -> DailyDigestScheduler:
    return DailyDigestScheduler(llm, store, ledger, config, clock=clock)


@pytest.mark.integration
class TestOncePerDay:
    """Test the per-day deduplication."""

    async def test_second_call_returns_existing(self, scheduler, llm, store):
        llm.queue(DIGEST_PAYLOAD)

        first = await scheduler.check_and_generate(TODAY, make_inputs())
        second = await scheduler.check_and_generate(TODAY, make_inputs())

        assert first.status == DigestStatus.GENERATED
        assert second.status == DigestStatus.EXISTING
        assert second.digest.id == first.digest.id
        assert len(llm.calls) == 1
        assert len(await store.list_digests()) == 1

    async def test_time_of_day_normalized(self, scheduler, llm):
        llm.queue(DIGEST_PAYLOAD)

        first = await scheduler.check_and_generate(datetime(2024, 6, 1, 18, 30), make_inputs())
        second = await scheduler.check_and_generate(date(2024, 6, 1), make_inputs())

        assert first.digest_date == TODAY
        assert first.digest.digest_date == TODAY
        assert second.status == DigestStatus.EXISTING

    async def test_next_day_generates_again(self, scheduler, llm, store):
        llm.queue(DIGEST_PAYLOAD, DIGEST_PAYLOAD)

        await scheduler.check_and_generate(TODAY, make_inputs())
        tomorrow = await scheduler.check_and_generate(TODAY + timedelta(days=1), make_inputs())

        assert tomorrow.status == DigestStatus.GENERATED
        assert len(await store.list_digests()) == 2

    async def test_lazy_inputs_skipped_when_existing(self, scheduler, llm):
        llm.queue(DIGEST_PAYLOAD)
        calls = []

        async def provide() -> DigestInputs:
            calls.append(1)
            return make_inputs()

        await scheduler.check_and_generate(TODAY, provide)
        outcome = await scheduler.check_and_generate(TODAY, provide)

        assert outcome.status == DigestStatus.EXISTING
        assert calls == [1]


@pytest.mark.integration
class TestSingleFlight:
    """Test concurrent callers for the same day."""

    async def test_concurrent_checks_share_one_call(self, store, ledger, config, clock):
        llm = ScriptedLLM([DIGEST_PAYLOAD], delay=0.05)
        scheduler = DailyDigestScheduler(llm, store, ledger, config, clock)

        outcomes = await asyncio.gather(
            *(scheduler.check_and_generate(TODAY, make_inputs()) for _ in range(3))
        )

        assert len(llm.calls) == 1
        assert {o.status for o in outcomes} == {DigestStatus.GENERATED}
        assert len({o.digest.id for o in outcomes}) == 1
        assert len(await store.list_digests()) == 1
        assert not scheduler.is_generating(TODAY)

    async def test_regenerate_joins_running_check(self, store, ledger, config, clock):
        llm = ScriptedLLM([DIGEST_PAYLOAD], delay=0.05)
        scheduler = DailyDigestScheduler(llm, store, ledger, config, clock)

        check, regenerate = await asyncio.gather(
            scheduler.check_and_generate(TODAY, make_inputs()),
            scheduler.regenerate(TODAY, make_inputs()),
        )

        assert len(llm.calls) == 1
        assert check.digest.id == regenerate.digest.id


@pytest.mark.integration
class TestRegenerate:
    async def test_replaces_in_place(self, scheduler, llm, store):
        llm.queue(DIGEST_PAYLOAD, {**DIGEST_PAYLOAD, "narrative": "Quieter than expected."})

        first = await scheduler.check_and_generate(TODAY, make_inputs())
        second = await scheduler.regenerate(TODAY, make_inputs())

        assert second.status == DigestStatus.GENERATED
        assert second.digest.id == first.digest.id
        stored = await store.get_digest(TODAY)
        assert stored.narrative == "Quieter than expected."
        assert len(await store.list_digests()) == 1

    async def test_regenerate_without_existing(self, scheduler, llm):
        llm.queue(DIGEST_PAYLOAD)

        outcome = await scheduler.regenerate(TODAY, make_inputs())

        assert outcome.status == DigestStatus.GENERATED


@pytest.mark.integration
class TestQuotaAndFailures:
    """Test quota gating, refunds and parse handling."""

    async def test_quota_exceeded(self, llm, store, config, clock):
        ledger = QuotaLedger(
            config.quota.policies(),
            states=[
                QuotaState(
                    category=QuotaCategory.DAILY_DIGEST,
                    remaining=0,
                    free_grant_used=True,
                    period_start=START,
                )
            ],
            clock=clock,
        )
        scheduler = DailyDigestScheduler(llm, store, ledger, config, clock)

        outcome = await scheduler.check_and_generate(TODAY, make_inputs())

        assert outcome.status == DigestStatus.QUOTA_EXCEEDED
        assert llm.calls == []
        assert await store.get_digest(TODAY) is None

    async def test_inference_failure_refunds_and_retry_succeeds(self, scheduler, llm, ledger, store):
        assert ledger.consume(QuotaCategory.DAILY_DIGEST).status == ConsumeStatus.FREE_GRANT
        before = ledger.remaining(QuotaCategory.DAILY_DIGEST)
        llm.queue(LLMError("model unavailable"), DIGEST_PAYLOAD)

        failed = await scheduler.check_and_generate(TODAY, make_inputs())

        assert failed.status == DigestStatus.INFERENCE_FAILED
        assert failed.retryable
        assert ledger.remaining(QuotaCategory.DAILY_DIGEST) == before
        assert await store.get_digest(TODAY) is None

        retried = await scheduler.check_and_generate(TODAY, make_inputs())

        assert retried.status == DigestStatus.GENERATED
        assert ledger.remaining(QuotaCategory.DAILY_DIGEST) == before - 1

    async def test_inputs_failure_spends_nothing(self, scheduler, llm, ledger):
        before = ledger.remaining(QuotaCategory.DAILY_DIGEST)

        async def broken_inputs() -> DigestInputs:
            raise StoreError("database is locked")

        with pytest.raises(StoreError):
            await scheduler.check_and_generate(TODAY, broken_inputs)

        assert llm.calls == []
        assert ledger.remaining(QuotaCategory.DAILY_DIGEST) == before
        assert ledger.consume(QuotaCategory.DAILY_DIGEST).status == ConsumeStatus.FREE_GRANT

    async def test_garbage_not_persisted(self, scheduler, llm, store):
        llm.queue("Here is your digest! Have a great day.")

        outcome = await scheduler.check_and_generate(TODAY, make_inputs())

        assert outcome.status == DigestStatus.PARSE_FAILED
        assert outcome.digest is None
        assert await store.get_digest(TODAY) is None

    async def test_empty_object_not_persisted(self, scheduler, llm, store):
        llm.queue({})

        outcome = await scheduler.check_and_generate(TODAY, make_inputs())

        assert outcome.status == DigestStatus.PARSE_FAILED
        assert await store.get_digest(TODAY) is None

    async def test_degraded_digest_persisted(self, scheduler, llm, store):
        llm.queue({"narrative": "Busy day.", "highlights": "not a list"})

        outcome = await scheduler.check_and_generate(TODAY, make_inputs())

        assert outcome.status == DigestStatus.PARSE_FAILED
        assert outcome.failed_fields == ["highlights"]
        assert outcome.digest.narrative == "Busy day."
        assert (await store.get_digest(TODAY)).narrative == "Busy day."


@pytest.mark.unit
class TestDigestContent:
    """Test prompt rendering and the stored digest fields."""

    def test_prompt_includes_context(self, scheduler):
        project = Project(id="proj_sa", name="StockAlarm")
        notes = [
            Note(id="note_1", content="Pricing   page\nlive", title="Pricing", project_id="proj_sa"),
            Note(id="note_2", content="Call the bank"),
        ]
        commitment = ExtractedCommitment(
            id="com_1",
            source_note_id="note_1",
            content="send the deck",
            who="Sarah",
            created_at=TODAY - timedelta(days=3),
        )

        prompt = scheduler.build_prompt(
            TODAY,
            make_inputs(
                recent_notes=notes,
                open_commitments=[commitment],
                projects=[project],
                notes_yesterday=2,
            ),
        )

        assert "Saturday, June 01, 2024" in prompt
        assert "- [StockAlarm] Pricing: Pricing page live" in prompt
        assert "- [Inbox] Call the bank: Call the bank" in prompt
        assert "- Sarah: send the deck (3 days open)" in prompt
        assert "Notes yesterday: 2" in prompt

    def test_prompt_without_notes(self, scheduler):
        prompt = scheduler.build_prompt(TODAY, make_inputs())

        assert "- (no notes yet)" in prompt
        assert "- none" in prompt

    def test_prompt_limits_recent_notes(self, scheduler, config):
        notes = [
            Note(id=f"note_{i}", content=f"note number {i}", created_at=START - timedelta(hours=i))
            for i in range(config.digest.recent_notes_window + 5)
        ]

        prompt = scheduler.build_prompt(TODAY, make_inputs(recent_notes=notes))

        assert prompt.count("[Inbox]") == config.digest.recent_notes_window
        assert "note number 0" in prompt

    async def test_metrics_recorded(self, scheduler, llm):
        snapshot = SessionSnapshot(
            generated_at=START,
            open_actions=2,
            open_commitments=1,
            unresolved_count=1,
            stalled_count=1,
            momentum=MomentumDirection.UP,
            notes_this_week=4,
        )
        projects = [
            Project(id="proj_a", name="Active", last_activity_at=TODAY - timedelta(days=2)),
            Project(id="proj_b", name="Old", last_activity_at=TODAY - timedelta(days=30)),
            Project(id="proj_c", name="Archived", is_archived=True, last_activity_at=TODAY),
        ]
        llm.queue(DIGEST_PAYLOAD)

        outcome = await scheduler.check_and_generate(
            TODAY, make_inputs(snapshot=snapshot, projects=projects, notes_yesterday=3)
        )
        digest = outcome.digest

        assert digest.open_item_count == 4
        assert digest.stalled_item_count == 1
        assert digest.momentum == MomentumDirection.UP
        assert digest.active_project_count == 1
        assert digest.notes_yesterday == 3
        assert digest.notes_this_week == 4

    async def test_payload_mapped_to_digest(self, scheduler, llm, store):
        llm.queue(
            {
                "summary": "Launch week.",
                "highlights": ["Pricing page shipped", "  "],
                "warnings": [{"type": "mystery", "content": "Something", "days_since_issue": -2}],
                "priorities": [{"content": "Reply to Sarah", "priority": "urgent"}],
            }
        )

        outcome = await scheduler.check_and_generate(TODAY, make_inputs())
        stored = await store.get_digest(TODAY)

        assert outcome.status == DigestStatus.GENERATED
        assert stored.narrative == "Launch week."
        assert [h.content for h in stored.highlights] == ["Pricing page shipped"]
        assert stored.warnings[0].type == DigestWarningType.STALLED
        assert stored.warnings[0].days_since_issue == 0
        assert stored.suggested_actions[0].content == "Reply to Sarah"
        assert stored.suggested_actions[0].priority == SuggestedPriority.HIGH

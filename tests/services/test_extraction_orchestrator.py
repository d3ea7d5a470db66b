"""
Tests for ExtractionOrchestrator.

Tests cover:
1. Successful extraction writes items, tags and people
2. Idempotent re-extraction
3. Quota gate and refunds
4. Single-flight per note
5. Inference and parse failures
6. Project resolution
"""

import asyncio

import pytest

from clarity.config import LLMConfig
from clarity.models.extracted import ActionPriority
from clarity.models.note import NextStepType, Tag
from clarity.models.outcomes import ExtractionStatus
from clarity.models.project import MatchType, Project, initial_aliases
from clarity.models.quota import ConsumeStatus, QuotaCategory, QuotaState
from clarity.services.extraction_orchestrator import ExtractionOrchestrator, sample_text
from clarity.services.project_matcher import ProjectMatcher
from clarity.services.quota_ledger import QuotaLedger
from clarity.utils.exceptions import LLMError
from conftest import START, ScriptedLLM, make_config, make_note

FRIDAY_PAYLOAD = {
    "title": "Ship by Friday",
    "tags": ["Launch", "#qa", "launch"],
    "intent": "action",
    "intent_confidence": 0.9,
    "decisions": [{"content": "Ship on Friday", "affects": "launch", "confidence": "high"}],
    "actions": [
        {"content": "Ship the release", "owner": "me", "deadline": "Friday", "priority": "high"},
        {"content": "Run QA", "owner": "John", "deadline": "Friday", "priority": "medium"},
    ],
    "commitments": [{"who": "John", "what": "own QA"}],
    "unresolved": [],
    "mentioned_people": ["John", "me"],
    "inferred_project": None,
    "next_step": "Confirm the QA plan with John",
    "next_step_type": "contact",
}


@pytest.fixture
def ledger(config, clock) -> QuotaLedger:
    return QuotaLedger(config.quota.policies(), clock=clock)


@pytest.fixture
def orchestrator(llm, store, ledger, config, clock) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(llm, store, ledger, ProjectMatcher(), config, clock=clock)


async def saved_note(store, **kwargs):
    note = make_note(**kwargs)
    await store.add_note(note)
    return note


async def wait_for_call(llm: ScriptedLLM) -> None:
    while not llm.calls:
        await asyncio.sleep(0.01)


@pytest.mark.unit
class TestSampleText:
    def test_short_text_unchanged(self):
        assert sample_text("short note", 100, 20) == "short note"

    def test_long_text_keeps_beginning_and_end(self):
        text = "".join(str(i % 10) for i in range(10_000))

        sampled = sample_text(text, 8000, 2000)

        assert sampled.startswith(text[:2000])
        assert sampled.endswith(text[-2000:])
        assert sampled.count("[...]") == 4


@pytest.mark.integration
class TestSuccessfulExtraction:
    """Test the happy path against a real store."""

    async def test_items_written_with_source_note(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD)

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.SUCCESS
        assert outcome.note.title == "Ship by Friday"
        assert outcome.note.intent == "action"
        assert outcome.note.extracted_at == START
        assert outcome.note.next_step.text == "Confirm the QA plan with John"
        assert outcome.note.next_step.category == NextStepType.CONTACT

        actions = await store.list_actions(note_id=note.id)
        assert len(actions) == 2
        assert all(a.source_note_id == note.id for a in actions)
        qa = next(a for a in actions if a.content == "Run QA")
        assert qa.owner == "John"
        assert qa.deadline == "Friday"
        assert qa.priority == ActionPriority.NORMAL

        commitments = await store.list_commitments(note_id=note.id)
        assert [(c.who, c.content) for c in commitments] == [("John", "own QA")]
        assert len(await store.list_decisions(note_id=note.id)) == 1

    async def test_prompt_uses_json_mode(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD)

        await orchestrator.process_note_save(note)

        assert len(llm.calls) == 1
        assert llm.calls[0]["json_mode"] is True
        assert llm.calls[0]["prompt"].startswith("Note:\n")
        assert "Ship by Friday, John owns QA." in llm.calls[0]["prompt"]

    async def test_tags_cleaned_and_deduplicated(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD)

        outcome = await orchestrator.process_note_save(note)

        assert sorted(t.name for t in outcome.tags) == ["launch", "qa"]
        assert sorted(t.name for t in await store.get_note_tags(note.id)) == ["launch", "qa"]

    async def test_existing_tag_spelling_reused(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD)

        outcome = await orchestrator.process_note_save(
            note, tags=[Tag(id="tag_existing", name="QA")]
        )

        assert "QA" in {t.name for t in outcome.tags}

    async def test_author_not_recorded_as_person(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD)

        outcome = await orchestrator.process_note_save(note)

        assert [p.name for p in outcome.people] == ["John"]
        assert outcome.people[0].mention_count == 1

    async def test_person_deduplicated_across_notes(self, orchestrator, llm, store):
        first = await saved_note(store, content="Lunch with Sarah")
        second = await saved_note(store, content="sarah sent the deck")
        llm.queue({"mentioned_people": ["Sarah"]}, {"mentioned_people": ["sarah "]})

        await orchestrator.process_note_save(first)
        await orchestrator.process_note_save(second)

        people = await store.list_people()
        assert len(people) == 1
        assert people[0].name == "Sarah"
        assert people[0].mention_count == 2

    async def test_transcript_used_when_content_empty(self, orchestrator, llm, store):
        note = await saved_note(store, content="", transcript="Call the bank tomorrow")
        llm.queue({"title": "Call the bank"})

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.SUCCESS
        assert "Call the bank tomorrow" in llm.calls[0]["prompt"]


@pytest.mark.integration
class TestReExtraction:
    """Test that extracting the same note twice does not duplicate state."""

    async def test_items_replaced_not_duplicated(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD, FRIDAY_PAYLOAD)

        await orchestrator.process_note_save(note)
        await orchestrator.process_note_save(note)

        assert len(await store.list_actions(note_id=note.id)) == 2
        assert len(await store.list_commitments(note_id=note.id)) == 1
        assert len(await store.get_note_tags(note.id)) == 2
        people = await store.list_people()
        assert [(p.name, p.mention_count) for p in people] == [("John", 1)]

    async def test_completed_flag_survives(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD, FRIDAY_PAYLOAD)

        await orchestrator.process_note_save(note)
        qa = next(a for a in await store.list_actions(note_id=note.id) if a.content == "Run QA")
        await store.set_action_completed(qa.id, True, START)
        await orchestrator.process_note_save(note)

        actions = {a.content: a for a in await store.list_actions(note_id=note.id)}
        assert actions["Run QA"].is_completed is True
        assert actions["Ship the release"].is_completed is False

    async def test_resolved_next_step_kept(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD, {**FRIDAY_PAYLOAD, "next_step": "Something else"})

        outcome = await orchestrator.process_note_save(note)
        resolved = outcome.note.model_copy(deep=True)
        resolved.next_step.resolved = True
        resolved.next_step.resolution = "Called John"
        await store.update_note(resolved)

        second = await orchestrator.process_note_save(resolved)

        assert second.note.next_step.text == "Confirm the QA plan with John"
        assert second.note.next_step.resolved is True


@pytest.mark.integration
class TestQuota:
    """Test the extraction quota gate."""

    async def test_quota_exceeded_skips_inference(self, llm, store, config, clock):
        ledger = QuotaLedger(
            config.quota.policies(),
            states=[
                QuotaState(
                    category=QuotaCategory.EXTRACTION,
                    remaining=0,
                    free_grant_used=True,
                    period_start=START,
                )
            ],
            clock=clock,
        )
        orchestrator = ExtractionOrchestrator(llm, store, ledger, ProjectMatcher(), config, clock)
        note = await saved_note(store)

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.QUOTA_EXCEEDED
        assert llm.calls == []
        assert await store.list_actions() == []

    async def test_consumption_persisted(self, orchestrator, llm, store, ledger):
        note = await saved_note(store)
        llm.queue(FRIDAY_PAYLOAD, FRIDAY_PAYLOAD)

        await orchestrator.process_note_save(note)
        await orchestrator.process_note_save(note)

        states = {s.category: s for s in await store.load_quota_states()}
        assert states[QuotaCategory.EXTRACTION].free_grant_used is True
        assert states[QuotaCategory.EXTRACTION].remaining == ledger.policies[
            QuotaCategory.EXTRACTION
        ].maximum - 1

    async def test_empty_note_consumes_nothing(self, orchestrator, llm, store, ledger):
        note = await saved_note(store, content="   ")

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.PARSE_FAILED
        assert llm.calls == []
        assert ledger.state(QuotaCategory.EXTRACTION).free_grant_used is False


@pytest.mark.integration
class TestFailures:
    """Test inference and parse failure handling."""

    async def test_timeout_refunds_consumed_unit(self, store, clock):
        config = make_config(llm=LLMConfig(provider="ollama", model="test-model", timeout=0.05))
        ledger = QuotaLedger(config.quota.policies(), clock=clock)
        assert ledger.consume(QuotaCategory.EXTRACTION).status == ConsumeStatus.FREE_GRANT
        before = ledger.remaining(QuotaCategory.EXTRACTION)
        llm = ScriptedLLM([FRIDAY_PAYLOAD], gate=asyncio.Event())
        orchestrator = ExtractionOrchestrator(llm, store, ledger, ProjectMatcher(), config, clock)
        note = await saved_note(store)

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.INFERENCE_FAILED
        assert outcome.retryable
        assert ledger.remaining(QuotaCategory.EXTRACTION) == before
        states = {s.category: s for s in await store.load_quota_states()}
        assert states[QuotaCategory.EXTRACTION].remaining == before
        assert await store.list_actions() == []

    async def test_llm_error_is_reported(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(LLMError("connection refused"))

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.INFERENCE_FAILED
        assert "connection refused" in outcome.error
        assert not orchestrator.is_processing(note.id)

    async def test_retry_after_failure_succeeds(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(LLMError("boom"), FRIDAY_PAYLOAD)

        first = await orchestrator.process_note_save(note)
        second = await orchestrator.process_note_save(note)

        assert first.status == ExtractionStatus.INFERENCE_FAILED
        assert second.status == ExtractionStatus.SUCCESS

    async def test_garbage_writes_nothing(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue("I'm sorry, I can't help with that.")

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.PARSE_FAILED
        stored = await store.get_note(note.id)
        assert stored.title == ""
        assert stored.extracted_at is None
        assert await store.list_actions() == []

    async def test_truncated_json_salvages_title(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue('{"title": "Pricing call", "intent": "update", "actions": [{"content": "Se')

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.PARSE_FAILED
        assert "actions" in outcome.failed_fields
        stored = await store.get_note(note.id)
        assert stored.title == "Pricing call"
        assert stored.intent == "update"
        assert await store.list_actions() == []

    async def test_bad_list_entries_dropped(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(
            {
                "title": "Mixed",
                "actions": [{"content": "Send invoice"}, {"owner": "nobody"}],
            }
        )

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.PARSE_FAILED
        assert outcome.failed_fields == ["actions"]
        assert [a.content for a in await store.list_actions(note_id=note.id)] == ["Send invoice"]
        assert (await store.get_note(note.id)).title == "Mixed"

    async def test_null_item_fields_use_defaults(self, orchestrator, llm, store):
        note = await saved_note(store)
        llm.queue(
            {
                "actions": [
                    {"content": "Ship by Friday", "owner": "John", "deadline": None, "priority": None}
                ],
                "commitments": [{"who": None, "what": "own QA"}],
            }
        )

        outcome = await orchestrator.process_note_save(note)

        assert outcome.status == ExtractionStatus.SUCCESS
        actions = await store.list_actions(note_id=note.id)
        assert [(a.content, a.owner, a.deadline, a.priority) for a in actions] == [
            ("Ship by Friday", "John", "TBD", ActionPriority.NORMAL)
        ]
        commitments = await store.list_commitments(note_id=note.id)
        assert [(c.content, c.who) for c in commitments] == [("own QA", "I")]


@pytest.mark.integration
class TestConcurrency:
    """Test per-note single flight and deletion during inference."""

    async def test_second_call_reports_in_progress(self, store, ledger, config, clock):
        gate = asyncio.Event()
        llm = ScriptedLLM([FRIDAY_PAYLOAD], gate=gate)
        orchestrator = ExtractionOrchestrator(llm, store, ledger, ProjectMatcher(), config, clock)
        note = await saved_note(store)

        first = asyncio.create_task(orchestrator.process_note_save(note))
        await wait_for_call(llm)
        assert orchestrator.is_processing(note.id)

        second = await orchestrator.process_note_save(note)
        gate.set()
        result = await first

        assert second.status == ExtractionStatus.IN_PROGRESS
        assert result.status == ExtractionStatus.SUCCESS
        assert len(llm.calls) == 1
        assert len(await store.list_actions(note_id=note.id)) == 2

    async def test_different_notes_run_concurrently(self, orchestrator, llm, store):
        one = await saved_note(store, content="first")
        two = await saved_note(store, content="second")
        llm.queue({"title": "One"}, {"title": "Two"})

        results = await asyncio.gather(
            orchestrator.process_note_save(one), orchestrator.process_note_save(two)
        )

        assert [r.status for r in results] == [ExtractionStatus.SUCCESS] * 2

    async def test_note_deleted_during_inference(self, store, ledger, config, clock):
        gate = asyncio.Event()
        llm = ScriptedLLM([FRIDAY_PAYLOAD], gate=gate)
        orchestrator = ExtractionOrchestrator(llm, store, ledger, ProjectMatcher(), config, clock)
        note = await saved_note(store)

        task = asyncio.create_task(orchestrator.process_note_save(note))
        await wait_for_call(llm)
        assert await store.delete_note(note.id)
        gate.set()
        outcome = await task

        assert outcome.status == ExtractionStatus.NOT_FOUND
        assert await store.get_note(note.id) is None
        assert await store.list_actions() == []
        assert await store.list_people() == []


@pytest.mark.integration
class TestProjectResolution:
    """Test inferred project handling."""

    async def test_inferred_project_assigned(self, orchestrator, llm, store):
        project = Project(id="proj_sa", name="StockAlarm", aliases=initial_aliases("StockAlarm"))
        await store.add_project(project)
        note = await saved_note(store, content="update the pricing page")
        llm.queue({"title": "Pricing page", "inferred_project": "StockAlarm"})

        outcome = await orchestrator.process_note_save(note)

        assert outcome.note.project_id == "proj_sa"
        assert outcome.note.inferred_project_name == "StockAlarm"
        assert outcome.project_match.match_type == MatchType.ALIAS
        assert (await store.get_project("proj_sa")).note_count == 1

    async def test_unknown_project_left_unassigned(self, orchestrator, llm, store):
        note = await saved_note(store, content="buy groceries")
        llm.queue({"title": "Groceries", "inferred_project": "Household"})

        outcome = await orchestrator.process_note_save(note)

        assert outcome.note.project_id is None
        assert outcome.note.inferred_project_name == "Household"
        assert outcome.project_match is None

    async def test_assigned_project_not_overridden(self, orchestrator, llm, store):
        await store.add_project(
            Project(id="proj_sa", name="StockAlarm", aliases=initial_aliases("StockAlarm"))
        )
        await store.add_project(Project(id="proj_web", name="Website", aliases=["website"]))
        note = await saved_note(store, content="StockAlarm pricing", project_id="proj_web")
        llm.queue({"title": "Pricing", "inferred_project": "StockAlarm"})

        outcome = await orchestrator.process_note_save(note)

        assert outcome.note.project_id == "proj_web"
        assert outcome.project_match is None

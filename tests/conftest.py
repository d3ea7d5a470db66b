"""
Shared fixtures for all test modules.

Services run against a scripted LLM provider and a real SQLite store on a
temporary path. Time is driven by a manual clock.
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest

from clarity.config import Config, LLMConfig, QuotaConfig, UrlFetchConfig
from clarity.core.llm.base import LLMProvider
from clarity.core.store.sqlite_store import SQLiteNoteStore
from clarity.models.note import Note
from clarity.services.intelligence_engine import IntelligenceEngine
from clarity.utils.exceptions import LLMError
from clarity.utils.id_generator import generate_note_id

START = datetime(2024, 6, 1, 9, 0)


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedLLM(LLMProvider):
    """
    LLM provider returning queued responses in order.

    dicts are serialized to JSON, exceptions are raised. An optional gate
    holds every call until it is set.
    """

    def __init__(self, responses=None, gate: asyncio.Event | None = None, delay: float = 0.0):
        self.responses = list(responses or [])
        self.gate = gate
        self.delay = delay
        self.calls: list[dict] = []
        self.closed = False

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    async def complete(
        self,
        prompt,
        max_tokens=1000,
        temperature=0.3,
        system=None,
        json_mode=False,
        **kwargs,
    ):
        self.calls.append({"prompt": prompt, "system": system, "json_mode": json_mode})
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise LLMError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response

    async def close(self):
        self.closed = True


def make_note(content: str = "Ship by Friday, John owns QA.", **kwargs) -> Note:
    now = kwargs.pop("created_at", START)
    return Note(id=generate_note_id(), content=content, created_at=now, updated_at=now, **kwargs)


def make_config(**overrides) -> Config:
    """Test configuration: short LLM timeout, no network URL fetching."""
    values = {
        "llm": LLMConfig(provider="ollama", model="test-model", timeout=1.0),
        "url_fetch": UrlFetchConfig(enabled=False),
        "quota": QuotaConfig(notes_limit=50),
    }
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
async def store(tmp_path) -> AsyncGenerator[SQLiteNoteStore, None]:
    """Fresh SQLite store per test."""
    note_store = SQLiteNoteStore(db_path=str(tmp_path / "clarity.db"))
    await note_store.initialize()
    yield note_store
    await note_store.close()


@pytest.fixture
async def engine(llm, store, config, clock) -> AsyncGenerator[IntelligenceEngine, None]:
    """Intelligence engine wired to the scripted LLM and temp store."""
    intelligence = IntelligenceEngine(llm=llm, store=store, config=config, clock=clock)
    await intelligence.initialize()
    yield intelligence
    await intelligence.close()

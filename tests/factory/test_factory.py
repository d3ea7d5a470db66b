"""
Tests for factory classes.

Tests the creation of components using factories.
"""

import pytest

from clarity.config import LLMConfig, StorageConfig
from clarity.core.factory import LLMFactory, StoreFactory
from clarity.core.llm.base import LLMProvider
from clarity.core.llm.ollama import OllamaLLM
from clarity.core.llm.openai import OpenAILLM
from clarity.core.store.base import NoteStore
from clarity.core.store.sqlite_store import SQLiteNoteStore
from clarity.utils.exceptions import ConfigurationError


@pytest.mark.unit
class TestLLMFactory:
    """Test LLM factory."""

    def test_create_ollama_llm(self):
        """Test creating Ollama LLM provider."""
        config = LLMConfig(
            provider="ollama",
            model="llama3.1:8b",
            base_url="http://localhost:11434",
            timeout=12.0,
        )

        llm = LLMFactory.create(config)

        assert isinstance(llm, OllamaLLM)
        assert isinstance(llm, LLMProvider)
        assert llm.model == "llama3.1:8b"
        assert llm.timeout == 12.0

    def test_create_openai_llm(self):
        """Test creating OpenAI LLM provider."""
        config = LLMConfig(provider="openai", model="gpt-4o-mini", api_key="sk-test-key")

        llm = LLMFactory.create(config)

        assert isinstance(llm, OpenAILLM)
        assert llm.model == "gpt-4o-mini"

    def test_create_openai_without_api_key_raises_error(self):
        """Test that OpenAI without API key raises error."""
        config = LLMConfig(provider="openai", model="gpt-4o", api_key=None)

        with pytest.raises(ConfigurationError, match="API key is required"):
            LLMFactory.create(config)

    def test_unsupported_provider(self):
        with pytest.raises(ConfigurationError, match="Unsupported LLM provider"):
            LLMFactory.create(LLMConfig(provider="anthropic"))


@pytest.mark.unit
class TestStoreFactory:
    """Test store factory."""

    def test_create_sqlite_store(self, tmp_path):
        db_path = str(tmp_path / "nested" / "clarity.db")

        store = StoreFactory.create(StorageConfig(backend="sqlite", db_path=db_path))

        assert isinstance(store, SQLiteNoteStore)
        assert isinstance(store, NoteStore)
        assert store.db_path == db_path
        assert (tmp_path / "nested").is_dir()

    def test_create_memory_store(self):
        store = StoreFactory.create(StorageConfig(backend="memory"))

        assert isinstance(store, SQLiteNoteStore)
        assert store.db_path == ":memory:"

    def test_unsupported_backend(self):
        with pytest.raises(ConfigurationError, match="Unsupported storage backend"):
            StoreFactory.create(StorageConfig(backend="postgres"))

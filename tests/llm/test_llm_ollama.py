"""
Tests for Ollama LLM provider.
"""

from unittest.mock import AsyncMock, patch

import pytest

from clarity.core.llm.ollama import OllamaLLM
from clarity.utils.exceptions import LLMError, ValidationError


@pytest.fixture
def ollama_llm():
    """Create Ollama LLM for testing."""
    return OllamaLLM(host="http://localhost:11434", model="llama3.1:8b", timeout=30.0)


@pytest.mark.unit
@pytest.mark.asyncio
class TestOllamaLLM:
    """Test Ollama LLM provider."""

    async def test_initialization(self, ollama_llm):
        """Test provider initialization."""
        assert ollama_llm.host == "http://localhost:11434"
        assert ollama_llm.model == "llama3.1:8b"
        assert ollama_llm.timeout == 30.0
        assert ollama_llm.client is not None

    async def test_default_host(self):
        assert OllamaLLM(host=None).host == "http://localhost:11434"

    async def test_complete_simple(self, ollama_llm):
        """Test simple text completion."""
        with patch.object(ollama_llm.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.return_value = {"message": {"content": "Ship it Friday"}}

            result = await ollama_llm.complete("Summarize the note", max_tokens=50)

            assert result == "Ship it Friday"
            call_args = mock_chat.call_args
            assert call_args.kwargs["format"] is None
            assert call_args.kwargs["options"]["num_predict"] == 50
            assert call_args.kwargs["messages"] == [
                {"role": "user", "content": "Summarize the note"}
            ]

    async def test_system_and_json_mode(self, ollama_llm):
        """Test that system prompts lead and json_mode switches the format."""
        with patch.object(ollama_llm.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.return_value = {"message": {"content": '{"title": "x"}'}}

            result = await ollama_llm.complete(
                "Note: hello", system="Return JSON", json_mode=True, temperature=0.1
            )

            assert result == '{"title": "x"}'
            call_args = mock_chat.call_args
            assert call_args.kwargs["format"] == "json"
            assert call_args.kwargs["options"]["temperature"] == 0.1
            assert call_args.kwargs["messages"][0] == {"role": "system", "content": "Return JSON"}

    async def test_complete_with_extra_options(self, ollama_llm):
        """Test completion with extra options."""
        with patch.object(ollama_llm.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.return_value = {"message": {"content": "test"}}

            await ollama_llm.complete("test", options={"top_p": 0.9})

            assert mock_chat.call_args.kwargs["options"]["top_p"] == 0.9

    async def test_empty_prompt(self, ollama_llm):
        with pytest.raises(ValidationError):
            await ollama_llm.complete("   ")

    async def test_api_error_wrapped(self, ollama_llm):
        """Test that client errors surface as LLMError."""
        with patch.object(ollama_llm.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.side_effect = ConnectionError("connection refused")

            with pytest.raises(LLMError, match="Ollama API error"):
                await ollama_llm.complete("test")

    async def test_empty_content(self, ollama_llm):
        with patch.object(ollama_llm.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.return_value = {"message": {"content": ""}}

            with pytest.raises(LLMError, match="empty content"):
                await ollama_llm.complete("test")

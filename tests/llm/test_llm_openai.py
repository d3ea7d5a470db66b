"""
Tests for OpenAI LLM provider.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from clarity.core.llm.openai import OpenAILLM
from clarity.utils.exceptions import LLMError, ValidationError


def chat_response(content):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    return response


@pytest.fixture
def openai_llm():
    """Create OpenAI LLM for testing."""
    return OpenAILLM(api_key="test-key", model="gpt-4o-mini", timeout=30.0)


@pytest.mark.unit
@pytest.mark.asyncio
class TestOpenAILLM:
    """Test OpenAI LLM provider."""

    async def test_initialization(self, openai_llm):
        """Test provider initialization."""
        assert openai_llm.model == "gpt-4o-mini"
        assert openai_llm.client is not None

    async def test_initialization_with_base_url(self):
        llm = OpenAILLM(api_key="test-key", base_url="https://custom.example.com/v1")
        assert llm.client is not None

    async def test_complete_simple(self, openai_llm):
        """Test simple completion."""
        with patch.object(
            openai_llm.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            mock_create.return_value = chat_response("test response")

            result = await openai_llm.complete("test prompt", max_tokens=200, temperature=0.5)

            assert result == "test response"
            call_args = mock_create.call_args
            assert call_args.kwargs["model"] == "gpt-4o-mini"
            assert call_args.kwargs["max_tokens"] == 200
            assert call_args.kwargs["temperature"] == 0.5
            assert "response_format" not in call_args.kwargs

    async def test_json_mode_and_system(self, openai_llm):
        """Test that json_mode requests a JSON object and system leads the messages."""
        with patch.object(
            openai_llm.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            mock_create.return_value = chat_response('{"title": "Launch"}')

            await openai_llm.complete("Note: launch", system="Return JSON", json_mode=True)

            call_args = mock_create.call_args
            assert call_args.kwargs["response_format"] == {"type": "json_object"}
            assert call_args.kwargs["messages"] == [
                {"role": "system", "content": "Return JSON"},
                {"role": "user", "content": "Note: launch"},
            ]

    async def test_empty_prompt(self, openai_llm):
        with pytest.raises(ValidationError):
            await openai_llm.complete("")

    async def test_empty_content(self, openai_llm):
        with patch.object(
            openai_llm.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            mock_create.return_value = chat_response(None)

            with pytest.raises(LLMError, match="empty content"):
                await openai_llm.complete("test")

    async def test_api_error_wrapped(self, openai_llm):
        """Test that SDK errors surface as LLMError."""
        with patch.object(
            openai_llm.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            mock_create.side_effect = RuntimeError("rate limited")

            with pytest.raises(LLMError, match="OpenAI API error"):
                await openai_llm.complete("test")

    async def test_close(self, openai_llm):
        with patch.object(openai_llm.client, "close", new_callable=AsyncMock) as mock_close:
            await openai_llm.close()

            mock_close.assert_awaited_once()

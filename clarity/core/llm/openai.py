"""
OpenAI LLM provider using official SDK.
"""

from typing import Any

from openai import AsyncOpenAI

from clarity.core.llm.base import LLMProvider
from clarity.utils.exceptions import LLMError
from clarity.utils.logger import get_logger

logger = get_logger(__name__)


class OpenAILLM(LLMProvider):
    """
    OpenAI LLM provider for text generation.

    Extraction and digest calls use JSON object mode and are parsed leniently
    by the services.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        organization: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        """
        Initialize OpenAI LLM provider.

        Args:
            api_key: OpenAI API key
            model: Model name (e.g., "gpt-4o", "gpt-4o-mini")
            organization: Optional organization ID
            base_url: Optional custom base URL (OpenAI-compatible servers)
            timeout: Request timeout in seconds
        """
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key, organization=organization, base_url=base_url, timeout=timeout
        )

    async def complete(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.3,
        system: str | None = None,
        json_mode: bool = False,
        **kwargs,
    ) -> str:
        """
        Generate completion using OpenAI.

        Raises:
            LLMError: If OpenAI API call fails or returns nothing
            ValidationError: If the prompt is empty
        """
        params: dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(prompt, system),
            "temperature": temperature,
            "max_tokens": max_tokens,
            **kwargs,
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}

        try:
            return await self._create(params)
        except LLMError:
            raise
        except Exception as e:
            logger.error(
                f"OpenAI API error: {e}",
                extra={"model": self.model, "error_type": type(e).__name__},
            )
            raise LLMError(f"OpenAI API error: {e}", {"model": self.model}) from e

    async def _create(self, params: dict[str, Any]) -> str:
        response = await self.client.chat.completions.create(**params)
        content = response.choices[0].message.content
        if not content:
            raise LLMError("OpenAI returned empty content", {"model": self.model})
        return content

    async def close(self):
        """Close OpenAI client."""
        await self.client.close()

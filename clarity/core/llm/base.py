"""
Abstract base class for LLM providers.
Handles text generation with optional JSON-only output.
"""

import asyncio
from abc import ABC, abstractmethod

from clarity.utils.exceptions import ValidationError


class LLMProvider(ABC):
    """
    Abstract base for LLM text generation providers.

    Responsibilities:
    - Text completion/generation
    - JSON mode for responses parsed leniently by the caller
    """

    @abstractmethod
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
        Generate completion from prompt.

        Args:
            prompt: The input prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (0.0 = deterministic, 1.0 = creative)
            system: Optional system instructions
            json_mode: Ask the provider for a JSON object, returned as raw text
            **kwargs: Provider-specific parameters

        Returns:
            Generated text

        Raises:
            LLMError: If the provider call fails
            ValidationError: If the prompt is empty
        """
        pass

    async def complete_json(
        self,
        prompt: str,
        system: str,
        timeout: float,
        max_tokens: int = 1000,
        temperature: float = 0.3,
    ) -> str:
        """
        One JSON-mode call bounded by timeout.

        Raises:
            LLMError: If the provider call fails
            asyncio.TimeoutError: If no reply arrives within timeout seconds
        """
        return await asyncio.wait_for(
            self.complete(
                prompt,
                system=system,
                json_mode=True,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            timeout=timeout,
        )

    @staticmethod
    def build_messages(prompt: str, system: str | None = None) -> list[dict[str, str]]:
        """
        Chat messages for a prompt, system instructions first.

        Raises:
            ValidationError: If prompt is empty
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt cannot be empty")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    @abstractmethod
    async def close(self):
        """
        Close any open connections.
        """

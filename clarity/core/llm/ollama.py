"""
Ollama LLM provider using native ollama-python SDK.
"""

import ollama

from clarity.core.llm.base import LLMProvider
from clarity.utils.exceptions import LLMError
from clarity.utils.logger import get_logger

logger = get_logger(__name__)


class OllamaLLM(LLMProvider):
    """
    Ollama LLM provider for text generation.

    Uses native ollama-python SDK for chat completions
    with JSON mode for replies the services parse leniently.
    """

    def __init__(
        self,
        host: str | None = "http://localhost:11434",
        model: str = "llama3.1:8b",
        timeout: float = 30.0,
    ):
        """
        Initialize Ollama LLM provider.

        Args:
            host: Ollama server URL
            model: Model name for text generation (e.g., "llama3.1", "mistral")
            timeout: Request timeout in seconds
        """
        self.host = host or "http://localhost:11434"
        self.model = model
        self.timeout = timeout

        self.client = ollama.AsyncClient(host=self.host, timeout=timeout)

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
        Generate completion using Ollama.

        json_mode switches the server into JSON output.

        Raises:
            LLMError: If the Ollama call fails or returns nothing
            ValidationError: If the prompt is empty
        """
        messages = self.build_messages(prompt, system)

        options = {
            "temperature": temperature,
            "num_predict": max_tokens,
            **kwargs.get("options", {}),
        }

        try:
            response = await self.client.chat(
                model=self.model,
                messages=messages,
                format="json" if json_mode else None,
                options=options,
                **{k: v for k, v in kwargs.items() if k != "options"},
            )
        except Exception as e:
            logger.error(
                f"Ollama API error: {e}",
                extra={"model": self.model, "host": self.host, "error_type": type(e).__name__},
            )
            raise LLMError(f"Ollama API error: {e}", {"model": self.model}) from e

        content = response["message"]["content"]
        if not content:
            raise LLMError("Ollama returned empty content", {"model": self.model})
        return content

    async def close(self):
        """Close client (Ollama SDK handles cleanup internally)."""
        pass

"""LLM providers."""

from clarity.core.llm.base import LLMProvider
from clarity.core.llm.ollama import OllamaLLM
from clarity.core.llm.openai import OpenAILLM

__all__ = ["LLMProvider", "OllamaLLM", "OpenAILLM"]

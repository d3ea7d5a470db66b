"""
Factory modules for creating Clarity components.

Provides modular factories for the LLM provider and the note store.
"""

from clarity.core.factory.llm_factory import LLMFactory
from clarity.core.factory.store_factory import StoreFactory

__all__ = [
    "LLMFactory",
    "StoreFactory",
]

"""Core infrastructure: LLM providers, persistence and factories."""

"""LLM client interface and prompt optimization."""

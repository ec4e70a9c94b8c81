"""Context window sessions, summarization, cache accounting and sensitivity checks for LLM agents."""

__version__ = "0.2.0"
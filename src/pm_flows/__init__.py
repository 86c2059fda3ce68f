"""Product-management process workflows driven by external LLM agents."""

__version__ = "0.1.0"

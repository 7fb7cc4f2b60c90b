"""SSE chat relay: streams LLM reasoning and answers to browser sessions."""

__version__ = "0.1.0"

"""chatbridge -- OpenAI-compatible chat-completion backend for a turn-based chat host."""

__version__ = "0.1.0"

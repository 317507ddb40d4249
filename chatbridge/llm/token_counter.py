"""
Crude token estimation.

Roughly four characters per token, rounded up.  This is a size heuristic for
budgeting, not a tokenizer.
"""

from __future__ import annotations

import json
import math

from chatbridge.llm.types import ChatMessage, TextPart, ToolDeclaration


class TokenCounter:
    """Estimate token counts for text, message lists and tool schemas."""

    chars_per_token = 4

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def estimate_messages(self, messages: list[ChatMessage]) -> int:
        """
        Sum the estimate over every text part of every message.

        Each part is rounded up on its own, so splitting a text across parts
        never lowers the total.
        """
        total = 0
        for msg in messages:
            total += self._count_message(msg)
        return total

    def estimate_tools(self, tools: list | None) -> int:
        """
        Estimate the tokens taken by the serialized tool-schema array.

        Accepts either ``ToolDeclaration`` objects or wire-format dicts.
        Returns 0 when there are no tools or the schema can't be serialized.
        """
        if not tools:
            return 0
        try:
            payload = [
                _declaration_to_wire(t) if isinstance(t, ToolDeclaration) else t
                for t in tools
            ]
            return self.count_text(json.dumps(payload))
        except (TypeError, ValueError):
            return 0

    def count(self, text: str | ChatMessage) -> int:
        """Token count for either a raw string or a single message."""
        if isinstance(text, str):
            return self.count_text(text)
        return self._count_message(text)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _count_message(self, msg: ChatMessage) -> int:
        return sum(
            self.count_text(part.value)
            for part in msg.content
            if isinstance(part, TextPart)
        )


def _declaration_to_wire(tool: ToolDeclaration) -> dict:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }

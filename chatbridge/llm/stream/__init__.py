"""Incremental response decoding: lines, events, inline tool calls."""

from chatbridge.llm.stream.decoder import ChatTurnState, ResponseDecoder
from chatbridge.llm.stream.events import parse_event, parse_event_line
from chatbridge.llm.stream.lines import LineReassembler
from chatbridge.llm.stream.text_tools import TextToolCallParser

__all__ = [
    "ChatTurnState",
    "LineReassembler",
    "ResponseDecoder",
    "TextToolCallParser",
    "parse_event",
    "parse_event_line",
]

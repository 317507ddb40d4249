"""
Scanner for tool calls embedded in assistant text.

Some models signal tool use inside the content stream instead of through
structured ``tool_calls`` deltas.  Two grammars are recognized::

    <|tool_calls_section_begin|>
    <|tool_call_begin|> functions.NAME:0 <|tool_call_argument_begin|> {...} <|tool_call_end|>
    <|tool_calls_section_end|>

    <tool_call>{"name": "NAME", "arguments": {...}}</tool_call>

Text outside markers passes through.  A trailing fragment that could be the
start of a marker is held back until the next feed settles it.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Union

SECTION_BEGIN = "<|tool_calls_section_begin|>"
SECTION_END = "<|tool_calls_section_end|>"
CALL_BEGIN = "<|tool_call_begin|>"
ARGUMENT_BEGIN = "<|tool_call_argument_begin|>"
CALL_END = "<|tool_call_end|>"
TAG_OPEN = "<tool_call>"
TAG_CLOSE = "</tool_call>"

# Opening marker -> closing marker.
_CALL_MARKERS = {CALL_BEGIN: CALL_END, TAG_OPEN: TAG_CLOSE}
_SCAN_MARKERS = (SECTION_BEGIN, SECTION_END, CALL_BEGIN, TAG_OPEN)

_SECTIONED_HEADER = re.compile(
    r"^(?:functions\.)?(?P<name>[^\s:]+?)(?::(?P<index>\d+))?$"
)


@dataclass
class TextChunk:
    """Prose outside any tool-call marker."""

    text: str


@dataclass
class TextToolCall:
    """A tool call recovered from text.  *error* is set when its body was unusable."""

    name: str
    arguments: dict
    call_id: str | None = None
    error: str | None = None
    raw: str = ""
    terminated: bool = True


ScanItem = Union[TextChunk, TextToolCall]


@dataclass
class _ActiveCall:
    opener: str
    closer: str


class TextToolCallParser:
    """Incremental scanner; feed text fragments, collect ``ScanItem`` objects."""

    def __init__(self) -> None:
        self.parse_buffer = ""
        self.active: _ActiveCall | None = None
        self.in_section = False

    def feed(self, text: str) -> list[ScanItem]:
        self.parse_buffer += text
        return self._scan(final=False)

    def flush(self) -> list[ScanItem]:
        """
        Drain everything at end of stream.

        Held-back text is released.  An unterminated call is returned as-is
        (its *error* tells the caller whether the body parsed).
        """
        return self._scan(final=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _scan(self, final: bool) -> list[ScanItem]:
        items: list[ScanItem] = []
        while self.parse_buffer:
            if self.active is None:
                if not self._scan_prose(items, final):
                    break
                continue

            end = self.parse_buffer.find(self.active.closer)
            if end < 0:
                if final:
                    call = self._parse_body(self.parse_buffer, self.active.opener)
                    call.terminated = False
                    items.append(call)
                    self.parse_buffer = ""
                    self.active = None
                break

            body = self.parse_buffer[:end]
            self.parse_buffer = self.parse_buffer[end + len(self.active.closer):]
            items.append(self._parse_body(body, self.active.opener))
            self.active = None
        return items

    def _scan_prose(self, items: list[ScanItem], final: bool) -> bool:
        """Consume prose up to the next marker.  Returns False when stalled."""
        buf = self.parse_buffer
        pos, marker = _find_marker(buf)

        if marker is None:
            keep = 0 if final else _partial_marker_len(buf)
            cut = len(buf) - keep
            self._emit_prose(items, buf[:cut])
            self.parse_buffer = buf[cut:]
            return False

        self._emit_prose(items, buf[:pos])
        self.parse_buffer = buf[pos + len(marker):]
        if marker == SECTION_BEGIN:
            self.in_section = True
        elif marker == SECTION_END:
            self.in_section = False
        else:
            self.active = _ActiveCall(opener=marker, closer=_CALL_MARKERS[marker])
        return True

    def _emit_prose(self, items: list[ScanItem], text: str) -> None:
        if not text:
            return
        if self.in_section and not text.strip():
            return
        items.append(TextChunk(text))

    def _parse_body(self, body: str, opener: str) -> TextToolCall:
        if opener == CALL_BEGIN:
            return _parse_sectioned(body)
        return _parse_tagged(body)


def _find_marker(buf: str) -> tuple[int, str | None]:
    best_pos, best = -1, None
    for marker in _SCAN_MARKERS:
        pos = buf.find(marker)
        if pos >= 0 and (best is None or pos < best_pos):
            best_pos, best = pos, marker
    return best_pos, best


def _partial_marker_len(buf: str) -> int:
    """Length of the longest suffix of *buf* that is a proper marker prefix."""
    longest = 0
    for marker in _SCAN_MARKERS:
        for k in range(min(len(buf), len(marker) - 1), longest, -1):
            if marker.startswith(buf[-k:]):
                longest = k
                break
    return longest


def _load_arguments(raw) -> tuple[dict, str | None]:
    if isinstance(raw, dict):
        return raw, None
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}, None
    if not isinstance(raw, str):
        return {}, f"arguments must be a JSON object, got {type(raw).__name__}"
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        return {}, f"invalid JSON arguments: {exc}"
    if not isinstance(value, dict):
        return {}, f"arguments must be a JSON object, got {type(value).__name__}"
    return value, None


def _parse_sectioned(body: str) -> TextToolCall:
    if ARGUMENT_BEGIN in body:
        header, _, raw_args = body.partition(ARGUMENT_BEGIN)
    else:
        brace = body.find("{")
        header, raw_args = (body, "") if brace < 0 else (body[:brace], body[brace:])

    header = header.strip()
    m = _SECTIONED_HEADER.match(header)
    name = m.group("name") if m else header
    call_id = header if m and m.group("index") is not None else None

    arguments, error = _load_arguments(raw_args.strip())
    if not name:
        error = error or "missing tool name"
    return TextToolCall(name=name, arguments=arguments, call_id=call_id, error=error, raw=body)


def _parse_tagged(body: str) -> TextToolCall:
    try:
        doc = json.loads(body)
    except json.JSONDecodeError as exc:
        return TextToolCall(name="", arguments={}, error=f"invalid tool_call body: {exc}", raw=body)
    if not isinstance(doc, dict):
        return TextToolCall(name="", arguments={}, error="tool_call body is not an object", raw=body)

    name = str(doc.get("name") or "")
    raw_args = doc.get("arguments", doc.get("args", doc.get("parameters")))
    arguments, error = _load_arguments(raw_args)
    if not name:
        error = error or "missing tool name"
    call_id = doc.get("id") or None
    return TextToolCall(name=name, arguments=arguments, call_id=call_id, error=error, raw=body)

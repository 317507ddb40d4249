"""
Response decoding: turns a backend response into ordered output parts.

Two entry points:

  - ``decode_json`` for a single non-streaming JSON document.
  - ``decode_stream`` for a ``text/event-stream`` byte stream.

Tool calls can arrive either as structured ``tool_calls`` deltas
(``ToolCallAssembler``) or embedded in the text (``TextToolCallParser``).
Both feed one emission gate on ``ChatTurnState`` that drops duplicates.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterable

from chatbridge.errors import DecodeError
from chatbridge.llm.stream.events import parse_event_line
from chatbridge.llm.stream.lines import LineReassembler
from chatbridge.llm.stream.text_tools import TextChunk, TextToolCall, TextToolCallParser
from chatbridge.llm.tool_call_assembler import ToolCallAssembler
from chatbridge.llm.types import (
    CancellationToken,
    FinishSignal,
    ProgressSink,
    RawToolDelta,
    StreamEnd,
    TextDelta,
    TextPart,
    ToolCallPart,
    WireEvent,
)

logger = logging.getLogger(__name__)


def _arguments_digest(arguments: dict) -> str:
    canonical = json.dumps(arguments, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class ChatTurnState:
    """
    Mutable state for one response call.

    A fresh instance is created for every turn and owned by that turn's
    decoder; nothing here outlives the call.
    """

    assembler: ToolCallAssembler = field(default_factory=ToolCallAssembler)
    text_tools: TextToolCallParser = field(default_factory=TextToolCallParser)
    has_emitted_text: bool = False
    pending_whitespace: str = ""
    has_emitted_tool_call: bool = False
    emitted_text_tool_keys: set[tuple[str, str]] = field(default_factory=set)
    emitted_text_tool_ids: set[str] = field(default_factory=set)
    text_tool_count: int = 0
    tool_names: dict[str, str] = field(default_factory=dict)

    @property
    def tool_call_buffers(self) -> dict[int, dict]:
        return self.assembler.tool_call_buffers

    @property
    def completed_indices(self) -> set[int]:
        return self.assembler.completed_indices

    def admit_structured(self, call: ToolCallPart) -> None:
        """Record a structured call so an inline copy of it is not re-emitted."""
        self.emitted_text_tool_keys.add((call.name, _arguments_digest(call.arguments)))
        self.emitted_text_tool_ids.add(call.call_id)

    def admit_text_call(self, call: TextToolCall) -> ToolCallPart | None:
        """
        Emission gate for inline-text calls.

        Returns the part to emit, or ``None`` when the name/arguments pair or
        the explicit id was already emitted this turn.
        """
        digest = _arguments_digest(call.arguments) if call.error is None else (
            hashlib.sha256(call.raw.encode("utf-8")).hexdigest()
        )
        key = (call.name, digest)
        if key in self.emitted_text_tool_keys:
            return None
        if call.call_id and call.call_id in self.emitted_text_tool_ids:
            return None

        self.emitted_text_tool_keys.add(key)
        self.text_tool_count += 1
        call_id = call.call_id or f"text_call_{self.text_tool_count}"
        self.emitted_text_tool_ids.add(call_id)
        return ToolCallPart(
            call_id=call_id,
            name=call.name,
            arguments=call.arguments,
            error=call.error,
        )


class ResponseDecoder:
    """
    Decodes one turn's response into parts reported to *sink*.

    Parameters
    ----------
    state:
        The turn's state, owned by this decoder for the duration of the call.
    sink:
        Receives ``TextPart`` and ``ToolCallPart`` objects in emission order.
    """

    def __init__(self, state: ChatTurnState, sink: ProgressSink) -> None:
        self.state = state
        self._sink = sink

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    def decode_json(self, document: Any) -> None:
        """Emit the text of a complete JSON response as a single part."""
        message = _first_message(document)
        content = message.get("content")
        raw_tcs = message.get("tool_calls") or []

        if content is None and raw_tcs:
            text = None
        elif content is not None:
            text = content
        else:
            text = _alternate_content(document)
            if text is None:
                text = json.dumps(document, indent=2)

        if text is not None:
            self._report(TextPart(str(text)))

        for idx, raw_tc in enumerate(raw_tcs):
            func = raw_tc.get("function") if isinstance(raw_tc, dict) else None
            if not isinstance(func, dict):
                logger.debug("Skipping malformed tool call %r", raw_tc)
                continue
            args = func.get("arguments") or ""
            if not isinstance(args, str):
                args = json.dumps(args)
            delta = RawToolDelta(
                call_index=idx,
                id=raw_tc.get("id"),
                name_delta=func.get("name") or "",
                args_delta=args,
                done=True,
            )
            for call in self.state.assembler.feed(delta):
                self._emit_structured(call)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def decode_stream(
        self,
        chunks: AsyncIterable[bytes],
        token: CancellationToken,
    ) -> None:
        """
        Read *chunks* until ``[DONE]``, end of stream, or cancellation.

        Cancellation is checked before every read and ends the loop quietly,
        leaving partial tool calls unreported.
        """
        lines = LineReassembler()
        iterator = chunks.__aiter__()

        while True:
            if token.is_cancellation_requested:
                logger.info("Stream cancelled by caller")
                return
            try:
                data = await iterator.__anext__()
            except StopAsyncIteration:
                break
            for line in lines.feed(data):
                if not self.handle_line(line):
                    self.finish()
                    return

        # End of stream without [DONE]; the unterminated tail is complete now.
        for line in lines.finish():
            if not self.handle_line(line):
                break
        self.finish()

    def handle_line(self, line: str) -> bool:
        """Process one complete line.  Returns False once ``[DONE]`` is seen."""
        try:
            events = parse_event_line(line)
        except DecodeError as exc:
            logger.debug("Skipping event: %s", exc)
            return True

        for event in events:
            if isinstance(event, StreamEnd):
                return False
            self.handle_event(event)
        return True

    def handle_event(self, event: WireEvent) -> None:
        if isinstance(event, TextDelta):
            for item in self.state.text_tools.feed(event.text):
                self._dispatch(item)
        elif isinstance(event, RawToolDelta):
            for call in self.state.assembler.feed(event):
                self._emit_structured(call)
        elif isinstance(event, FinishSignal):
            for call in self.state.assembler.finish():
                self._emit_structured(call)

    def finish(self) -> None:
        """Release held-back text and finalize any still-open tool calls."""
        for item in self.state.text_tools.flush():
            self._dispatch(item)
        for call in self.state.assembler.finish():
            self._emit_structured(call)
        # Whitespace-only text is released unless a tool call replaced it.
        if self.state.pending_whitespace and not self.state.has_emitted_tool_call:
            self._emit_text_now(self.state.pending_whitespace)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _dispatch(self, item: TextChunk | TextToolCall) -> None:
        if isinstance(item, TextChunk):
            self._emit_text(item.text)
            return

        if not item.terminated and item.error is not None:
            logger.warning("Dropping unterminated inline tool call: %s", item.error)
            return

        part = self.state.admit_text_call(item)
        if part is None:
            logger.debug("Suppressing duplicate inline tool call %s", item.name)
            return
        if part.error:
            logger.warning("Inline tool call %s is malformed: %s", part.name, part.error)
        self.state.pending_whitespace = ""
        self.state.has_emitted_tool_call = True
        self._report(part)

    def _emit_text(self, text: str) -> None:
        # Leading whitespace is held until prose follows; a tool call
        # arriving first discards it.
        if not self.state.has_emitted_text and not text.strip():
            self.state.pending_whitespace += text
            return
        self._emit_text_now(self.state.pending_whitespace + text)

    def _emit_text_now(self, text: str) -> None:
        self.state.pending_whitespace = ""
        self.state.has_emitted_text = True
        self._report(TextPart(text))

    def _emit_structured(self, call: ToolCallPart) -> None:
        self.state.admit_structured(call)
        self.state.pending_whitespace = ""
        self.state.has_emitted_tool_call = True
        self._report(call)

    def _report(self, part: TextPart | ToolCallPart) -> None:
        if isinstance(part, ToolCallPart) and part.name in self.state.tool_names:
            part = replace(part, name=self.state.tool_names[part.name])
        self._sink(part)


def _first_message(document: Any) -> dict:
    if not isinstance(document, dict):
        return {}
    choices = document.get("choices")
    if not choices or not isinstance(choices, list) or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message")
    return message if isinstance(message, dict) else {}


def _alternate_content(document: Any) -> Any:
    """``assistant.response[0].content``, the other shape some proxies return."""
    try:
        return document["assistant"]["response"][0]["content"]
    except (KeyError, IndexError, TypeError):
        return None

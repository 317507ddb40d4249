"""
Server-Sent Event line parsing.

Each event line has the form::

    data: {json}

The sentinel ``data: [DONE]`` terminates the stream.
"""

from __future__ import annotations

import json
import logging

from chatbridge.errors import DecodeError
from chatbridge.llm.types import (
    FinishSignal,
    RawToolDelta,
    StreamEnd,
    TextDelta,
    WireEvent,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def parse_event_line(line: str) -> list[WireEvent]:
    """
    Decode one complete line into wire events.

    Non-data lines (comments, ``event:`` fields, blank separators) yield
    nothing.  Raises ``DecodeError`` when the payload is not valid JSON.
    """
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return []

    payload = line[len(DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]

    if payload.strip() == DONE_SENTINEL:
        return [StreamEnd()]

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"malformed event payload: {exc}") from exc

    if not isinstance(data, dict):
        raise DecodeError(f"event payload is not an object: {payload[:200]}")
    return parse_event(data)


def parse_event(data: dict) -> list[WireEvent]:
    """
    Convert a parsed ``data`` payload into wire events.

    Raises ``DecodeError`` when the choice or its delta has the wrong shape.
    Individual malformed ``tool_calls`` entries are skipped.
    """
    choices = data.get("choices")
    if not choices or not isinstance(choices, list):
        return []

    choice = choices[0] or {}
    if not isinstance(choice, dict):
        raise DecodeError(f"choice is not an object: {choice!r:.200}")
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        raise DecodeError(f"delta is not an object: {delta!r:.200}")
    events: list[WireEvent] = []

    content = delta.get("content")
    if content:
        events.append(TextDelta(text=str(content)))

    raw_tcs = delta.get("tool_calls") or []
    if not isinstance(raw_tcs, list):
        raise DecodeError(f"tool_calls is not a list: {raw_tcs!r:.200}")
    for raw_tc in raw_tcs:
        tool_delta = _tool_delta(raw_tc)
        if tool_delta is not None:
            events.append(tool_delta)

    finish_reason = choice.get("finish_reason")
    if finish_reason:
        events.append(FinishSignal(reason=str(finish_reason)))

    return events


def _tool_delta(raw_tc: object) -> RawToolDelta | None:
    if not isinstance(raw_tc, dict):
        logger.debug("Skipping tool call fragment: %r", raw_tc)
        return None
    index = raw_tc.get("index", 0)
    # bool is an int subclass; reject it as an index.
    if not isinstance(index, int) or isinstance(index, bool):
        logger.debug("Skipping tool call fragment with index %r", index)
        return None
    func = raw_tc.get("function") or {}
    if not isinstance(func, dict):
        logger.debug("Skipping tool call fragment with function %r", func)
        return None

    args = func.get("arguments") or ""
    if not isinstance(args, str):
        # Some backends send the arguments already decoded.
        args = json.dumps(args)
    name = func.get("name")
    call_id = raw_tc.get("id")
    return RawToolDelta(
        call_index=index,
        id=call_id if isinstance(call_id, str) and call_id else None,
        name_delta=name if isinstance(name, str) else "",
        args_delta=args,
    )

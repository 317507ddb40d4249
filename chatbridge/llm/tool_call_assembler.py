"""
Assembles streaming tool-call deltas into complete ToolCallPart objects.

Design goals:
  - Accumulate ``RawToolDelta`` fragments keyed by ``call_index``.
  - On ``done=True`` (or an explicit ``finish()``), attempt to JSON-parse the
    accumulated argument string.
  - A finalized index is remembered and never reopened, so a call is emitted
    at most once per turn.
  - If parsing fails the call becomes an error-tagged placeholder and the
    failure is recorded in ``self.errors``; other calls are unaffected.
"""

from __future__ import annotations

import json
import logging

from chatbridge.llm.types import RawToolDelta, ToolCallPart

logger = logging.getLogger(__name__)


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished ``ToolCallPart`` objects."""

    def __init__(self) -> None:
        self.tool_call_buffers: dict[int, dict] = {}
        self.completed_indices: set[int] = set()
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> list[ToolCallPart]:
        """
        Feed a single ``RawToolDelta`` into the assembler.

        Returns a (possibly empty) list of completed ``ToolCallPart`` objects.
        A call is finalized when its delta has ``done=True``.  Deltas for an
        index that was already finalized are ignored.
        """
        idx = delta.call_index
        if idx in self.completed_indices:
            logger.debug("Ignoring delta for completed tool call idx=%s", idx)
            return []

        buf = self.tool_call_buffers.setdefault(
            idx, {"id": None, "name": None, "args": ""}
        )

        # First non-empty id / name wins.
        if delta.id and not buf["id"]:
            buf["id"] = delta.id
        if delta.name_delta and not buf["name"]:
            buf["name"] = delta.name_delta

        if delta.args_delta:
            buf["args"] += delta.args_delta

        if delta.done:
            return self._finalize(idx)

        return []

    def finish(self) -> list[ToolCallPart]:
        """
        Finalize *all* open buffers, in index order.

        Called on a finish signal and at stream end.
        """
        calls: list[ToolCallPart] = []
        for idx in sorted(self.tool_call_buffers.keys()):
            calls.extend(self._finalize(idx))
        return calls

    @property
    def has_open_calls(self) -> bool:
        return bool(self.tool_call_buffers)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int) -> list[ToolCallPart]:
        buf = self.tool_call_buffers.pop(idx, None)
        if buf is None or idx in self.completed_indices:
            return []
        self.completed_indices.add(idx)

        name = (buf["name"] or "").strip()
        call_id = buf["id"] or f"call_{idx}"

        raw_args = buf["args"].strip() or "{}"
        try:
            args = json.loads(raw_args)
            if isinstance(args, str):
                # Double-encoded arguments.
                args = json.loads(args)
        except (json.JSONDecodeError, ValueError) as exc:
            return [self._placeholder(idx, call_id, name, f"invalid JSON arguments: {exc}")]

        if not isinstance(args, dict):
            return [
                self._placeholder(
                    idx, call_id, name,
                    f"arguments must be a JSON object, got {type(args).__name__}",
                )
            ]

        return [ToolCallPart(call_id=call_id, name=name, arguments=args)]

    def _placeholder(self, idx: int, call_id: str, name: str, reason: str) -> ToolCallPart:
        self.errors.append(f"tool_call_json_parse_failed idx={idx} err={reason}")
        logger.warning("Tool call %s (%s) has unparseable arguments: %s", call_id, name, reason)
        return ToolCallPart(call_id=call_id, name=name, arguments={}, error=reason)

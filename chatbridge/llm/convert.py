"""
Translation between host messages/tools and the OpenAI wire format.

Also holds the structural request checks that must pass before anything is
sent.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

import jsonschema

from chatbridge.errors import ValidationError
from chatbridge.llm.types import (
    ChatMessage,
    ChatRole,
    ResponseOptions,
    TextPart,
    ToolCallPart,
    ToolDeclaration,
    ToolMode,
    ToolResultPart,
)

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_MAX_TOOL_NAME = 64

_TOOL_ORDER_ERROR = (
    "Invalid request: Tool call part must be followed by a User message "
    "with a ToolResultPart with a matching call_id."
)


@dataclass
class ToolConfig:
    tools: list[dict] | None = None
    tool_choice: str | dict | None = None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def convert_messages(messages: list[ChatMessage]) -> list[dict]:
    """Convert host messages to OpenAI chat-completion messages."""
    wire: list[dict] = []
    for msg in messages:
        text = "".join(p.value for p in msg.content if isinstance(p, TextPart))
        tool_calls = [p for p in msg.content if isinstance(p, ToolCallPart)]
        tool_results = [p for p in msg.content if isinstance(p, ToolResultPart)]

        if msg.role == ChatRole.ASSISTANT:
            m: dict = {"role": "assistant", "content": text or None}
            if tool_calls:
                m["tool_calls"] = [
                    {
                        "id": tc.call_id,
                        "type": "function",
                        "function": {
                            "name": sanitize_tool_name(tc.name),
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in tool_calls
                ]
            if msg.name:
                m["name"] = msg.name
            wire.append(m)
            continue

        # Tool results must directly follow the assistant turn that asked.
        for result in tool_results:
            wire.append(
                {
                    "role": "tool",
                    "tool_call_id": result.call_id,
                    "content": _result_text(result),
                }
            )

        if text or not tool_results:
            m = {"role": msg.role.value, "content": text}
            if msg.name:
                m["name"] = msg.name
            wire.append(m)
    return wire


def _result_text(result: ToolResultPart) -> str:
    pieces = []
    for item in result.content:
        if isinstance(item, TextPart):
            pieces.append(item.value)
        elif isinstance(item, str):
            pieces.append(item)
        else:
            pieces.append(json.dumps(item))
    return "".join(pieces)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

def sanitize_tool_name(name: str) -> str:
    """Coerce *name* into ``[A-Za-z0-9_-]{1,64}`` starting with a letter."""
    cleaned = _INVALID_NAME_CHARS.sub("_", name)
    if not cleaned or not cleaned[0].isalpha():
        cleaned = "tool_" + cleaned
    return cleaned[:_MAX_TOOL_NAME]


def _tool_to_wire(tool: ToolDeclaration) -> dict:
    parameters = tool.parameters or {"type": "object", "properties": {}}
    try:
        jsonschema.Draft7Validator.check_schema(parameters)
    except jsonschema.SchemaError as e:
        raise ValidationError(
            f"Invalid parameter schema for tool {tool.name!r}: {e.message}"
        ) from e

    function: dict = {"name": sanitize_tool_name(tool.name), "parameters": parameters}
    if tool.description:
        function["description"] = tool.description
    return {"type": "function", "function": function}


def convert_tools(options: ResponseOptions) -> ToolConfig:
    """Build the ``tools`` / ``tool_choice`` request fields."""
    if not options.tools:
        return ToolConfig()

    tools = [_tool_to_wire(t) for t in options.tools]
    tool_name_map(options.tools)

    if options.tool_mode == ToolMode.REQUIRED:
        if len(tools) > 1:
            raise ValidationError(
                "Invalid request: REQUIRED tool mode is only supported with a single tool."
            )
        return ToolConfig(
            tools=tools,
            tool_choice={
                "type": "function",
                "function": {"name": tools[0]["function"]["name"]},
            },
        )

    return ToolConfig(tools=tools, tool_choice="auto")


def tool_name_map(tools: list[ToolDeclaration]) -> dict[str, str]:
    """
    Map each wire name back to the declared tool name.

    Raises ``ValidationError`` when two declarations sanitize to the same
    wire name.
    """
    names: dict[str, str] = {}
    for tool in tools:
        wire_name = sanitize_tool_name(tool.name)
        if names.get(wire_name, tool.name) != tool.name:
            raise ValidationError(
                f"Invalid request: tools {names[wire_name]!r} and {tool.name!r} "
                f"both map to {wire_name!r}."
            )
        names[wire_name] = tool.name
    return names


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_request(messages: list[ChatMessage]) -> None:
    """
    Check the message list before it is sent.

    Every assistant message carrying tool calls must be followed by user
    message(s) made only of tool results that answer each call id.
    """
    if not messages:
        raise ValidationError("Invalid request: no messages.")

    for i, msg in enumerate(messages):
        if msg.role != ChatRole.ASSISTANT:
            continue
        pending = {p.call_id for p in msg.content if isinstance(p, ToolCallPart)}
        nxt = i + 1
        while pending:
            if nxt >= len(messages) or messages[nxt].role != ChatRole.USER:
                raise ValidationError(_TOOL_ORDER_ERROR)
            for part in messages[nxt].content:
                if not isinstance(part, ToolResultPart):
                    raise ValidationError(_TOOL_ORDER_ERROR)
                pending.discard(part.call_id)
            nxt += 1


def try_parse_json_object(text: str) -> dict | None:
    """Parse *text* as a JSON object, returning ``None`` on any failure."""
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None

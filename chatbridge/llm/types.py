"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union


# ---------------------------------------------------------------------------
# Host message / part model
# ---------------------------------------------------------------------------

class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class TextPart:
    """A chunk of assistant or user prose."""

    value: str


@dataclass
class ToolCallPart:
    """
    A tool invocation with parsed arguments.

    When the argument body could not be parsed the part is an error-tagged
    placeholder: *arguments* is empty and *error* describes the failure.
    """

    call_id: str
    name: str
    arguments: dict
    error: str | None = None


@dataclass
class ToolResultPart:
    """The result of a tool invocation, sent back to the model."""

    call_id: str
    content: list = field(default_factory=list)


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: ChatRole
    content: list = field(default_factory=list)
    name: str | None = None

    @classmethod
    def user(cls, text: str) -> ChatMessage:
        return cls(ChatRole.USER, [TextPart(text)])

    @classmethod
    def assistant(cls, text: str) -> ChatMessage:
        return cls(ChatRole.ASSISTANT, [TextPart(text)])

    @classmethod
    def system(cls, text: str) -> ChatMessage:
        return cls(ChatRole.SYSTEM, [TextPart(text)])


ResponsePart = Union[TextPart, ToolCallPart]

# Receives each emitted part, in order.
ProgressSink = Callable[[ResponsePart], Any]


# ---------------------------------------------------------------------------
# Request options
# ---------------------------------------------------------------------------

class ToolMode(str, Enum):
    AUTO = "auto"
    REQUIRED = "required"


@dataclass
class ToolDeclaration:
    """A tool the model may call (OpenAI function-calling shape)."""

    name: str
    description: str = ""
    parameters: dict | None = None


@dataclass
class ResponseOptions:
    """Caller options for a single response request."""

    max_tokens: int | None = None
    temperature: float | None = None
    tools: list[ToolDeclaration] = field(default_factory=list)
    tool_mode: ToolMode = ToolMode.AUTO
    model_options: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Model catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelDescriptor:
    """A host-facing model entry produced by one discovery call."""

    id: str
    name: str
    family: str
    version: str
    max_input_tokens: int
    max_output_tokens: int
    tooltip: str = ""
    tool_calling: bool = True
    image_input: bool = False


@dataclass(frozen=True)
class ChatEndpoint:
    """Single prompt-budget figure for a model."""

    model: str
    model_max_prompt_tokens: int


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class CancellationToken:
    """A poll-queried cancellation flag."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


# ---------------------------------------------------------------------------
# Wire events
# ---------------------------------------------------------------------------

@dataclass
class TextDelta:
    """A text fragment from ``choices[0].delta.content``."""

    text: str


@dataclass
class RawToolDelta:
    """
    An incremental delta for a streaming tool call.

    The stream decoder emits these as tool-call fragments arrive.  The
    ToolCallAssembler accumulates them and produces finished ToolCallPart
    objects.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""
    done: bool = False


@dataclass
class FinishSignal:
    """``finish_reason`` was set on the event's first choice."""

    reason: str


@dataclass
class StreamEnd:
    """The ``[DONE]`` sentinel."""


WireEvent = Union[TextDelta, RawToolDelta, FinishSignal, StreamEnd]

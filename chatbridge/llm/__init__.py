"""LLM subsystem -- provider, request translation, and streaming decode."""

from chatbridge.llm.catalog import ModelCatalogClient
from chatbridge.llm.request import RequestTranslator
from chatbridge.llm.token_counter import TokenCounter
from chatbridge.llm.tool_call_assembler import ToolCallAssembler
from chatbridge.llm.types import (
    CancellationToken,
    ChatEndpoint,
    ChatMessage,
    ChatRole,
    ModelDescriptor,
    RawToolDelta,
    ResponseOptions,
    TextPart,
    ToolCallPart,
    ToolDeclaration,
    ToolMode,
    ToolResultPart,
)

__all__ = [
    "CancellationToken",
    "ChatEndpoint",
    "ChatMessage",
    "ChatRole",
    "ModelCatalogClient",
    "ModelDescriptor",
    "RawToolDelta",
    "RequestTranslator",
    "ResponseOptions",
    "TextPart",
    "TokenCounter",
    "ToolCallAssembler",
    "ToolCallPart",
    "ToolDeclaration",
    "ToolMode",
    "ToolResultPart",
]

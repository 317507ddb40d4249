"""Abstract base class for chat providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatbridge.llm.types import (
    CancellationToken,
    ChatMessage,
    ModelDescriptor,
    ProgressSink,
    ResponseOptions,
)


class ChatProvider(ABC):
    """
    A provider exposes one remote backend to the chat host.

    Implementations must support:
      - Model discovery (``prepare_model_information``).
      - Streaming responses reported part by part (``provide_response``).
      - Token estimation (``provide_token_count``).
    """

    @abstractmethod
    async def prepare_model_information(self, silent: bool) -> list[ModelDescriptor]:
        """
        List the models the backend offers.

        With *silent* set the provider must not prompt; it returns an empty
        list when it is not configured.
        """
        ...

    async def provide_model_information(self, silent: bool) -> list[ModelDescriptor]:
        return await self.prepare_model_information(silent)

    @abstractmethod
    async def provide_response(
        self,
        model: ModelDescriptor,
        messages: list[ChatMessage],
        options: ResponseOptions,
        progress: ProgressSink,
        token: CancellationToken,
    ) -> None:
        """
        Run one turn, reporting ``TextPart``/``ToolCallPart`` objects to
        *progress* as they are decoded.
        """
        ...

    @abstractmethod
    async def provide_token_count(
        self,
        model: ModelDescriptor,
        text: str | ChatMessage,
    ) -> int:
        """Estimate the token count for a string or a single message."""
        ...

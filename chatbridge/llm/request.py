"""Assembly of the chat-completion request body and headers."""

from __future__ import annotations

import logging

from chatbridge.config import LLMConfig
from chatbridge.llm.convert import convert_messages, convert_tools, validate_request
from chatbridge.llm.types import ChatMessage, ModelDescriptor, ResponseOptions

logger = logging.getLogger(__name__)


def auth_headers(api_key: str) -> dict[str, str]:
    """Both auth headers when a key is present; nothing otherwise."""
    if not api_key:
        return {}
    return {"Authorization": f"Bearer {api_key}", "X-API-Key": api_key}


class RequestTranslator:
    """
    Maps a host request onto the backend's wire shape.

    Parameters
    ----------
    config:
        Supplies the fallback ``max_tokens`` / ``temperature`` and the
        User-Agent.
    """

    def __init__(self, config: LLMConfig | None = None) -> None:
        self._config = config or LLMConfig()

    def build_headers(self, api_key: str) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }
        headers.update(auth_headers(api_key))
        return headers

    def build_body(
        self,
        model: ModelDescriptor,
        messages: list[ChatMessage],
        options: ResponseOptions,
    ) -> dict:
        """
        Build the JSON body.

        Raises ``ValidationError`` when the message list or tool declarations
        are malformed.
        """
        validate_request(messages)

        requested_max = options.max_tokens
        if requested_max is None:
            requested_max = options.model_options.get("max_tokens")
        temperature = options.temperature
        if temperature is None:
            temperature = options.model_options.get("temperature")

        body: dict = {
            "model": model.id,
            "messages": convert_messages(messages),
            "stream": True,
            "max_tokens": min(
                requested_max or self._config.default_max_tokens,
                model.max_output_tokens,
            ),
            "temperature": (
                temperature if temperature is not None
                else self._config.default_temperature
            ),
        }

        tool_config = convert_tools(options)
        if tool_config.tools:
            body["tools"] = tool_config.tools
        if tool_config.tool_choice:
            body["tool_choice"] = tool_config.tool_choice

        logger.info(
            "REQUEST: model=%s tools=%d messages=%d max_tokens=%d",
            model.id,
            len(tool_config.tools) if tool_config.tools else 0,
            len(body["messages"]),
            body["max_tokens"],
        )
        return body

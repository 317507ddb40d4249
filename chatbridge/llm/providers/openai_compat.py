"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- LiteLLM proxies in particular, but also vLLM, LM Studio,
LocalAI, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from chatbridge.config import LLMConfig
from chatbridge.errors import ConfigurationError, DecodeError, RemoteError
from chatbridge.llm.catalog import ModelCatalogClient, endpoints_for
from chatbridge.llm.convert import tool_name_map
from chatbridge.llm.providers.base import ChatProvider
from chatbridge.llm.request import RequestTranslator
from chatbridge.llm.stream.decoder import ChatTurnState, ResponseDecoder
from chatbridge.llm.token_counter import TokenCounter
from chatbridge.llm.types import (
    CancellationToken,
    ChatEndpoint,
    ChatMessage,
    ModelDescriptor,
    ProgressSink,
    ResponseOptions,
)
from chatbridge.secrets import ConfigResolver, SecretStore

logger = logging.getLogger(__name__)


class OpenAICompatProvider(ChatProvider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    secrets:
        Secret store holding the base URL and API key.
    config:
        Token defaults, timeout and User-Agent.  Defaults to ``LLMConfig()``.
    resolver:
        Overrides the ``ConfigResolver`` built from *secrets* (e.g. to inject
        a prompt function).
    client:
        Optional shared ``httpx.AsyncClient``.  When omitted a client is
        created per call and closed afterwards.

    Not reentrant: one turn at a time per instance.
    """

    def __init__(
        self,
        secrets: SecretStore,
        config: LLMConfig | None = None,
        resolver: ConfigResolver | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or LLMConfig()
        self._resolver = resolver or ConfigResolver(secrets)
        self._client = client
        self._translator = RequestTranslator(self._config)
        self._catalog = ModelCatalogClient(self._config, client=client)
        self._counter = TokenCounter()
        self._chat_endpoints: list[ChatEndpoint] = []

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def chat_endpoints(self) -> list[ChatEndpoint]:
        """Prompt budgets recorded by the last discovery call."""
        return list(self._chat_endpoints)

    async def prepare_model_information(self, silent: bool) -> list[ModelDescriptor]:
        resolved = await self._resolver.resolve(interactive=not silent)
        if resolved is None:
            return []

        models = await self._catalog.list_models(resolved.api_key, resolved.base_url)
        self._chat_endpoints = endpoints_for(models)
        return models

    async def provide_token_count(
        self,
        model: ModelDescriptor,
        text: str | ChatMessage,
    ) -> int:
        return self._counter.count(text)

    def estimate_request_tokens(
        self,
        messages: list[ChatMessage],
        options: ResponseOptions | None = None,
    ) -> int:
        """Messages plus tool schemas, for budget checks before sending."""
        tools = options.tools if options else None
        return self._counter.estimate_messages(messages) + self._counter.estimate_tools(tools)

    async def provide_response(
        self,
        model: ModelDescriptor,
        messages: list[ChatMessage],
        options: ResponseOptions,
        progress: ProgressSink,
        token: CancellationToken,
    ) -> None:
        state = ChatTurnState(tool_names=tool_name_map(options.tools))
        decoder = ResponseDecoder(state, progress)

        resolved = await self._resolver.resolve(interactive=True)
        if resolved is None:
            raise ConfigurationError()

        body = self._translator.build_body(model, messages, options)
        headers = self._translator.build_headers(resolved.api_key)
        url = f"{resolved.base_url}/v1/chat/completions"

        async with self._http() as client:
            async with client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    await response.aread()
                    raise RemoteError(response.text, status_code=response.status_code)

                if token.is_cancellation_requested:
                    logger.info("Turn cancelled before reading the response")
                    return

                content_type = response.headers.get("content-type", "")
                if "text/event-stream" not in content_type:
                    await response.aread()
                    decoder.decode_json(self._parse_document(response))
                    return

                await decoder.decode_stream(response.aiter_bytes(), token)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
            yield client

    @staticmethod
    def _parse_document(response: httpx.Response) -> object:
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Response is not valid JSON: {response.text[:200]}") from exc

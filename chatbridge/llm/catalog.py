"""Model discovery against ``GET /v1/models``."""

from __future__ import annotations

import json
import logging

import httpx

from chatbridge.config import LLMConfig
from chatbridge.errors import DecodeError, RemoteError
from chatbridge.llm.request import auth_headers
from chatbridge.llm.types import ChatEndpoint, ModelDescriptor

logger = logging.getLogger(__name__)


class ModelCatalogClient:
    """
    Translates the backend model list into host-facing descriptors.

    The backend does not report per-model limits, so every model gets the
    same input/output split from *config*.

    Parameters
    ----------
    config:
        Context length, output budget, family tag and User-Agent.
    client:
        Optional shared ``httpx.AsyncClient``.  When omitted a client is
        created for the call and closed afterwards.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or LLMConfig()
        self._client = client

    async def list_models(self, api_key: str, base_url: str) -> list[ModelDescriptor]:
        url = f"{base_url.rstrip('/')}/v1/models"
        headers = {"User-Agent": self._config.user_agent}
        headers.update(auth_headers(api_key))

        if self._client is not None:
            resp = await self._client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.get(url, headers=headers)

        if not resp.is_success:
            raise RemoteError(resp.text, status_code=resp.status_code)

        try:
            document = resp.json()
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Model list is not valid JSON: {resp.text[:200]}") from exc

        if not isinstance(document, dict):
            raise DecodeError(f"Model list is not an object: {resp.text[:200]}")
        items = document.get("data") or []
        if not isinstance(items, list):
            raise DecodeError(f"Model list data is not an array: {resp.text[:200]}")

        models = [
            self._to_descriptor(item)
            for item in items
            if isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"]
        ]
        logger.info("Discovered %d models at %s", len(models), base_url)
        return models

    def _to_descriptor(self, item: dict) -> ModelDescriptor:
        max_output = self._config.max_output_tokens
        return ModelDescriptor(
            id=item["id"],
            name=item["id"],
            family=self._config.family,
            version="1.0.0",
            tooltip="LiteLLM",
            max_input_tokens=max(1, self._config.context_length - max_output),
            max_output_tokens=max_output,
            tool_calling=True,
            image_input=False,
        )


def endpoints_for(models: list[ModelDescriptor]) -> list[ChatEndpoint]:
    """One prompt-budget figure per model: input plus output tokens."""
    return [
        ChatEndpoint(
            model=m.id,
            model_max_prompt_tokens=m.max_input_tokens + m.max_output_tokens,
        )
        for m in models
    ]

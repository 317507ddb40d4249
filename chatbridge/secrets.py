"""
Secret storage and connection-settings resolution.

The base URL and optional API key live in a secret store under two fixed
keys.  ``ConfigResolver`` reads them and, only when allowed to, prompts the
user for whatever is missing and persists the answers.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import yaml
from rich.prompt import Prompt

logger = logging.getLogger(__name__)

BASE_URL_KEY = "litellm.baseUrl"
API_KEY_KEY = "litellm.apiKey"

# (prompt text, is_password) -> answer ("" when the user skipped it)
PromptFn = Callable[[str, bool], str]


class SecretStore(ABC):
    """Minimal key/value secret storage."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemorySecretStore(SecretStore):
    """Dict-backed store; nothing is persisted."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileSecretStore(SecretStore):
    """
    YAML-file backed store.

    The file is rewritten on every ``set``/``delete`` and kept at mode 0600.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed secrets file %s", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)
        # Files created before this store existed may be wider.
        os.chmod(self.path, 0o600)

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


def rich_prompt(text: str, password: bool) -> str:
    """Default interactive prompt."""
    return Prompt.ask(text, password=password, default="", show_default=False)


@dataclass(frozen=True)
class ResolvedConfig:
    base_url: str
    api_key: str = ""


class ConfigResolver:
    """
    Resolve the backend base URL and API key.

    Parameters
    ----------
    store:
        Where the two secrets are read from and persisted to.
    prompt:
        Called for missing values when resolving interactively.
    """

    def __init__(self, store: SecretStore, prompt: PromptFn | None = None) -> None:
        self.store = store
        self._prompt = prompt or rich_prompt

    async def resolve(self, interactive: bool) -> ResolvedConfig | None:
        """
        Return the connection settings, or ``None`` when no base URL is known.

        Never prompts when *interactive* is false.
        """
        base_url = self.store.get(BASE_URL_KEY)
        api_key = self.store.get(API_KEY_KEY)

        if not base_url and interactive:
            base_url = await self._ask("LiteLLM Base URL", password=False)
            if base_url:
                self.store.set(BASE_URL_KEY, base_url)

        if not api_key and interactive:
            api_key = await self._ask("LiteLLM API Key (optional)", password=True)
            if api_key:
                self.store.set(API_KEY_KEY, api_key)

        if not base_url:
            return None
        return ResolvedConfig(base_url=base_url.rstrip("/"), api_key=api_key or "")

    async def _ask(self, text: str, password: bool) -> str:
        loop = asyncio.get_running_loop()
        answer = await loop.run_in_executor(None, lambda: self._prompt(text, password))
        return (answer or "").strip()

"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    context_length: int = 128_000
    max_output_tokens: int = 16_000
    default_max_tokens: int = 4_096
    default_temperature: float = 0.7
    timeout_seconds: int = 120
    user_agent: str = "chatbridge/0.1.0"
    family: str = "litellm"


@dataclass
class SecretsConfig:
    path: str = "~/.chatbridge/secrets.yaml"


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = ""


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class BridgeConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    secrets: SecretsConfig = field(default_factory=SecretsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATBRIDGE_LLM_CONTEXT_LENGTH":    ("llm.context_length", int),
    "CHATBRIDGE_LLM_MAX_OUTPUT":        ("llm.max_output_tokens", int),
    "CHATBRIDGE_LLM_DEFAULT_MAX_TOKENS": ("llm.default_max_tokens", int),
    "CHATBRIDGE_LLM_TEMPERATURE":       ("llm.default_temperature", float),
    "CHATBRIDGE_LLM_TIMEOUT":           ("llm.timeout_seconds", int),
    "CHATBRIDGE_LLM_USER_AGENT":        ("llm.user_agent", str),
    "CHATBRIDGE_SECRETS_PATH":          ("secrets.path", str),
    "CHATBRIDGE_LOG_LEVEL":             ("logging.level", str),
    "CHATBRIDGE_LOG_FILE":              ("logging.file", str),
}


def find_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "chatbridge.yaml",
        Path.cwd() / "chatbridge.yml",
        Path.home() / ".config" / "chatbridge" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> BridgeConfig:
    """
    Build a BridgeConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}

    cfg = BridgeConfig(
        llm=_build_section(LLMConfig, raw.get("llm") or {}),
        secrets=_build_section(SecretsConfig, raw.get("secrets") or {}),
        logging=_build_section(LoggingConfig, raw.get("logging") or {}),
    )

    # --- 2. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 3. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg

"""Configuration loader and LLM config builder.

Reads project settings from a YAML config file with ``${ENV_VAR}`` interpolation.
Provider credentials fall back to the well-known environment variables of
each provider when left empty.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import ProjectConfig, ProviderConfig

load_dotenv()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# ---------------------------------------------------------------------------
# YAML loading with ${ENV_VAR} interpolation
# ---------------------------------------------------------------------------

_ENV_RE = re.compile(r"\$\{([^}]+)\}")

_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "ag2": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
}

PROVIDER_KINDS = frozenset({"mock", "openai", "openrouter", "azure", "ag2"})


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${ENV_VAR}`` references in strings."""
    if isinstance(value, str):
        def _replace(m: re.Match) -> str:
            return os.environ.get(m.group(1), "")
        return _ENV_RE.sub(_replace, value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def apply_provider_fallbacks(config: ProjectConfig) -> ProjectConfig:
    """Fill empty provider credentials from environment variables."""
    provider = config.provider
    kind = provider.kind.lower()
    if kind not in PROVIDER_KINDS:
        raise ConfigurationError(
            f"Unknown provider kind {provider.kind!r}. Choose from: {', '.join(sorted(PROVIDER_KINDS))}"
        )
    provider.kind = kind

    env_var = _KEY_ENV_VARS.get(kind)
    if env_var and not provider.api_key:
        provider.api_key = os.getenv(env_var, "")
    if kind == "openrouter" and not provider.base_url:
        provider.base_url = OPENROUTER_BASE_URL
    if kind == "azure":
        if not provider.base_url:
            provider.base_url = os.getenv("AZURE_OPENAI_ENDPOINT", "")
        if not provider.api_version:
            provider.api_version = os.getenv("AZURE_OPENAI_API_VERSION", "")
    provider.base_url = provider.base_url.rstrip("/")
    return config


def load_config(config_path: str | Path) -> ProjectConfig:
    """Load a ``ProjectConfig`` from a YAML file.

    Environment variables referenced as ``${VAR_NAME}`` are resolved.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    resolved = _resolve_env_vars(raw)
    config = ProjectConfig.model_validate(resolved)
    return apply_provider_fallbacks(config)


# ---------------------------------------------------------------------------
# Model selection and AG2 config builder
# ---------------------------------------------------------------------------

def model_for_step(step: str, config: ProjectConfig) -> str:
    """Return the model name for a generation step.

    ``outline`` → models.outline, ``section`` → models.section,
    ``regeneration`` → models.regeneration; anything unset falls back to
    models.default.
    """
    models = config.models
    step_map: dict[str, str | None] = {
        "outline": models.outline,
        "section": models.section,
        "regeneration": models.regeneration,
    }
    return step_map.get(step.lower()) or models.default


def _build_single_entry(model: str, provider: ProviderConfig) -> dict[str, Any]:
    """Build a single AG2 config_list entry for the given model."""
    entry: dict[str, Any] = {
        "model": model,
        "api_key": provider.api_key,
    }
    if provider.kind == "azure":
        entry.update({
            "api_type": "azure",
            "azure_endpoint": provider.base_url,
            "api_version": provider.api_version,
            "azure_deployment": model,
        })
    elif provider.base_url:
        entry["base_url"] = provider.base_url
    return entry


def build_llm_config(step: str, config: ProjectConfig) -> dict[str, Any]:
    """Return an AG2-compatible ``llm_config`` dict for the given *step*."""
    entry = _build_single_entry(model_for_step(step, config), config.provider)
    llm_config: dict[str, Any] = {
        "config_list": [entry],
        "timeout": config.timeout,
        "seed": config.seed,
    }
    if config.temperature is not None:
        llm_config["temperature"] = config.temperature
    return llm_config

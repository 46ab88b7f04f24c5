"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hydra.core.config_store import ConfigStore


@dataclass
class ProviderConf:
    kind: str = "mock"
    api_key: str = ""
    base_url: str = ""
    api_version: str = ""


@dataclass
class ModelConf:
    default: str = "gpt-5-mini"
    outline: str | None = None
    section: str | None = None
    regeneration: str | None = None


@dataclass
class ContextConf:
    max_context_window: int = 120000
    reserved_tokens: int = 20000
    average_example_tokens: int = 4000
    min_examples: int = 3
    max_examples: int = 20


@dataclass
class RegenerationConf:
    minimum_word_count: int = 400
    max_auto_regeneration_attempts: int = 3
    regeneration_cooldown_ms: int = 30000


@dataclass
class StorageConf:
    data_dir: str = "data/"
    persist_throttle_ms: int = 1000


@dataclass
class HsgConf:
    # --- Dispatch + CLI-only fields ---
    mode: str = "generate"
    verbose: bool = False
    quiet: bool = False
    prompt: str | None = None
    script_id: str | None = None
    section: str | None = None
    run_jobs: bool = True
    clear_completed: bool = False

    # --- ProjectConfig fields (1:1 mapping) ---
    project_name: str = "hypnosis-scripts"
    provider: ProviderConf = field(default_factory=ProviderConf)
    models: ModelConf = field(default_factory=ModelConf)
    context: ContextConf = field(default_factory=ContextConf)
    regeneration: RegenerationConf = field(default_factory=RegenerationConf)
    storage: StorageConf = field(default_factory=StorageConf)
    examples_dir: str | None = None
    timeout: int = 120
    seed: int = 42
    temperature: float | None = None


# Keys present in HsgConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "verbose", "quiet", "prompt", "script_id", "section",
    "run_jobs", "clear_completed",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore."""
    cs = ConfigStore.instance()
    cs.store(name="hsg_schema", node=HsgConf)

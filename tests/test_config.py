"""Tests for config.py: YAML loading and LLM config building."""

from __future__ import annotations

import pytest

from hypnosis_script_generator.config import (
    OPENROUTER_BASE_URL,
    _resolve_env_vars,
    apply_provider_fallbacks,
    build_llm_config,
    load_config,
    model_for_step,
)
from hypnosis_script_generator.errors import ConfigurationError
from hypnosis_script_generator.models import ModelConfig, ProjectConfig, ProviderConfig


class TestResolveEnvVars:
    def test_string_replacement(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert _resolve_env_vars("${TEST_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch):
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        assert _resolve_env_vars("${NONEXISTENT_VAR}") == ""

    def test_nested(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")
        assert _resolve_env_vars({"a": ["${MY_KEY}", 3]}) == {"a": ["secret", 3]}


class TestLoadConfig:
    def test_load_sample_config(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
        config = load_config(sample_config_path)
        assert config.project_name == "Evening Wind-Down Scripts"
        assert config.provider.kind == "openrouter"
        assert config.provider.api_key == "or-key"
        assert config.provider.base_url == OPENROUTER_BASE_URL
        assert config.regeneration.minimum_word_count == 350
        assert config.regeneration.max_auto_regeneration_attempts == 2
        assert config.context.max_examples == 5
        assert config.context.min_examples == 3
        assert config.storage.data_dir == "store/"
        assert config.examples_dir == "my_scripts/"
        assert config.timeout == 90

    def test_missing_config_raises(self):
        with pytest.raises(FileNotFoundError):
            load_config("nonexistent.yaml")


class TestProviderFallbacks:
    def test_openai_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = apply_provider_fallbacks(ProjectConfig(provider=ProviderConfig(kind="OpenAI")))
        assert config.provider.kind == "openai"
        assert config.provider.api_key == "sk-test"

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "env-key")
        config = apply_provider_fallbacks(ProjectConfig(provider=ProviderConfig(kind="openai", api_key="cfg-key")))
        assert config.provider.api_key == "cfg-key"

    def test_azure(self, monkeypatch):
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "az-key")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://test.openai.azure.com/")
        monkeypatch.setenv("AZURE_OPENAI_API_VERSION", "2024-06-01")
        config = apply_provider_fallbacks(ProjectConfig(provider=ProviderConfig(kind="azure")))
        assert config.provider.api_key == "az-key"
        assert config.provider.base_url == "https://test.openai.azure.com"
        assert config.provider.api_version == "2024-06-01"

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            apply_provider_fallbacks(ProjectConfig(provider=ProviderConfig(kind="carrier-pigeon")))


class TestLlmConfig:
    def test_model_for_step(self):
        config = ProjectConfig(models=ModelConfig(default="base", outline="planner"))
        assert model_for_step("outline", config) == "planner"
        assert model_for_step("section", config) == "base"
        assert model_for_step("unknown", config) == "base"

    def test_openai_entry(self):
        config = ProjectConfig(
            provider=ProviderConfig(kind="openrouter", api_key="k", base_url=OPENROUTER_BASE_URL),
            temperature=0.7,
        )
        llm_config = build_llm_config("section", config)
        entry = llm_config["config_list"][0]
        assert entry == {"model": "gpt-5-mini", "api_key": "k", "base_url": OPENROUTER_BASE_URL}
        assert llm_config["timeout"] == 120
        assert llm_config["seed"] == 42
        assert llm_config["temperature"] == 0.7

    def test_azure_entry(self):
        config = ProjectConfig(
            provider=ProviderConfig(kind="azure", api_key="k", base_url="https://x", api_version="v1"),
            models=ModelConfig(default="gpt-4o"),
        )
        entry = build_llm_config("regeneration", config)["config_list"][0]
        assert entry["api_type"] == "azure"
        assert entry["azure_endpoint"] == "https://x"
        assert entry["azure_deployment"] == "gpt-4o"
        assert "temperature" not in build_llm_config("outline", config)

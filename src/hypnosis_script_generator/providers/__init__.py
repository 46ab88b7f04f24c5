"""Generation providers: the LLM streaming capability behind the orchestrator.

Every provider exposes two async generators yielding text chunks. The
variant is chosen once, from ``config.provider.kind``, by
``make_generation_provider``.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Protocol

from ..errors import ConfigurationError
from ..models import ChatMessage, ExampleDocument, GenerationRequest, ProjectConfig, SectionRegenerationRequest


class GenerationProvider(Protocol):
    name: str

    def generate_script(
        self,
        request: GenerationRequest,
        messages: list[ChatMessage],
        examples: list[ExampleDocument] | None = None,
        abort: asyncio.Event | None = None,
        *,
        step: str = "section",
    ) -> AsyncIterator[str]: ...

    def regenerate_section(
        self,
        request: SectionRegenerationRequest,
        messages: list[ChatMessage],
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[str]: ...


def to_api_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    return [{"role": m.role.value, "content": m.content} for m in messages]


def make_generation_provider(config: ProjectConfig) -> GenerationProvider:
    """Build the provider selected by ``config.provider.kind``."""
    kind = config.provider.kind
    if kind == "mock":
        from .mock_provider import MockProvider
        return MockProvider(min_words=config.regeneration.minimum_word_count)
    if kind in ("openai", "openrouter", "azure"):
        if not config.provider.api_key:
            raise ConfigurationError(f"No API key configured for provider {kind!r}")
        from .openai_provider import OpenAIStreamingProvider
        return OpenAIStreamingProvider(config)
    if kind == "ag2":
        from .ag2_provider import AG2Provider
        return AG2Provider(config)
    raise ConfigurationError(f"Unknown provider kind {kind!r}")

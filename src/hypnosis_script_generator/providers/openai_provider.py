"""Streaming chat completions through the ``openai`` SDK.

Serves OpenAI, OpenRouter (OpenAI-compatible base URL) and Azure OpenAI.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

from openai import AsyncAzureOpenAI, AsyncOpenAI

from ..config import model_for_step
from ..models import (
    ChatMessage,
    ChatRole,
    ExampleDocument,
    GenerationRequest,
    ProjectConfig,
    SectionRegenerationRequest,
)
from ..prompts import system_prompt
from . import to_api_messages

logger = logging.getLogger(__name__)


def make_client(config: ProjectConfig) -> AsyncOpenAI:
    provider = config.provider
    if provider.kind == "azure":
        return AsyncAzureOpenAI(
            api_key=provider.api_key,
            azure_endpoint=provider.base_url,
            api_version=provider.api_version,
            timeout=config.timeout,
        )
    return AsyncOpenAI(
        api_key=provider.api_key,
        base_url=provider.base_url or None,
        timeout=config.timeout,
    )


def with_system_prompt(
    messages: list[ChatMessage],
    examples: list[ExampleDocument] | None = None,
) -> list[ChatMessage]:
    """Prepend the default system prompt when *messages* carry none."""
    if any(m.role == ChatRole.SYSTEM for m in messages):
        return messages
    return [ChatMessage(role=ChatRole.SYSTEM, content=system_prompt(examples)), *messages]


class OpenAIStreamingProvider:
    """Chat-completions streaming provider."""

    def __init__(self, config: ProjectConfig, client: AsyncOpenAI | None = None):
        self.config = config
        self.name = config.provider.kind
        self.client = client or make_client(config)

    async def _stream(
        self,
        step: str,
        messages: list[ChatMessage],
        abort: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        kwargs: dict[str, Any] = {
            "model": model_for_step(step, self.config),
            "messages": to_api_messages(messages),
            "stream": True,
        }
        if self.config.temperature is not None:
            kwargs["temperature"] = self.config.temperature
        logger.debug("Streaming %s with %s (%d messages)", step, kwargs["model"], len(messages))

        stream = await self.client.chat.completions.create(**kwargs)
        try:
            async for event in stream:
                if abort is not None and abort.is_set():
                    logger.debug("Abort set; closing %s stream", step)
                    break
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    yield delta
        finally:
            await stream.close()

    async def generate_script(
        self,
        request: GenerationRequest,
        messages: list[ChatMessage],
        examples: list[ExampleDocument] | None = None,
        abort: asyncio.Event | None = None,
        *,
        step: str = "section",
    ) -> AsyncIterator[str]:
        async for chunk in self._stream(step, with_system_prompt(messages, examples), abort):
            yield chunk

    async def regenerate_section(
        self,
        request: SectionRegenerationRequest,
        messages: list[ChatMessage],
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        async for chunk in self._stream("regeneration", with_system_prompt(messages), abort):
            yield chunk

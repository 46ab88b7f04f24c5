"""Non-streaming provider backed by an AG2 ``AssistantAgent``.

The whole reply arrives at once and is emitted as a single chunk, so
progress updates only at section boundaries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from ..agents.script_writer import extract_reply_text, make_script_writer
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


def _split_system(messages: list[ChatMessage]) -> tuple[str | None, list[ChatMessage]]:
    system = [m.content for m in messages if m.role == ChatRole.SYSTEM]
    rest = [m for m in messages if m.role != ChatRole.SYSTEM]
    return ("\n\n".join(system) if system else None), rest


class AG2Provider:
    name = "ag2"

    def __init__(self, config: ProjectConfig):
        self.config = config

    async def _reply(
        self,
        step: str,
        messages: list[ChatMessage],
        examples: list[ExampleDocument] | None,
        abort: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        system, rest = _split_system(messages)
        writer = make_script_writer(
            self.config,
            step=step,
            system_message=system or system_prompt(examples),
        )
        reply = await writer.a_generate_reply(messages=to_api_messages(rest))
        if abort is not None and abort.is_set():
            return
        text = extract_reply_text(reply)
        logger.debug("AG2 %s reply: %d chars", step, len(text))
        if text:
            yield text

    async def generate_script(
        self,
        request: GenerationRequest,
        messages: list[ChatMessage],
        examples: list[ExampleDocument] | None = None,
        abort: asyncio.Event | None = None,
        *,
        step: str = "section",
    ) -> AsyncIterator[str]:
        async for chunk in self._reply(step, messages, examples, abort):
            yield chunk

    async def regenerate_section(
        self,
        request: SectionRegenerationRequest,
        messages: list[ChatMessage],
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        async for chunk in self._reply("regeneration", messages, None, abort):
            yield chunk

"""Deterministic offline provider for demos and tests."""

from __future__ import annotations

import asyncio
import logging
import re
from itertools import cycle
from typing import AsyncIterator

from ..models import (
    ChatMessage,
    ChatRole,
    ExampleDocument,
    GenerationRequest,
    SectionRegenerationRequest,
)

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\S+|\s+")

_OUTLINES: list[tuple[tuple[str, ...], str, list[tuple[str, str]]]] = [
    (("confidence", "speaking"), "Confidence Building for Public Speaking", [
        ("Introduction", "Settle in and set the intention for the session."),
        ("Induction", "Guide attention inward with breath and eye closure."),
        ("Building Inner Confidence", "Install a felt sense of calm self-assurance."),
        ("Visualization of Success", "Rehearse a successful talk in vivid detail."),
        ("Anchoring Confidence", "Link the confident state to a simple gesture."),
        ("Emergence", "Return to full awareness, refreshed and ready."),
    ]),
    (("sleep", "insomnia"), "Sleep Improvement and Deep Rest", [
        ("Evening Preparation", "Invite the body to settle into bed."),
        ("Progressive Relaxation", "Release tension from head to toe."),
        ("Mental Clearing", "Let the day's thoughts drift away."),
        ("Sleep Induction", "Slow the breath and drift toward sleep."),
        ("Deep Sleep Suggestions", "Suggest deep, restorative sleep through the night."),
    ]),
]

_DEFAULT_OUTLINE: tuple[str, list[tuple[str, str]]] = ("Deep Relaxation and Stress Relief", [
    ("Introduction", "Welcome the listener and describe what will happen."),
    ("Induction", "Focus on the breath and let the eyes close."),
    ("Progressive Muscle Relaxation", "Relax each muscle group in turn."),
    ("Visualization", "Walk through a calm, safe place."),
    ("Suggestions for Stress Relief", "Offer suggestions for calm responses to stress."),
    ("Emergence", "Count up from one to five and return refreshed."),
])

_SENTENCES = [
    "Allow yourself to settle a little more deeply with each easy breath.",
    "There is nothing you need to do right now except notice how comfortable you can become.",
    "Each sound around you can simply drift by, taking you further into relaxation.",
    "You may notice a gentle warmth spreading through your shoulders and arms.",
    "Your mind can wander wherever it likes while your body continues to rest.",
    "With every word you hear, a quiet sense of ease grows stronger inside you.",
    "Perhaps you can imagine a soft light moving slowly down from the top of your head.",
    "That light brings calm to every place it touches, melting old tension away.",
]


def _outline_for(prompt: str) -> str:
    lowered = prompt.lower()
    title, sections = _DEFAULT_OUTLINE
    for keywords, t, s in _OUTLINES:
        if any(k in lowered for k in keywords):
            title, sections = t, s
            break
    lines = [f"# {title}", ""]
    for name, description in sections:
        lines += [f"## {name}", description, ""]
    return "\n".join(lines).strip()


def _body(words: int, opener: str = "") -> str:
    """Paragraphs of script prose totalling at least *words* words."""
    sentences: list[str] = [opener] if opener else []
    count = len(opener.split())
    for sentence in cycle(_SENTENCES):
        if count >= words:
            break
        sentences.append(sentence)
        count += len(sentence.split())
    paragraphs = [" ".join(sentences[i:i + 4]) for i in range(0, len(sentences), 4)]
    return "\n\n".join(paragraphs)


def _last_user(messages: list[ChatMessage]) -> str:
    return next((m.content for m in reversed(messages) if m.role == ChatRole.USER), "")


def chunk_text(text: str) -> list[str]:
    """Split text into word and whitespace tokens, the way a model streams."""
    return _TOKEN_RE.findall(text)


class MockProvider:
    """Scripted responses streamed token by token.

    ``section_words`` controls how long initial sections are; set it below
    ``min_words`` to exercise automatic regeneration. Regenerated sections
    are always at least ``min_words`` long.
    """

    name = "mock"

    def __init__(
        self,
        *,
        min_words: int = 400,
        section_words: int | None = None,
        delay_s: float = 0.0,
    ):
        self.min_words = min_words
        self.section_words = section_words if section_words is not None else min_words + 20
        self.delay_s = delay_s

    async def _emit(self, text: str, abort: asyncio.Event | None) -> AsyncIterator[str]:
        for token in chunk_text(text):
            if abort is not None and abort.is_set():
                logger.debug("Mock generation aborted during streaming")
                return
            yield token
            await asyncio.sleep(self.delay_s)

    async def generate_script(
        self,
        request: GenerationRequest,
        messages: list[ChatMessage],
        examples: list[ExampleDocument] | None = None,
        abort: asyncio.Event | None = None,
        *,
        step: str = "section",
    ) -> AsyncIterator[str]:
        if examples:
            logger.debug("Mock provider received %d example(s)", len(examples))
        if step == "outline":
            text = _outline_for(request.prompt)
        else:
            m = re.search(r'section "## (.+?)"', _last_user(messages))
            opener = f"In this part, {m.group(1).lower()}, you can simply listen." if m else ""
            text = _body(self.section_words, opener)
        async for chunk in self._emit(text, abort):
            yield chunk

    async def regenerate_section(
        self,
        request: SectionRegenerationRequest,
        messages: list[ChatMessage],
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        opener = f"Returning now to {request.section_title.lower()}, let everything slow down."
        async for chunk in self._emit(_body(self.min_words + 40, opener), abort):
            yield chunk

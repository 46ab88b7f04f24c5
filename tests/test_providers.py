"""Tests for providers/ and agents/script_writer.py."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from hypnosis_script_generator.agents.script_writer import extract_reply_text
from hypnosis_script_generator.errors import ConfigurationError
from hypnosis_script_generator.models import (
    ChatMessage,
    ChatRole,
    GenerationRequest,
    ProjectConfig,
    ProviderConfig,
    SectionRegenerationRequest,
)
from hypnosis_script_generator.providers import make_generation_provider, to_api_messages
from hypnosis_script_generator.providers import ag2_provider
from hypnosis_script_generator.providers.ag2_provider import AG2Provider
from hypnosis_script_generator.providers.mock_provider import MockProvider, chunk_text
from hypnosis_script_generator.providers.openai_provider import OpenAIStreamingProvider, with_system_prompt
from hypnosis_script_generator.tools.document_parser import parse_outline


def _collect(agen) -> list[str]:
    async def run():
        return [chunk async for chunk in agen]
    return asyncio.run(run())


def _user(text: str) -> ChatMessage:
    return ChatMessage(role=ChatRole.USER, content=text)


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class TestMockProvider:
    def test_chunk_text_is_lossless(self):
        text = "# Title\n\n## A\nsome  words"
        assert "".join(chunk_text(text)) == text

    def test_outline_matches_prompt(self):
        provider = MockProvider()
        chunks = _collect(provider.generate_script(GenerationRequest(prompt="I want more confidence"), [], step="outline"))
        outline = parse_outline("".join(chunks))
        assert outline.title == "Confidence Building for Public Speaking"
        assert len(outline.sections) == 6
        assert len(chunks) > 10

    def test_section_length(self):
        provider = MockProvider(min_words=50, section_words=30)
        messages = [_user('Now write the section "## Induction" (2 of 6).')]
        text = "".join(_collect(provider.generate_script(GenerationRequest(prompt="x"), messages)))
        assert text.startswith("In this part, induction")
        assert 30 <= len(text.split()) < 50

    def test_regeneration_meets_minimum(self):
        provider = MockProvider(min_words=50)
        request = SectionRegenerationRequest(prompt="p", conversation_id="c", section_title="Emergence")
        text = "".join(_collect(provider.regenerate_section(request, [])))
        assert len(text.split()) >= 50

    def test_abort_stops_stream(self):
        abort = asyncio.Event()
        abort.set()
        provider = MockProvider()
        assert _collect(provider.generate_script(GenerationRequest(prompt="x"), [], abort=abort, step="outline")) == []


# ---------------------------------------------------------------------------
# Provider factory
# ---------------------------------------------------------------------------

class TestFactory:
    def test_mock(self):
        provider = make_generation_provider(ProjectConfig())
        assert isinstance(provider, MockProvider)
        assert provider.min_words == 400

    def test_openai_requires_key(self):
        with pytest.raises(ConfigurationError):
            make_generation_provider(ProjectConfig(provider=ProviderConfig(kind="openai")))

    def test_openai(self):
        provider = make_generation_provider(ProjectConfig(provider=ProviderConfig(kind="openai", api_key="sk-test")))
        assert isinstance(provider, OpenAIStreamingProvider)
        assert provider.name == "openai"

    def test_ag2(self):
        assert isinstance(make_generation_provider(ProjectConfig(provider=ProviderConfig(kind="ag2"))), AG2Provider)

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            make_generation_provider(ProjectConfig(provider=ProviderConfig(kind="telepathy")))

    def test_to_api_messages(self):
        assert to_api_messages([_user("hi")]) == [{"role": "user", "content": "hi"}]


# ---------------------------------------------------------------------------
# OpenAI streaming provider
# ---------------------------------------------------------------------------

class FakeStream:
    def __init__(self, deltas):
        self.deltas = deltas
        self.closed = False

    def __aiter__(self):
        return self._events()

    async def _events(self):
        for delta in self.deltas:
            if delta is None:
                yield SimpleNamespace(choices=[])
            else:
                yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=delta))])

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, deltas):
        self.deltas = deltas
        self.calls = []
        self.stream = None

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        self.stream = FakeStream(self.deltas)
        return self.stream


def _fake_client(deltas):
    completions = FakeCompletions(deltas)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestOpenAIStreamingProvider:
    def test_streams_deltas(self):
        client, completions = _fake_client(["# Ti", None, "tle", ""])
        config = ProjectConfig(provider=ProviderConfig(kind="openai", api_key="k"), temperature=0.4)
        provider = OpenAIStreamingProvider(config, client=client)

        chunks = _collect(provider.generate_script(GenerationRequest(prompt="x"), [_user("hi")], step="outline"))

        assert chunks == ["# Ti", "tle"]
        call = completions.calls[0]
        assert call["stream"] is True
        assert call["model"] == "gpt-5-mini"
        assert call["temperature"] == 0.4
        assert call["messages"][0]["role"] == "system"
        assert completions.stream.closed is True

    def test_regeneration_uses_step_model(self):
        client, completions = _fake_client(["new text"])
        config = ProjectConfig(provider=ProviderConfig(kind="openai", api_key="k"))
        config.models.regeneration = "gpt-4o"
        provider = OpenAIStreamingProvider(config, client=client)
        request = SectionRegenerationRequest(prompt="p", conversation_id="c", section_title="A")
        messages = [ChatMessage(role=ChatRole.SYSTEM, content="sys"), _user("p")]

        assert _collect(provider.regenerate_section(request, messages)) == ["new text"]
        assert completions.calls[0]["model"] == "gpt-4o"
        assert [m["role"] for m in completions.calls[0]["messages"]] == ["system", "user"]

    def test_abort_closes_stream(self):
        client, completions = _fake_client(["a", "b", "c"])
        provider = OpenAIStreamingProvider(ProjectConfig(provider=ProviderConfig(kind="openai", api_key="k")), client=client)
        abort = asyncio.Event()
        abort.set()
        assert _collect(provider.generate_script(GenerationRequest(prompt="x"), [_user("hi")], abort=abort)) == []
        assert completions.stream.closed is True

    def test_with_system_prompt(self):
        messages = [_user("hi")]
        assert with_system_prompt(messages)[0].role == ChatRole.SYSTEM
        existing = [ChatMessage(role=ChatRole.SYSTEM, content="custom"), _user("hi")]
        assert with_system_prompt(existing) is existing


# ---------------------------------------------------------------------------
# AG2 provider
# ---------------------------------------------------------------------------

class FakeWriter:
    def __init__(self, reply):
        self.reply = reply
        self.received = None

    async def a_generate_reply(self, messages=None):
        self.received = messages
        return self.reply


class TestAG2Provider:
    def test_single_chunk_reply(self, monkeypatch):
        writer = FakeWriter({"content": "# Title\n\n## A\nbody", "role": "assistant"})
        made = {}

        def fake_make(config, *, step, system_message):
            made.update(step=step, system_message=system_message)
            return writer

        monkeypatch.setattr(ag2_provider, "make_script_writer", fake_make)
        provider = AG2Provider(ProjectConfig(provider=ProviderConfig(kind="ag2")))
        messages = [ChatMessage(role=ChatRole.SYSTEM, content="sys"), _user("write")]

        chunks = _collect(provider.generate_script(GenerationRequest(prompt="x"), messages, step="outline"))

        assert chunks == ["# Title\n\n## A\nbody"]
        assert made == {"step": "outline", "system_message": "sys"}
        assert writer.received == [{"role": "user", "content": "write"}]

    def test_empty_reply(self, monkeypatch):
        monkeypatch.setattr(ag2_provider, "make_script_writer", lambda config, **kw: FakeWriter(None))
        provider = AG2Provider(ProjectConfig(provider=ProviderConfig(kind="ag2")))
        request = SectionRegenerationRequest(prompt="p", conversation_id="c", section_title="A")
        assert _collect(provider.regenerate_section(request, [_user("p")])) == []


class TestExtractReplyText:
    def test_variants(self):
        assert extract_reply_text(None) == ""
        assert extract_reply_text("plain") == "plain"
        assert extract_reply_text({"content": "from dict"}) == "from dict"
        assert extract_reply_text({"content": None}) == ""

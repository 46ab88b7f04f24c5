"""Tests for tools/conversation_codec.py."""

from __future__ import annotations

import pytest

from hypnosis_script_generator.models import (
    ChatMessage,
    ChatRole,
    Conversation,
    Generation,
    Script,
    ScriptStatus,
)
from hypnosis_script_generator.tools.conversation_codec import (
    conversation_from_legacy,
    conversation_key,
    migrate_legacy_conversations,
    parse_conversation,
    parse_script,
    script_key,
    serialize_conversation,
    serialize_script,
)


@pytest.fixture
def conversation() -> Conversation:
    return Conversation(
        id="conv_1",
        script_id="script_1",
        created_at=1000,
        updated_at=2000,
        generations=[
            Generation(
                messages=[
                    ChatMessage(role=ChatRole.SYSTEM, content="You are a hypnotherapist."),
                    ChatMessage(role=ChatRole.USER, content="Help me sleep.\n\nOutline first."),
                ],
                response="# Sleep\n\n## Intro\nSettle in.",
                timestamp=1100,
            ),
            Generation(
                messages=[ChatMessage(role=ChatRole.USER, content="Write it.")],
                response="# Sleep\n\n## Intro\nSettle in.\n\n---\n\nA horizontal rule above.",
                cached_tokens=512,
                timestamp=1200,
            ),
        ],
    )


class TestKeys:
    def test_keys(self):
        assert conversation_key("script_9") == "conversation_script_9"
        assert script_key("script_9") == "script_script_9"


class TestConversationFormat:
    def test_header_and_blocks(self, conversation):
        text = serialize_conversation(conversation)
        assert text.startswith("---\ntype: conversation\nid: conv_1\nscriptId: script_1\n")
        assert text.count("type: prompt") == 2
        assert text.count("type: response") == 2
        assert "cachedTokens: 512" in text
        assert "You are a hypnotherapist." not in text

    def test_parse(self, conversation):
        parsed = parse_conversation(serialize_conversation(conversation))
        assert parsed is not None
        assert parsed.id == "conv_1"
        assert parsed.script_id == "script_1"
        assert parsed.created_at == 1000
        assert len(parsed.generations) == 2
        first = parsed.generations[0]
        assert [m.role for m in first.messages] == [ChatRole.USER]
        assert first.messages[0].content == "Help me sleep.\n\nOutline first."
        assert first.timestamp == 1100

    def test_text_block_with_rule(self, conversation):
        parsed = parse_conversation(serialize_conversation(conversation))
        assert parsed.generations[1].response == conversation.generations[1].response
        assert parsed.generations[1].cached_tokens == 512

    def test_round_trip(self, conversation):
        once = serialize_conversation(conversation)
        assert serialize_conversation(parse_conversation(once)) == once

    def test_round_trip_text_that_looks_like_a_header(self):
        conv = Conversation(
            id="c", script_id="s", created_at=1, updated_at=2,
            generations=[Generation(
                messages=[ChatMessage(role=ChatRole.USER, content="type: prompt\nrole: user")],
                response="type: response\nrole: assistant",
                timestamp=5,
            )],
        )
        once = serialize_conversation(conv)
        parsed = parse_conversation(once)
        assert len(parsed.generations) == 1
        assert parsed.generations[0].messages[0].content == "type: prompt\nrole: user"
        assert parsed.generations[0].response == "type: response\nrole: assistant"
        assert serialize_conversation(parsed) == once

    def test_generation_without_user_message(self):
        conv = Conversation(
            id="c", script_id="s",
            generations=[Generation(messages=[], response="Only a response.", timestamp=5)],
        )
        text = serialize_conversation(conv)
        assert "type: prompt" not in text
        parsed = parse_conversation(text)
        assert parsed.generations[0].messages == []
        assert parsed.generations[0].response == "Only a response."

    def test_unparsable_blocks_skipped(self, conversation):
        text = serialize_conversation(conversation)
        garbage = "---\ntype: [unclosed\n---\nstray text\n"
        parsed = parse_conversation(garbage + text)
        assert parsed is not None
        assert len(parsed.generations) == 2

    def test_no_header(self):
        assert parse_conversation("") is None
        assert parse_conversation("just some text") is None


class TestLegacyMigration:
    def test_from_legacy_entry(self):
        entry = {
            "id": "conv_old",
            "scriptId": "script_old",
            "createdAt": 10,
            "updatedAt": 20,
            "generations": [{
                "messages": [{"role": "user", "content": "Relax me"}, {"role": "tool", "content": "x"}],
                "response": "# Relax",
                "timestamp": 11,
            }],
        }
        conv = conversation_from_legacy(entry)
        assert conv.id == "conv_old"
        assert [m.role for m in conv.generations[0].messages] == [ChatRole.USER]

    def test_migrate_entries(self):
        records = migrate_legacy_conversations([
            {"id": "a", "scriptId": "s1", "generations": []},
            {"id": "b", "generations": []},
            "not a dict",
        ])
        assert list(records) == ["conversation_s1"]
        assert parse_conversation(records["conversation_s1"]).id == "a"

    def test_non_list(self):
        assert migrate_legacy_conversations({"scriptId": "x"}) == {}


class TestScriptFormat:
    def test_round_trip(self):
        script = Script(
            id="script_1",
            title="Calm",
            content="# Calm\n\n## Intro\nBreathe.",
            created_at="2026-01-01T00:00:00+00:00",
            tags=["sleep"],
            status=ScriptStatus.COMPLETE,
            length="3 words",
            conversation_id="conv_1",
            initial_prompt="help me sleep",
            provider="mock",
        )
        text = serialize_script(script)
        assert "createdAt: '2026-01-01T00:00:00+00:00'" in text
        assert parse_script(text) == script

    def test_parse_empty(self):
        assert parse_script("") is None

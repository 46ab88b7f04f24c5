"""YAML-markdown wire format for conversations and script records.

A record is a sequence of ``---``-delimited blocks. Header blocks are YAML
mappings with a ``type`` key; each ``prompt`` or ``response`` header is
followed by a raw text block::

    ---
    type: conversation
    id: conv_...
    scriptId: script_...
    createdAt: 1700000000000
    updatedAt: 1700000000000
    ---

    ---
    type: prompt
    timestamp: 1700000000000
    role: user
    ---
    <user message>

    ---
    type: response
    timestamp: 1700000000000
    role: assistant
    cachedTokens: null
    ---
    <assistant response>

Text blocks are stored stripped. A text block may itself contain ``---``
lines; everything up to the next header block belongs to it.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import yaml
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..models import (
    ChatMessage,
    ChatRole,
    Conversation,
    ExampleDocument,
    Generation,
    Script,
    ScriptStatus,
    now_ms,
)

logger = logging.getLogger(__name__)

CONVERSATION_KEY_PREFIX = "conversation_"
SCRIPT_KEY_PREFIX = "script_"
EXAMPLES_KEY_PREFIX = "examples_"

_DELIMITER_RE = re.compile(r"^---$", re.MULTILINE)
_HEADER_TYPES = frozenset({"conversation", "prompt", "response", "script"})


def conversation_key(script_id: str) -> str:
    return f"{CONVERSATION_KEY_PREFIX}{script_id}"


def script_key(script_id: str) -> str:
    return f"{SCRIPT_KEY_PREFIX}{script_id}"


def examples_key(script_id: str) -> str:
    return f"{EXAMPLES_KEY_PREFIX}{script_id}"


def _dump_header(data: dict[str, Any]) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False).strip()


def _load_header(block: str) -> dict[str, Any] | None:
    """Parse *block* as a header mapping, or return None if it is not one."""
    text = block.strip()
    if not text.startswith("type:"):
        return None
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict) or data.get("type") not in _HEADER_TYPES:
        return None
    return data


def _split_blocks(text: str) -> list[str]:
    return _DELIMITER_RE.split(text)


def _read_text_block(blocks: list[str], start: int) -> tuple[str, int]:
    """Collect raw blocks from *start* up to the next header.

    The block at *start* always belongs to the text, even when it looks like
    a header. Returns the stripped text and the index of the first unconsumed
    block.
    """
    if start >= len(blocks):
        return "", start
    parts: list[str] = [blocks[start]]
    i = start + 1
    while i < len(blocks) and _load_header(blocks[i]) is None:
        parts.append(blocks[i])
        i += 1
    return "---".join(parts).strip(), i


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def serialize_conversation(conversation: Conversation) -> str:
    """Render *conversation* in the block format.

    Each generation contributes a prompt pair (only when it carries a user
    message; the first one is used) and always a response pair.
    """
    lines = [
        "---",
        _dump_header({
            "type": "conversation",
            "id": conversation.id,
            "scriptId": conversation.script_id,
            "createdAt": conversation.created_at,
            "updatedAt": conversation.updated_at,
        }),
        "---",
        "",
    ]
    for generation in conversation.generations:
        user = next((m for m in generation.messages if m.role == ChatRole.USER), None)
        if user is not None:
            lines += [
                "---",
                _dump_header({"type": "prompt", "timestamp": generation.timestamp, "role": "user"}),
                "---",
                user.content.strip(),
                "",
            ]
        lines += [
            "---",
            _dump_header({
                "type": "response",
                "timestamp": generation.timestamp,
                "role": "assistant",
                "cachedTokens": generation.cached_tokens,
            }),
            "---",
            generation.response.strip(),
            "",
        ]
    return "\n".join(lines)


def parse_conversation(text: str) -> Conversation | None:
    """Parse the block format back into a ``Conversation``.

    Unparsable or orphaned blocks are skipped. Returns None when the text
    has no conversation header. Parsed generations carry only the user
    message that was persisted; system prompts are not part of the record.
    """
    if not text:
        return None

    blocks = _split_blocks(text)
    header: dict[str, Any] | None = None
    generations: list[Generation] = []
    pending_prompt: str | None = None

    i = 0
    while i < len(blocks):
        data = _load_header(blocks[i])
        if data is None:
            if blocks[i].strip():
                logger.debug("Skipping unparsable block %d", i)
            i += 1
            continue

        kind = data["type"]
        if kind == "conversation":
            header = data
            i += 1
            continue
        if kind not in ("prompt", "response"):
            i += 1
            continue

        body, i = _read_text_block(blocks, i + 1)
        if kind == "prompt":
            if data.get("role", "user") == "user":
                pending_prompt = body
            continue

        messages = []
        if pending_prompt is not None:
            messages.append(ChatMessage(role=ChatRole.USER, content=pending_prompt))
        generations.append(Generation(
            messages=messages,
            response=body,
            cached_tokens=data.get("cachedTokens"),
            timestamp=data.get("timestamp") or now_ms(),
        ))
        pending_prompt = None

    if header is None:
        return None
    return Conversation(
        id=str(header.get("id") or ""),
        script_id=str(header.get("scriptId") or ""),
        generations=generations,
        created_at=header.get("createdAt") or now_ms(),
        updated_at=header.get("updatedAt") or now_ms(),
    )


def conversation_from_legacy(entry: dict[str, Any]) -> Conversation:
    """Build a ``Conversation`` from one object of the legacy JSON array."""
    generations = []
    for gen in entry.get("generations") or []:
        messages = [
            ChatMessage(role=m["role"], content=m.get("content", ""))
            for m in gen.get("messages") or []
            if m.get("role") in ("system", "user", "assistant")
        ]
        generations.append(Generation(
            messages=messages,
            response=gen.get("response", ""),
            cached_tokens=gen.get("cachedTokens"),
            timestamp=gen.get("timestamp") or now_ms(),
        ))
    return Conversation(
        id=entry.get("id") or "",
        script_id=entry["scriptId"],
        generations=generations,
        created_at=entry.get("createdAt") or now_ms(),
        updated_at=entry.get("updatedAt") or now_ms(),
    )


def migrate_legacy_conversations(entries: Any) -> dict[str, str]:
    """Convert a legacy JSON array into ``{key: block text}``.

    Entries without a ``scriptId`` are dropped.
    """
    records: dict[str, str] = {}
    if not isinstance(entries, list):
        return records
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("scriptId"):
            continue
        conversation = conversation_from_legacy(entry)
        records[conversation_key(conversation.script_id)] = serialize_conversation(conversation)
    return records


# ---------------------------------------------------------------------------
# Script records
# ---------------------------------------------------------------------------

def serialize_script(script: Script) -> str:
    header = _dump_header({
        "type": "script",
        "id": script.id,
        "title": script.title,
        "createdAt": script.created_at,
        "isArchived": script.is_archived,
        "tags": script.tags,
        "status": script.status.value,
        "length": script.length,
        "comments": script.comments,
        "conversationId": script.conversation_id,
        "initialPrompt": script.initial_prompt,
        "provider": script.provider,
        "model": script.model,
    })
    return "\n".join(["---", header, "---", script.content.strip(), ""])


def parse_script(text: str) -> Script | None:
    if not text:
        return None
    blocks = _split_blocks(text)
    for i, block in enumerate(blocks):
        data = _load_header(block)
        if data is None or data["type"] != "script":
            continue
        content, _ = _read_text_block(blocks, i + 1)
        return Script(
            id=str(data.get("id") or ""),
            title=data.get("title") or "Untitled",
            content=content,
            created_at=data.get("createdAt") or "",
            is_archived=bool(data.get("isArchived", False)),
            tags=data.get("tags") or [],
            status=data.get("status") or ScriptStatus.DRAFT,
            length=data.get("length") or "",
            comments=data.get("comments") or 0,
            conversation_id=data.get("conversationId"),
            initial_prompt=data.get("initialPrompt"),
            provider=data.get("provider"),
            model=data.get("model"),
        )
    return None


# ---------------------------------------------------------------------------
# Stored examples
# ---------------------------------------------------------------------------

_EXAMPLES_ADAPTER = TypeAdapter(list[ExampleDocument])


def serialize_examples(examples: list[ExampleDocument]) -> str:
    """JSON record of the examples a conversation was generated with."""
    return _EXAMPLES_ADAPTER.dump_json(examples, indent=2).decode("utf-8")


def parse_examples(text: str) -> list[ExampleDocument]:
    if not text:
        return []
    try:
        return _EXAMPLES_ADAPTER.validate_json(text)
    except PydanticValidationError as e:
        logger.warning("Ignoring unreadable examples record: %s", e)
        return []

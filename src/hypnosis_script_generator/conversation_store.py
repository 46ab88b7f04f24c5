"""In-memory conversation registry with throttled persistence."""

from __future__ import annotations

import json
import logging
from typing import Callable

from .models import ChatMessage, ChatRole, Conversation, ExampleDocument, Generation, now_ms
from .storage import KeyValueStore
from .tools.conversation_codec import (
    CONVERSATION_KEY_PREFIX,
    conversation_key,
    examples_key,
    migrate_legacy_conversations,
    parse_conversation,
    parse_examples,
    serialize_conversation,
    serialize_examples,
)

logger = logging.getLogger(__name__)

LEGACY_CONVERSATIONS_KEY = "conversations"


class ConversationStore:
    """Owns every ``Conversation`` and its generations.

    The response of the last generation is the only field that changes
    after a generation is appended. Streaming updates are persisted at most
    once per ``throttle_ms``; ``flush`` always writes.
    """

    def __init__(
        self,
        kv: KeyValueStore | None = None,
        *,
        throttle_ms: int = 1000,
        clock: Callable[[], int] = now_ms,
    ):
        self.kv = kv
        self.throttle_ms = throttle_ms
        self.clock = clock
        self._conversations: dict[str, Conversation] = {}
        self._last_persist: dict[str, int] = {}

    # -- queries ------------------------------------------------------------

    def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def get_by_script_id(self, script_id: str) -> Conversation | None:
        for conversation in self._conversations.values():
            if conversation.script_id == script_id:
                return conversation
        return None

    def list_conversations(self) -> list[Conversation]:
        return sorted(self._conversations.values(), key=lambda c: c.created_at)

    def get_latest_response(self, conversation_id: str) -> str:
        conversation = self.get(conversation_id)
        if conversation is None or not conversation.generations:
            return ""
        return conversation.generations[-1].response

    def conversation_history(self, conversation_id: str) -> list[ChatMessage]:
        """Every generation's messages followed by its assistant response."""
        conversation = self.get(conversation_id)
        if conversation is None:
            return []
        history: list[ChatMessage] = []
        for generation in conversation.generations:
            history.extend(generation.messages)
            if generation.response:
                history.append(ChatMessage(role=ChatRole.ASSISTANT, content=generation.response))
        return history

    # -- mutations ----------------------------------------------------------

    def create_conversation(self, script_id: str) -> Conversation:
        conversation = Conversation(script_id=script_id)
        self._conversations[conversation.id] = conversation
        logger.debug("Created conversation %s for script %s", conversation.id, script_id)
        self._persist(conversation)
        return conversation

    def append_generation(self, conversation_id: str, messages: list[ChatMessage]) -> Generation | None:
        conversation = self.get(conversation_id)
        if conversation is None:
            logger.warning("append_generation: unknown conversation %s", conversation_id)
            return None
        generation = Generation(messages=list(messages))
        conversation.generations.append(generation)
        conversation.updated_at = generation.timestamp
        self._persist(conversation)
        return generation

    def update_latest_response(
        self,
        conversation_id: str,
        response: str,
        cached_tokens: int | None = None,
    ) -> None:
        """Replace the response of the last generation; no-op if there is none."""
        conversation = self.get(conversation_id)
        if conversation is None or not conversation.generations:
            return
        latest = conversation.generations[-1]
        latest.response = response
        if cached_tokens is not None:
            latest.cached_tokens = cached_tokens
        conversation.updated_at = self.clock()

        last = self._last_persist.get(conversation_id)
        if last is None or self.clock() - last >= self.throttle_ms:
            self._persist(conversation)

    def store_examples(self, conversation_id: str, examples: list[ExampleDocument]) -> None:
        """Keep the examples a conversation was generated with, for later regeneration."""
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        conversation.examples = list(examples)
        if self.kv is None:
            return
        try:
            self.kv.set(examples_key(conversation.script_id), serialize_examples(conversation.examples))
        except Exception:
            logger.exception("Failed to persist examples for %s", conversation_id)

    def flush(self, conversation_id: str) -> None:
        conversation = self.get(conversation_id)
        if conversation is not None:
            self._persist(conversation)

    def delete_conversation(self, conversation_id: str) -> None:
        conversation = self._conversations.pop(conversation_id, None)
        self._last_persist.pop(conversation_id, None)
        if conversation is None or self.kv is None:
            return
        try:
            self.kv.delete(conversation_key(conversation.script_id))
            self.kv.delete(examples_key(conversation.script_id))
        except Exception:
            logger.exception("Failed to delete conversation %s", conversation_id)

    # -- persistence --------------------------------------------------------

    def _persist(self, conversation: Conversation) -> None:
        self._last_persist[conversation.id] = self.clock()
        if self.kv is None:
            return
        try:
            self.kv.set(conversation_key(conversation.script_id), serialize_conversation(conversation))
        except Exception:
            logger.exception("Failed to persist conversation %s", conversation.id)

    def load_all(self) -> int:
        """Load every stored conversation record. Returns the number loaded."""
        if self.kv is None:
            return 0
        loaded = 0
        for key in self.kv.keys(CONVERSATION_KEY_PREFIX):
            try:
                conversation = parse_conversation(self.kv.get(key) or "")
            except Exception:
                logger.exception("Failed to load %s", key)
                continue
            if conversation is None:
                logger.warning("Skipping unreadable conversation record %s", key)
                continue
            conversation.examples = parse_examples(self.kv.get(examples_key(conversation.script_id)) or "")
            self._conversations[conversation.id] = conversation
            loaded += 1
        logger.debug("Loaded %d conversation(s)", loaded)
        return loaded

    def migrate_legacy(self) -> int:
        """Move the legacy JSON array into per-script records.

        Returns the number of conversations migrated. Without the legacy key
        this is a no-op returning 0.
        """
        if self.kv is None:
            return 0
        raw = self.kv.get(LEGACY_CONVERSATIONS_KEY)
        if raw is None:
            return 0
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Legacy conversation data is not valid JSON; leaving it in place")
            return 0

        records = migrate_legacy_conversations(entries)
        for key, text in records.items():
            self.kv.set(key, text)
        self.kv.delete(LEGACY_CONVERSATIONS_KEY)
        logger.info("Migrated %d legacy conversation(s)", len(records))
        return len(records)

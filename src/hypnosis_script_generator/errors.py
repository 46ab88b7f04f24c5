"""Exception types shared across the generation engine."""

from __future__ import annotations


class ScriptGeneratorError(Exception):
    """Base class for every error raised by the generator."""


class ConfigurationError(ScriptGeneratorError):
    """Configuration is missing or inconsistent."""


class ValidationError(ScriptGeneratorError):
    """A request is malformed; rejected immediately and never retried."""


class ConversationRequiredError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Conversation is required for generation")


class ConversationNotFoundError(ValidationError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class ParseError(ScriptGeneratorError):
    """Generated text could not be parsed into the expected structure."""


class OutlineParseError(ParseError):
    """The outline response has no title line or no sections."""


class GenerationAbortedError(ScriptGeneratorError):
    def __init__(self, message: str = "Generation aborted") -> None:
        super().__init__(message)


class UpstreamGenerationError(ScriptGeneratorError):
    """The generation provider failed (network, API or model error)."""

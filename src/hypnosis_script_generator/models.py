"""Pydantic models for the hypnosis script generator."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:9]}"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ScriptStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"


class SectionStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class GenerationPhase(str, Enum):
    IDLE = "idle"
    GENERATING_OUTLINE = "generating_outline"
    GENERATING_SECTION = "generating_section"
    COMPLETE = "complete"
    ERROR = "error"


class JobType(str, Enum):
    GENERATE_SCRIPT = "generate-script"
    REGENERATE_SECTION = "regenerate-section"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Scripts and conversations
# ---------------------------------------------------------------------------

class Script(BaseModel):
    """A user-visible script record."""
    id: str = Field(default_factory=lambda: new_id("script"))
    title: str = Field(default="Untitled")
    content: str = Field(default="", description="Markdown content")
    created_at: str = Field(default="", description="ISO-8601 creation timestamp")
    is_archived: bool = Field(default=False)
    tags: list[str] = Field(default_factory=list)
    status: ScriptStatus = Field(default=ScriptStatus.DRAFT)
    length: str = Field(default="", description="Display length, e.g. '1,234 words'")
    comments: int = Field(default=0)
    conversation_id: str | None = Field(default=None)
    initial_prompt: str | None = Field(default=None)
    provider: str | None = Field(default=None)
    model: str | None = Field(default=None)


class ChatMessage(BaseModel):
    role: ChatRole
    content: str


class Generation(BaseModel):
    """One LLM call: the messages it introduced and the response received."""
    messages: list[ChatMessage] = Field(default_factory=list)
    response: str = Field(default="")
    cached_tokens: int | None = Field(default=None)
    timestamp: int = Field(default_factory=now_ms)


class ExampleDocument(BaseModel):
    """Reference script returned by example retrieval."""
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float | None = None


class Conversation(BaseModel):
    """Complete exchange history for one script."""
    id: str = Field(default_factory=lambda: new_id("conv"))
    script_id: str
    generations: list[Generation] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    # Examples retrieved for the initial generation, reused for regeneration
    examples: list[ExampleDocument] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsed views
# ---------------------------------------------------------------------------

class OutlineSection(BaseModel):
    title: str
    description: str = ""


class ScriptOutline(BaseModel):
    """Title plus ordered section stubs produced by the outline call."""
    title: str
    sections: list[OutlineSection] = Field(default_factory=list)


class ParsedSection(BaseModel):
    title: str
    content: str
    word_count: int
    start_line: int
    end_line: int


class ParsedDocument(BaseModel):
    title: str | None = None
    sections: list[ParsedSection] = Field(default_factory=list)
    total_word_count: int = 0


class ConversationSection(BaseModel):
    """Section view derived from the latest generation; never stored."""
    id: str
    title: str
    content: str = ""
    status: SectionStatus = SectionStatus.PENDING
    word_count: int = 0


# ---------------------------------------------------------------------------
# Regeneration policy
# ---------------------------------------------------------------------------

class RegenerationRules(BaseModel):
    minimum_word_count: int = Field(default=400, description="Sections below this are regenerated")
    max_auto_regeneration_attempts: int = Field(default=3)
    regeneration_cooldown_ms: int = Field(default=30000)


class SectionRegenerationState(BaseModel):
    section_key: str = Field(..., description="'scriptId:sectionId'")
    attempts: int = 0
    last_regeneration_time: int = 0
    is_in_cooldown: bool = False
    next_eligible_time: int = 0


class SectionAnalysis(BaseModel):
    section_id: str
    section_title: str
    word_count: int
    needs_regeneration: bool
    reason: str
    attempts: int
    is_in_cooldown: bool
    cooldown_remaining_s: int = 0


class RegenerationStats(BaseModel):
    total_attempts: int = 0
    sections_tracked: int = 0
    average_attempts: float = 0.0
    sections_in_cooldown: int = 0
    sections_exceeding_max: int = 0
    total_regenerations_requested: int = 0
    last_analysis_time: int = 0


class RegenerationState(BaseModel):
    """Persisted state of the regeneration policy."""
    rules: RegenerationRules = Field(default_factory=RegenerationRules)
    section_states: dict[str, SectionRegenerationState] = Field(default_factory=dict)
    last_analysis_time: int = 0
    total_regenerations_requested: int = 0


# ---------------------------------------------------------------------------
# Jobs and requests
# ---------------------------------------------------------------------------

class Job(BaseModel):
    """A queued generation request shared through the job queue."""
    id: str = Field(default_factory=lambda: new_id("job"))
    type: JobType
    status: JobStatus = JobStatus.QUEUED
    script_id: str
    title: str = ""
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    prompt: str = ""
    conversation_id: str | None = None
    section_id: str | None = None
    section_title: str | None = None
    error: str | None = None
    progress: float | None = None

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.QUEUED, JobStatus.PROCESSING)


class GenerationRequest(BaseModel):
    prompt: str
    conversation_id: str | None = None


class SectionRegenerationRequest(BaseModel):
    prompt: str
    conversation_id: str
    section_title: str
    section_id: str | None = None


class GenerationProgress(BaseModel):
    """Observable state of one conversation's generation run."""
    conversation_id: str
    phase: GenerationPhase = GenerationPhase.IDLE
    section_index: int | None = None
    total_sections: int = 0
    section_title: str | None = None
    section_word_counts: list[int] = Field(default_factory=list)
    content: str = ""
    error: str | None = None
    aborted: bool = False
    is_complete: bool = False


# ---------------------------------------------------------------------------
# Project Configuration (loaded from YAML)
# ---------------------------------------------------------------------------

class ProviderConfig(BaseModel):
    """Generation provider selection and credentials."""
    kind: str = Field(default="mock", description="'mock', 'openai', 'openrouter', 'azure' or 'ag2'")
    api_key: str = Field(default="", description="API key (or ${ENV_VAR})")
    base_url: str = Field(default="", description="Override endpoint URL")
    api_version: str = Field(default="", description="Azure API version")


class ModelConfig(BaseModel):
    """Model name per generation step."""
    default: str = Field(default="gpt-5-mini")
    outline: str | None = Field(default=None)
    section: str | None = Field(default=None)
    regeneration: str | None = Field(default=None)


class ContextConfig(BaseModel):
    """Context-window budget used to size the example set."""
    max_context_window: int = Field(default=120000)
    reserved_tokens: int = Field(default=20000)
    average_example_tokens: int = Field(default=4000)
    min_examples: int = Field(default=3)
    max_examples: int = Field(default=20)


class StorageConfig(BaseModel):
    data_dir: str = Field(default="data/", description="Directory for persisted records")
    persist_throttle_ms: int = Field(default=1000, description="Min interval between streaming saves")


class ProjectConfig(BaseModel):
    """Full project configuration loaded from config.yaml."""
    project_name: str = Field(default="hypnosis-scripts")
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    regeneration: RegenerationRules = Field(default_factory=RegenerationRules)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    examples_dir: str | None = Field(default=None, description="Directory of example .md scripts")
    timeout: int = Field(default=120, description="LLM call timeout in seconds")
    seed: int = Field(default=42, description="LLM seed for the AG2 provider")
    temperature: float | None = Field(default=None)

"""Application service: wires storage, queue, policy and orchestrator together.

A request enters ``ScriptStudio`` and becomes a job on the shared queue.
``run_next_job`` hands the oldest queued job to the orchestrator; when a job
finishes, the script record is refreshed and the regeneration policy may
enqueue one follow-up regeneration.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

from .conversation_store import ConversationStore
from .errors import (
    ConversationNotFoundError,
    GenerationAbortedError,
    ScriptGeneratorError,
    ValidationError,
)
from .examples import ExampleLibrary, ExampleRetriever
from .job_queue import JobQueue
from .logging_config import GenerationCallbacks
from .models import (
    ConversationSection,
    GenerationRequest,
    Job,
    JobStatus,
    JobType,
    ProjectConfig,
    Script,
    ScriptStatus,
    SectionAnalysis,
    SectionRegenerationRequest,
)
from .orchestrator import ScriptGenerationOrchestrator
from .providers import GenerationProvider, make_generation_provider
from .regeneration import RegenerationPolicy
from .storage import FileKeyValueStore, KeyValueStore
from .tools.conversation_codec import SCRIPT_KEY_PREFIX, parse_script, script_key, serialize_script
from .tools.document_parser import count_words, derive_sections, extract_title

logger = logging.getLogger(__name__)


def format_length(words: int) -> str:
    return f"{words:,} words"


class ScriptStudio:
    """Creates scripts, queues generation work and runs it."""

    def __init__(
        self,
        config: ProjectConfig,
        config_dir: Path | None = None,
        *,
        kv: KeyValueStore | None = None,
        provider: GenerationProvider | None = None,
        retriever: ExampleRetriever | None = None,
        callbacks: GenerationCallbacks | None = None,
    ) -> None:
        self.config = config
        self.config_dir = config_dir or Path(".")
        self.kv = kv if kv is not None else FileKeyValueStore(self.config_dir / config.storage.data_dir)

        if retriever is None:
            examples_dir = (self.config_dir / config.examples_dir) if config.examples_dir else None
            retriever = ExampleLibrary(examples_dir)

        self.store = ConversationStore(self.kv, throttle_ms=config.storage.persist_throttle_ms)
        self.job_queue = JobQueue(self.kv)
        self.policy = RegenerationPolicy(config.regeneration, job_queue=self.job_queue, kv=self.kv)
        self.provider = provider or make_generation_provider(config)
        self.orchestrator = ScriptGenerationOrchestrator(
            self.provider,
            self.store,
            retriever=retriever,
            callbacks=callbacks,
            context=config.context,
            min_words=config.regeneration.minimum_word_count,
        )

    def startup(self) -> int:
        """Migrate legacy records and load stored conversations. Returns the count loaded."""
        self.store.migrate_legacy()
        return self.store.load_all()

    # -----------------------------------------------------------------------
    # Script records
    # -----------------------------------------------------------------------

    def save_script(self, script: Script) -> None:
        try:
            self.kv.set(script_key(script.id), serialize_script(script))
        except Exception:
            logger.exception("Failed to persist script %s", script.id)

    def get_script(self, script_id: str) -> Script | None:
        return parse_script(self.kv.get(script_key(script_id)) or "")

    def list_scripts(self) -> list[Script]:
        scripts = [self.get_script(key[len(SCRIPT_KEY_PREFIX):]) for key in self.kv.keys(SCRIPT_KEY_PREFIX)]
        return sorted((s for s in scripts if s is not None), key=lambda s: s.created_at)

    def delete_script(self, script_id: str) -> None:
        conversation = self.store.get_by_script_id(script_id)
        if conversation is not None:
            self.store.delete_conversation(conversation.id)
        self.kv.delete(script_key(script_id))
        for job in self.job_queue.get_jobs():
            if job.script_id == script_id:
                self.job_queue.remove_job(job.id)
        logger.info("Deleted script %s", script_id)

    # -----------------------------------------------------------------------
    # Requests
    # -----------------------------------------------------------------------

    def create_script(self, prompt: str, *, tags: list[str] | None = None) -> tuple[Script, Job]:
        """Create a draft script with its conversation and queue its generation."""
        script = Script(
            created_at=datetime.now(timezone.utc).isoformat(),
            tags=tags or [],
            status=ScriptStatus.IN_PROGRESS,
            initial_prompt=prompt,
            provider=self.config.provider.kind,
            model=self.config.models.default,
        )
        conversation = self.store.create_conversation(script.id)
        script.conversation_id = conversation.id
        self.save_script(script)

        job = self.job_queue.add_job(Job(
            type=JobType.GENERATE_SCRIPT,
            script_id=script.id,
            title=f"Generate: {prompt[:60]}",
            prompt=prompt,
            conversation_id=conversation.id,
        ))
        logger.info("Created script %s (job %s)", script.id, job.id)
        return script, job

    def sections(self, script_id: str) -> list[ConversationSection]:
        conversation = self.store.get_by_script_id(script_id)
        if conversation is None:
            return []
        return derive_sections(self.store.get_latest_response(conversation.id))

    def request_manual_regeneration(self, script_id: str, section_title: str) -> Job:
        conversation = self.store.get_by_script_id(script_id)
        if conversation is None:
            raise ConversationNotFoundError(script_id)
        for section in self.sections(script_id):
            if section.title == section_title:
                return self.policy.request_manual_regeneration(
                    script_id, section.id, section.title, conversation.id,
                )
        raise ValidationError(f"Section {section_title!r} not found in script {script_id}")

    def analyze(self, script_id: str) -> list[SectionAnalysis]:
        return self.policy.analyze_sections(self.sections(script_id), script_id, self.job_queue.get_jobs())

    # -----------------------------------------------------------------------
    # Job runner
    # -----------------------------------------------------------------------

    async def run_job(self, job: Job, abort: asyncio.Event | None = None) -> Job | None:
        conversation = self.store.get(job.conversation_id) if job.conversation_id else None
        self.job_queue.update_job(job.id, status=JobStatus.PROCESSING)
        try:
            if job.type == JobType.GENERATE_SCRIPT:
                await self.orchestrator.generate_script(
                    GenerationRequest(prompt=job.prompt, conversation_id=job.conversation_id),
                    conversation,
                    abort,
                )
            else:
                await self.orchestrator.regenerate_section(
                    SectionRegenerationRequest(
                        prompt=job.prompt,
                        conversation_id=job.conversation_id or "",
                        section_title=job.section_title or "",
                        section_id=job.section_id,
                    ),
                    conversation,
                    abort,
                )
        except GenerationAbortedError:
            return self.job_queue.update_job(job.id, status=JobStatus.FAILED, error="Generation aborted")
        except ScriptGeneratorError as e:
            return self.job_queue.update_job(job.id, status=JobStatus.FAILED, error=str(e))

        finished = self.job_queue.update_job(job.id, status=JobStatus.COMPLETED, progress=1.0)
        self._on_job_complete(job.script_id)
        return finished

    def _on_job_complete(self, script_id: str) -> None:
        conversation = self.store.get_by_script_id(script_id)
        if conversation is None:
            return
        content = self.store.get_latest_response(conversation.id)
        script = self.get_script(script_id)
        if script is not None:
            script.title = extract_title(content) or script.title
            script.content = content
            script.status = ScriptStatus.COMPLETE
            script.length = format_length(count_words(content))
            self.save_script(script)

        self.policy.handle_auto_regeneration_check(
            conversation, derive_sections(content), self.job_queue.get_jobs(),
        )

    async def run_next_job(self, abort: asyncio.Event | None = None) -> Job | None:
        job = self.job_queue.next_queued()
        if job is None:
            return None
        logger.info("Running job %s: %s", job.id, job.title)
        return await self.run_job(job, abort)

    async def run_until_idle(self, abort: asyncio.Event | None = None) -> list[Job]:
        """Run queued jobs, including follow-up regenerations, until none remain."""
        finished: list[Job] = []
        while not (abort is not None and abort.is_set()):
            job = await self.run_next_job(abort)
            if job is None:
                break
            finished.append(job)
        return finished

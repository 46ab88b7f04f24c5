"""Regeneration policy: decide when a finished section must be rewritten.

A section is queued for automatic regeneration when it is complete but
shorter than ``minimum_word_count``, subject to a per-section attempt limit
and cooldown. Only the earliest deficient section is queued per pass; the
completion of that job triggers the next pass.

Per-section state is keyed ``"<scriptId>:<sectionId>"`` and is owned
exclusively by this module.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable

from .job_queue import JobQueue
from .models import (
    Conversation,
    ConversationSection,
    Job,
    JobStatus,
    JobType,
    RegenerationRules,
    RegenerationState,
    RegenerationStats,
    SectionAnalysis,
    SectionRegenerationState,
    SectionStatus,
    now_ms,
)
from .prompts import section_regeneration_prompt
from .storage import KeyValueStore
from .tools.document_parser import count_words

logger = logging.getLogger(__name__)

REGENERATION_STATE_KEY = "regeneration_state"


def section_key(script_id: str, section_id: str) -> str:
    return f"{script_id}:{section_id}"


class RegenerationPolicy:
    """Analyzes sections and enqueues regeneration jobs."""

    def __init__(
        self,
        rules: RegenerationRules | None = None,
        *,
        job_queue: JobQueue | None = None,
        kv: KeyValueStore | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.job_queue = job_queue
        self.kv = kv
        self.clock = clock
        self.state = self._load()
        if rules is not None:
            self.state.rules = rules.model_copy()

    @property
    def rules(self) -> RegenerationRules:
        return self.state.rules

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def _load(self) -> RegenerationState:
        if self.kv is None:
            return RegenerationState()
        raw = self.kv.get(REGENERATION_STATE_KEY)
        if not raw:
            return RegenerationState()
        try:
            return RegenerationState.model_validate_json(raw)
        except ValueError as e:
            logger.error("Regeneration state is unreadable, starting fresh: %s", e)
            return RegenerationState()

    def _save(self) -> None:
        if self.kv is None:
            return
        try:
            self.kv.set(REGENERATION_STATE_KEY, self.state.model_dump_json(indent=2))
        except Exception:
            logger.exception("Failed to persist regeneration state")

    # -----------------------------------------------------------------------
    # Section state transitions
    # -----------------------------------------------------------------------

    def get_section_state(self, key: str) -> SectionRegenerationState:
        """State for *key*, or a fresh default (not stored)."""
        return self.state.section_states.get(key) or SectionRegenerationState(section_key=key)

    def _ensure(self, key: str) -> SectionRegenerationState:
        if key not in self.state.section_states:
            self.state.section_states[key] = SectionRegenerationState(section_key=key)
        return self.state.section_states[key]

    def record_attempt(self, key: str, *, now: int | None = None, manual: bool = False) -> SectionRegenerationState:
        """Count an attempt and start the cooldown. Manual attempts reset the count to 1."""
        now = self.clock() if now is None else now
        state = self._ensure(key)
        state.attempts = 1 if manual else state.attempts + 1
        state.last_regeneration_time = now
        state.is_in_cooldown = True
        state.next_eligible_time = now + self.rules.regeneration_cooldown_ms
        self.state.total_regenerations_requested += 1
        self._save()
        return state

    def reset_attempts(self, key: str, reason: str = "manual_request", *, now: int | None = None) -> None:
        state = self.state.section_states.get(key)
        if state is None:
            return
        state.attempts = 0
        if reason == "manual_request":
            state.last_regeneration_time = self.clock() if now is None else now
        logger.debug("Attempts reset for %s (%s)", key, reason)
        self._save()

    def start_cooldown(self, key: str, duration_ms: int | None = None, *, now: int | None = None) -> None:
        now = self.clock() if now is None else now
        state = self._ensure(key)
        state.is_in_cooldown = True
        state.next_eligible_time = now + (self.rules.regeneration_cooldown_ms if duration_ms is None else duration_ms)
        self._save()

    def update_rules(self, **changes: Any) -> RegenerationRules:
        self.state.rules = self.rules.model_copy(update=changes)
        logger.info("Regeneration rules updated: %s", changes)
        self._save()
        return self.state.rules

    def clear_tracking_data(self) -> None:
        self.state = RegenerationState(rules=self.rules)
        self._save()

    # -----------------------------------------------------------------------
    # Analysis
    # -----------------------------------------------------------------------

    def analyze_section(
        self,
        section: ConversationSection,
        script_id: str,
        existing_jobs: list[Job],
        now: int | None = None,
    ) -> SectionAnalysis:
        """Decide whether *section* needs an automatic regeneration.

        Checks run in order and the first match wins: an active job for the
        section, the attempt limit, the cooldown, completion status, and
        finally the word count.
        """
        now = self.clock() if now is None else now
        rules = self.rules
        key = section_key(script_id, section.id)
        state = self.get_section_state(key)
        word_count = count_words(section.content)
        in_cooldown = state.next_eligible_time > now
        remaining_s = math.ceil(max(0, state.next_eligible_time - now) / 1000)

        has_job = any(
            job.type == JobType.REGENERATE_SECTION
            and job.script_id == script_id
            and job.section_id == section.id
            and job.status in (JobStatus.QUEUED, JobStatus.PROCESSING)
            for job in existing_jobs
        )

        needs = False
        if has_job:
            reason = "Regeneration already in progress"
        elif state.attempts >= rules.max_auto_regeneration_attempts:
            reason = f"Exceeded max attempts ({state.attempts}/{rules.max_auto_regeneration_attempts})"
        elif in_cooldown:
            reason = f"In cooldown ({remaining_s}s remaining)"
        elif section.status != SectionStatus.COMPLETED:
            reason = "Section not yet completed"
        elif word_count >= rules.minimum_word_count:
            reason = f"Meets requirement of {rules.minimum_word_count} words"
        else:
            needs = True
            reason = f"Below minimum word count ({word_count}/{rules.minimum_word_count})"

        return SectionAnalysis(
            section_id=section.id,
            section_title=section.title,
            word_count=word_count,
            needs_regeneration=needs,
            reason=reason,
            attempts=state.attempts,
            is_in_cooldown=in_cooldown,
            cooldown_remaining_s=remaining_s if in_cooldown else 0,
        )

    def analyze_sections(
        self,
        sections: list[ConversationSection],
        script_id: str,
        existing_jobs: list[Job],
        now: int | None = None,
    ) -> list[SectionAnalysis]:
        """Analyze every section, initializing and refreshing per-section state.

        Refreshing only recomputes ``is_in_cooldown``; attempts and
        timestamps are left untouched.
        """
        now = self.clock() if now is None else now
        for section in sections:
            state = self._ensure(section_key(script_id, section.id))
            state.is_in_cooldown = state.next_eligible_time > now
        self.state.last_analysis_time = now
        self._save()
        return [self.analyze_section(s, script_id, existing_jobs, now) for s in sections]

    # -----------------------------------------------------------------------
    # Requests
    # -----------------------------------------------------------------------

    def _publish(self, job: Job) -> Job:
        if self.job_queue is not None:
            self.job_queue.add_job(job)
        return job

    def _regeneration_job(
        self,
        script_id: str,
        section_id: str,
        section_title: str,
        conversation_id: str,
    ) -> Job:
        return Job(
            type=JobType.REGENERATE_SECTION,
            script_id=script_id,
            title=f"Regenerate: {section_title}",
            prompt=section_regeneration_prompt(section_title, self.rules.minimum_word_count),
            conversation_id=conversation_id,
            section_id=section_id,
            section_title=section_title,
        )

    def request_regenerations(
        self,
        conversation: Conversation,
        sections: list[ConversationSection],
        analyses: list[SectionAnalysis],
        now: int | None = None,
    ) -> Job | None:
        """Enqueue the earliest section (by document order) that needs regeneration.

        At most one job is enqueued per call.
        """
        position = {s.id: i for i, s in enumerate(sections)}
        pending = sorted(
            (a for a in analyses if a.needs_regeneration),
            key=lambda a: position.get(a.section_id, len(sections)),
        )
        if not pending:
            return None

        first = pending[0]
        self.record_attempt(section_key(conversation.script_id, first.section_id), now=now)
        logger.info(
            "Queueing regeneration of %r (%d words, attempt %d); %d more pending",
            first.section_title, first.word_count, first.attempts + 1, len(pending) - 1,
        )
        return self._publish(self._regeneration_job(
            conversation.script_id, first.section_id, first.section_title, conversation.id,
        ))

    def request_manual_regeneration(
        self,
        script_id: str,
        section_id: str,
        section_title: str,
        conversation_id: str,
        now: int | None = None,
    ) -> Job:
        """Always enqueue, ignoring cooldown and the attempt limit."""
        key = section_key(script_id, section_id)
        self.reset_attempts(key, "manual_request", now=now)
        self.record_attempt(key, now=now, manual=True)
        logger.info("Manual regeneration requested for %r", section_title)
        return self._publish(self._regeneration_job(script_id, section_id, section_title, conversation_id))

    def handle_auto_regeneration_check(
        self,
        conversation: Conversation,
        sections: list[ConversationSection],
        existing_jobs: list[Job],
        now: int | None = None,
    ) -> Job | None:
        analyses = self.analyze_sections(sections, conversation.script_id, existing_jobs, now)
        for a in analyses:
            logger.debug("  %s: %s", a.section_title, a.reason)
        return self.request_regenerations(conversation, sections, analyses, now)

    def stats(self) -> RegenerationStats:
        states = list(self.state.section_states.values())
        total = sum(s.attempts for s in states)
        return RegenerationStats(
            total_attempts=total,
            sections_tracked=len(states),
            average_attempts=(total / len(states)) if states else 0.0,
            sections_in_cooldown=sum(1 for s in states if s.is_in_cooldown),
            sections_exceeding_max=sum(
                1 for s in states if s.attempts >= self.rules.max_auto_regeneration_attempts
            ),
            total_regenerations_requested=self.state.total_regenerations_requested,
            last_analysis_time=self.state.last_analysis_time,
        )

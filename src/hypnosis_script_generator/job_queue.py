"""Shared job list with change notifications.

The list lives in the key-value store under ``job-queue`` so separate
processes see each other's jobs. Writes are last-writer-wins with no
check-and-set, so readers must treat the list as eventually consistent.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from .models import Job, JobStatus, now_ms
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

JOB_QUEUE_KEY = "job-queue"

JobListener = Callable[[list[Job]], None]


class JobQueue:
    def __init__(self, kv: KeyValueStore | None = None):
        self.kv = kv
        self._jobs: list[Job] = []
        self._listeners: list[JobListener] = []

    # -- storage ------------------------------------------------------------

    def _load(self) -> list[Job]:
        if self.kv is None:
            return [job.model_copy() for job in self._jobs]
        raw = self.kv.get(JOB_QUEUE_KEY)
        if not raw:
            return []
        try:
            return [Job.model_validate(item) for item in json.loads(raw)]
        except (json.JSONDecodeError, ValueError) as e:
            logger.error("Job queue data is unreadable, starting empty: %s", e)
            return []

    def _save(self, jobs: list[Job]) -> None:
        self._jobs = jobs
        if self.kv is not None:
            try:
                self.kv.set(JOB_QUEUE_KEY, json.dumps([j.model_dump(mode="json") for j in jobs], indent=2))
            except Exception:
                logger.exception("Failed to persist job queue")
        for listener in list(self._listeners):
            listener([job.model_copy() for job in jobs])

    # -- public API ---------------------------------------------------------

    def get_jobs(self) -> list[Job]:
        return self._load()

    def add_job(self, job: Job) -> Job:
        jobs = self._load()
        jobs.append(job)
        self._save(jobs)
        logger.debug("Job added: %s (%s)", job.id, job.type.value)
        return job

    def update_job(self, job_id: str, **updates: Any) -> Job | None:
        jobs = self._load()
        for i, job in enumerate(jobs):
            if job.id == job_id:
                jobs[i] = job.model_copy(update={**updates, "updated_at": now_ms()})
                self._save(jobs)
                return jobs[i]
        logger.warning("update_job: unknown job %s", job_id)
        return None

    def remove_job(self, job_id: str) -> None:
        self._save([job for job in self._load() if job.id != job_id])

    def clear_completed_jobs(self) -> int:
        """Drop completed and failed jobs. Returns how many were removed."""
        jobs = self._load()
        active = [job for job in jobs if job.status not in (JobStatus.COMPLETED, JobStatus.FAILED)]
        self._save(active)
        return len(jobs) - len(active)

    def next_queued(self) -> Job | None:
        queued = [job for job in self._load() if job.status == JobStatus.QUEUED]
        return min(queued, key=lambda j: j.created_at) if queued else None

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Register *listener* for job-list changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

"""
Job registry — the store of in-flight and recently finished jobs.

The orchestrator talks to the JobRegistry interface only, so the in-memory
store below can be swapped for a shared one without touching orchestration.

Guarantees of InMemoryJobRegistry:
  - create_if_absent() is one critical section: two callers with the same
    fingerprint never both get created=True while the job is non-terminal.
  - update() rejects status regressions.
  - Readers always get deep-copied snapshots, never the live record.
  - Terminal jobs are kept until observed once (plus a grace period) or until
    the retention window elapses; non-terminal jobs are never pruned.
"""

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable
from uuid import uuid4

from .errors import FatalError, JobNotFoundError
from .models import Job, JobKind, is_forward_transition, utcnow

logger = logging.getLogger(__name__)

JOB_RETENTION_SECONDS = 3600      # 1 hour max for any terminal job
OBSERVED_GRACE_SECONDS = 60       # observed terminal jobs linger this long
MAX_RETAINED_JOBS = 1000


class JobRegistry(ABC):
    @abstractmethod
    async def create_if_absent(self, fingerprint: str, kind: JobKind) -> tuple[Job, bool]:
        """Return the live job for `fingerprint`, or create one. Atomic."""

    @abstractmethod
    async def register(self, job: Job) -> Job:
        """Store an already-built job (used for cache pseudo-jobs)."""

    @abstractmethod
    async def get(self, job_id: str, observe: bool = True) -> Job:
        """Snapshot of a job. Raises JobNotFoundError."""

    @abstractmethod
    async def update(self, job_id: str, mutator: Callable[[Job], None]) -> Job:
        """Apply `mutator` to the job record and return the new snapshot."""

    @abstractmethod
    async def wait(self, job_id: str) -> Job:
        """Wait until the job is terminal and return its snapshot."""

    @abstractmethod
    async def evict(self, job_id: str) -> None:
        """Drop a job."""

    @abstractmethod
    async def prune(self) -> int:
        """Drop expired terminal jobs. Returns how many were dropped."""


class InMemoryJobRegistry(JobRegistry):
    """Process-local registry. State is lost on restart."""

    def __init__(
        self,
        retention_seconds: float = JOB_RETENTION_SECONDS,
        observed_grace_seconds: float = OBSERVED_GRACE_SECONDS,
        max_jobs: int = MAX_RETAINED_JOBS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._retention = retention_seconds
        self._grace = observed_grace_seconds
        self._max_jobs = max_jobs
        self._clock = clock

        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._by_fingerprint: dict[str, str] = {}
        self._events: dict[str, asyncio.Event] = {}
        self._finished_at: dict[str, float] = {}
        self._observed: set[str] = set()

    # ── Create ───────────────────────────────────────────────────────────

    async def create_if_absent(self, fingerprint: str, kind: JobKind) -> tuple[Job, bool]:
        with self._lock:
            existing_id = self._by_fingerprint.get(fingerprint)
            existing = self._jobs.get(existing_id) if existing_id else None
            if existing is not None and not existing.status.is_terminal:
                return existing.model_copy(deep=True), False

            job = Job(id=uuid4().hex, fingerprint=fingerprint, kind=kind)
            self._insert(job)
            return job.model_copy(deep=True), True

    async def register(self, job: Job) -> Job:
        with self._lock:
            current = self._jobs.get(job.id)
            if current is not None:
                return current.model_copy(deep=True)
            record = job.model_copy(deep=True)
            self._insert(record)
            if record.status.is_terminal:
                self._mark_finished(record.id)
            return record.model_copy(deep=True)

    def _insert(self, job: Job) -> None:
        self._jobs[job.id] = job
        if not job.status.is_terminal:
            self._by_fingerprint[job.fingerprint] = job.id
        self._events[job.id] = asyncio.Event()

    # ── Read ─────────────────────────────────────────────────────────────

    async def get(self, job_id: str, observe: bool = True) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if observe and job.status.is_terminal:
                self._observed.add(job_id)
            return job.model_copy(deep=True)

    async def wait(self, job_id: str) -> Job:
        with self._lock:
            event = self._events.get(job_id)
            if event is None:
                raise JobNotFoundError(job_id)
        await event.wait()
        return await self.get(job_id)

    # ── Write ────────────────────────────────────────────────────────────

    async def update(self, job_id: str, mutator: Callable[[Job], None]) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            draft = job.model_copy(deep=True)
            mutator(draft)
            if not is_forward_transition(job.status, draft.status):
                raise FatalError(
                    f"Illegal status transition for job {job_id}: "
                    f"{job.status.value} → {draft.status.value}"
                )
            draft.updated_at = utcnow()
            self._jobs[job_id] = draft

            if draft.status.is_terminal and not job.status.is_terminal:
                if self._by_fingerprint.get(draft.fingerprint) == job_id:
                    del self._by_fingerprint[draft.fingerprint]
                self._mark_finished(job_id)

            return draft.model_copy(deep=True)

    def _mark_finished(self, job_id: str) -> None:
        self._finished_at[job_id] = self._clock()
        event = self._events.get(job_id)
        if event is not None:
            event.set()

    # ── Eviction ─────────────────────────────────────────────────────────

    async def evict(self, job_id: str) -> None:
        with self._lock:
            self._drop(job_id)

    def _drop(self, job_id: str) -> None:
        job = self._jobs.pop(job_id, None)
        if job is not None and self._by_fingerprint.get(job.fingerprint) == job_id:
            del self._by_fingerprint[job.fingerprint]
        self._events.pop(job_id, None)
        self._finished_at.pop(job_id, None)
        self._observed.discard(job_id)

    async def prune(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                job_id
                for job_id, finished in self._finished_at.items()
                if now - finished >= self._retention
                or (job_id in self._observed and now - finished >= self._grace)
            ]
            for job_id in expired:
                self._drop(job_id)

            # Size bound: oldest terminal jobs go first
            overflow = len(self._jobs) - self._max_jobs
            if overflow > 0:
                oldest = sorted(self._finished_at, key=self._finished_at.get)[:overflow]
                for job_id in oldest:
                    self._drop(job_id)
                expired.extend(oldest)

        if expired:
            logger.info(f"Pruned {len(expired)} finished job(s) from registry")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if not job.status.is_terminal)

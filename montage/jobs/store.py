"""Render job storage.

``JobStore`` is the seam between the job manager and wherever records live.
``InMemoryJobStore`` keeps them in a dict guarded by a lock and drops jobs
a fixed time after they reach a terminal status. Records do not survive a
process restart.
"""

import dataclasses
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from montage.exceptions import InvalidJobTransitionError, JobNotFoundError
from montage.jobs.models import ALLOWED_TRANSITIONS, JobStatus, RenderJob, utcnow

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Keyed storage of render job snapshots."""

    @abstractmethod
    def create(self, job: RenderJob) -> RenderJob:
        """Insert a new job. Raises ValueError if the id already exists."""

    @abstractmethod
    def get(self, job_id: str) -> RenderJob | None:
        """Current snapshot, or None if unknown or expired."""

    @abstractmethod
    def update(
        self,
        job_id: str,
        *,
        status: JobStatus | None = None,
        progress: int | None = None,
        **fields: Any,
    ) -> RenderJob:
        """Atomically apply a partial update and return the new snapshot.

        Raises:
            JobNotFoundError: Unknown or expired job
            InvalidJobTransitionError: Status change not allowed, or any
                update to a job that is already terminal
        """

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop expired terminal jobs and return how many were removed."""


def _apply_update(
    current: RenderJob,
    status: JobStatus | None,
    progress: int | None,
    fields: dict[str, Any],
) -> RenderJob:
    if current.is_terminal:
        requested = status.value if status else "update"
        raise InvalidJobTransitionError(current.id, current.status.value, requested)

    changes = dict(fields)
    if status is not None and status != current.status:
        if status not in ALLOWED_TRANSITIONS.get(current.status, frozenset()):
            raise InvalidJobTransitionError(current.id, current.status.value, status.value)
        changes["status"] = status
        if status.is_terminal and "finished_at" not in changes:
            changes["finished_at"] = utcnow()

    if progress is not None:
        # Progress never moves backwards
        changes["progress"] = max(current.progress, min(100, max(0, int(progress))))

    return dataclasses.replace(current, **changes)


class InMemoryJobStore(JobStore):
    """Thread-safe in-memory store with TTL-based expiration of finished jobs."""

    def __init__(
        self,
        retention_s: float | None = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs: dict[str, RenderJob] = {}
        self._finished: dict[str, float] = {}
        self._lock = threading.Lock()
        self._retention_s = retention_s or None
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _expired(self, job_id: str, now: float) -> bool:
        finished = self._finished.get(job_id)
        return (
            self._retention_s is not None
            and finished is not None
            and now - finished > self._retention_s
        )

    def _drop(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._finished.pop(job_id, None)

    def create(self, job: RenderJob) -> RenderJob:
        with self._lock:
            self._cleanup_expired()
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = job
            if job.is_terminal:
                self._finished[job.id] = self._clock()
            return job

    def get(self, job_id: str) -> RenderJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if self._expired(job_id, self._clock()):
                self._drop(job_id)
                return None
            return job

    def update(
        self,
        job_id: str,
        *,
        status: JobStatus | None = None,
        progress: int | None = None,
        **fields: Any,
    ) -> RenderJob:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None or self._expired(job_id, self._clock()):
                self._drop(job_id)
                raise JobNotFoundError(job_id)

            updated = _apply_update(current, status, progress, fields)
            self._jobs[job_id] = updated
            if updated.is_terminal:
                self._finished[job_id] = self._clock()
            return updated

    def purge_expired(self) -> int:
        with self._lock:
            return self._cleanup_expired()

    def _cleanup_expired(self) -> int:
        """Remove expired entries (called under lock)."""
        now = self._clock()
        expired = [job_id for job_id in self._finished if self._expired(job_id, now)]
        for job_id in expired:
            self._drop(job_id)
        if expired:
            logger.debug(f"[JOB] Purged {len(expired)} expired render jobs")
        return len(expired)

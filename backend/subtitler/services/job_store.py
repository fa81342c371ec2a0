"""In-memory job progress table shared by the pipeline and the status endpoints."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from subtitler.core.constants import RUNNING_STATES, STAGE_PROGRESS, JobStatus

logger = logging.getLogger(__name__)


@dataclass
class Job:
    id: str
    client_key: str
    status: JobStatus = JobStatus.EXTRACTING
    progress: float = 0.0
    message: str = ""
    start_time: float = 0.0
    last_update: float = 0.0
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.status in RUNNING_STATES

    def to_status(self) -> dict[str, Any]:
        return {
            "jobId": self.id,
            "status": self.status.value,
            "progress": round(self.progress, 1),
            "message": self.message,
            "startTime": int(self.start_time * 1000),
            "lastUpdate": int(self.last_update * 1000),
            "metadata": dict(self.metadata),
        }


def not_found_status(job_id: str) -> dict[str, Any]:
    return {"jobId": job_id, "status": JobStatus.NOT_FOUND.value, "progress": 0, "message": "Job not found"}


class JobStore:
    """Job id -> :class:`Job`.

    Each job has one writer at a time (its pipeline). Mutations never await,
    so a reader always sees a whole update.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._jobs: dict[str, Job] = {}
        self._clock = clock

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self, job_id: str, client_key: str, message: str = "Queued") -> Job:
        now = self._clock()
        job = Job(id=job_id, client_key=client_key, message=message, start_time=now, last_update=now)
        self._jobs[job_id] = job
        logger.info("Job %s created for %s", job_id, client_key)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def _lookup(self, job_id: str, action: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning("Cannot %s job %s: no longer tracked", action, job_id)
        return job

    def snapshot(self, job_id: str) -> Optional[Job]:
        """Copy of the job, safe to serialize while the pipeline keeps writing."""
        job = self._jobs.get(job_id)
        return replace(job, metadata=dict(job.metadata)) if job else None

    def update(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[float] = None,
        message: Optional[str] = None,
        **metadata: Any,
    ) -> Optional[Job]:
        """Move a running job forward. Progress never decreases while the job runs."""
        job = self._lookup(job_id, "update")
        if job is None:
            return None
        if not job.is_running:
            logger.warning("Ignoring update of finished job %s to %s", job_id, status.value)
            return job
        floor, _ = STAGE_PROGRESS.get(status, (0, 100))
        target = floor if progress is None else min(max(progress, 0.0), 100.0)
        job.status = status
        job.progress = max(job.progress, target)
        if message is not None:
            job.message = message
        job.metadata.update(metadata)
        job.last_update = self._clock()
        logger.debug("Job %s: %s %.1f%% %s", job_id, status.value, job.progress, job.message)
        return job

    def nudge(self, job_id: str, step: float) -> Optional[Job]:
        """Heartbeat progress inside the current stage band, stopping short of its ceiling."""
        job = self._jobs.get(job_id)
        if job is None or not job.is_running:
            return None
        _, ceiling = STAGE_PROGRESS.get(job.status, (0, 100))
        limit = ceiling - 1
        if job.progress < limit:
            job.progress = min(job.progress + step, limit)
            job.last_update = self._clock()
        return job

    def complete(self, job_id: str, message: str = "Done", **metadata: Any) -> Optional[Job]:
        job = self._lookup(job_id, "complete")
        if job is None:
            return None
        job.status = JobStatus.COMPLETED
        job.progress = 100.0
        job.message = message
        job.metadata.update(metadata)
        job.last_update = self._clock()
        logger.info("Job %s completed", job_id)
        return job

    def fail(self, job_id: str, error: str) -> Optional[Job]:
        job = self._lookup(job_id, "fail")
        if job is None:
            logger.error("Job %s failed after removal: %s", job_id, error)
            return None
        job.status = JobStatus.FAILED
        job.progress = 0.0
        job.error = error
        job.message = f"Error: {error}"
        job.last_update = self._clock()
        logger.error("Job %s failed: %s", job_id, error)
        return job

    def remove(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def sweep_expired(self, retention_s: float, now: Optional[float] = None) -> list[str]:
        """Drop finished jobs idle for longer than ``retention_s``. Running jobs are never swept."""
        now = self._clock() if now is None else now
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if not job.is_running and now - job.last_update > retention_s
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.info("Removed %d expired jobs", len(expired))
        return expired

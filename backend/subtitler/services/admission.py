"""Per-client mutual exclusion and cool-down for job submission."""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from subtitler.core.constants import ErrorCode

logger = logging.getLogger(__name__)


class AdmissionError(RuntimeError):
    code: ErrorCode


class UploadInProgress(AdmissionError):
    code = ErrorCode.UPLOAD_IN_PROGRESS

    def __init__(self, job_id: str) -> None:
        super().__init__("An upload is already in progress for this client")
        self.job_id = job_id


class RateLimited(AdmissionError):
    code = ErrorCode.RATE_LIMITED

    def __init__(self, wait_seconds: int) -> None:
        super().__init__(f"Uploads too frequent, wait {wait_seconds} second(s)")
        self.wait_seconds = wait_seconds


@dataclass
class AdmissionTicket:
    client_key: str
    job_id: str
    admitted_at: float


def client_key(client_ip: Optional[str], user_agent: Optional[str]) -> str:
    return f"{client_ip or 'unknown'}-{user_agent or 'unknown'}"


class AdmissionController:
    """Gate, not a queue: a rejected caller retries later.

    Every check-and-set runs without awaiting, so two coroutines cannot both
    pass the in-flight check for the same client.
    """

    def __init__(
        self,
        cooldown_s: float = 5.0,
        history_ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.cooldown_s = cooldown_s
        self.history_ttl_s = history_ttl_s
        self._clock = clock
        self._id_factory = id_factory
        self._active: dict[str, AdmissionTicket] = {}
        self._history: dict[str, float] = {}

    def admit(self, client_key: str, now: Optional[float] = None) -> AdmissionTicket:
        now = self._clock() if now is None else now
        active = self._active.get(client_key)
        if active is not None:
            logger.info("Rejecting %s: job %s still in flight", client_key, active.job_id)
            raise UploadInProgress(active.job_id)

        last = self._history.get(client_key)
        if last is not None and now - last < self.cooldown_s:
            wait_seconds = math.ceil(self.cooldown_s - (now - last))
            logger.info("Rejecting %s: cool-down, %ds left", client_key, wait_seconds)
            raise RateLimited(wait_seconds)

        self.evict_stale(now)
        ticket = AdmissionTicket(client_key=client_key, job_id=self._id_factory(), admitted_at=now)
        self._active[client_key] = ticket
        logger.info("Admitted %s as job %s", client_key, ticket.job_id)
        return ticket

    def release(self, client_key: str, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        self._active.pop(client_key, None)
        self._history[client_key] = now

    def force_release(self, client_key: str) -> Optional[AdmissionTicket]:
        ticket = self._active.pop(client_key, None)
        if ticket is not None:
            logger.warning("Force-released %s (job %s)", client_key, ticket.job_id)
        return ticket

    def evict_stale(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        stale = [key for key, stamp in self._history.items() if now - stamp > self.history_ttl_s]
        for key in stale:
            del self._history[key]
        return len(stale)

    def active(self, now: Optional[float] = None) -> list[dict[str, object]]:
        now = self._clock() if now is None else now
        return [
            {
                "clientKey": ticket.client_key,
                "jobId": ticket.job_id,
                "startTime": int(ticket.admitted_at * 1000),
                "duration": int((now - ticket.admitted_at) * 1000),
            }
            for ticket in self._active.values()
        ]

    def history(self, now: Optional[float] = None) -> list[dict[str, object]]:
        now = self._clock() if now is None else now
        return [
            {"clientKey": key, "lastUpload": int(stamp * 1000), "timeSince": int((now - stamp) * 1000)}
            for key, stamp in self._history.items()
        ]

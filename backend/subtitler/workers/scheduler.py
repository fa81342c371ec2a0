"""In-process periodic maintenance tasks owned by the app lifespan."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from subtitler.services.admission import AdmissionController
from subtitler.services.job_store import JobStore

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run ``func`` every ``interval_s`` seconds until stopped.

    A failing run is logged and the schedule continues.
    """

    def __init__(self, name: str, interval_s: float, func: Callable[[], object]) -> None:
        self.name = name
        self.interval_s = interval_s
        self.func = func
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.func()
            except Exception:  # noqa: BLE001
                logger.exception("Periodic task %s failed", self.name)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Started periodic task %s (every %.0fs)", self.name, self.interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Stopped periodic task %s", self.name)


def build_maintenance_tasks(
    store: JobStore,
    admission: AdmissionController,
    *,
    job_retention_s: float,
    job_sweep_interval_s: float,
    admission_eviction_interval_s: float,
) -> list[PeriodicTask]:
    return [
        PeriodicTask("expire-jobs", job_sweep_interval_s, lambda: store.sweep_expired(job_retention_s)),
        PeriodicTask("evict-admission-history", admission_eviction_interval_s, admission.evict_stale),
    ]

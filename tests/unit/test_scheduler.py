import asyncio

from subtitler.services.admission import AdmissionController
from subtitler.services.job_store import JobStore
from subtitler.workers.scheduler import PeriodicTask, build_maintenance_tasks


def test_periodic_task_survives_failing_runs() -> None:
    calls: list[int] = []

    def flaky() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("first run fails")

    async def scenario() -> None:
        task = PeriodicTask("flaky", 0.01, flaky)
        task.start()
        assert task.running
        await asyncio.sleep(0.1)
        await task.stop()
        assert not task.running

    asyncio.run(scenario())

    assert len(calls) >= 2


def test_maintenance_tasks() -> None:
    tasks = build_maintenance_tasks(
        JobStore(),
        AdmissionController(),
        job_retention_s=7200,
        job_sweep_interval_s=1800,
        admission_eviction_interval_s=600,
    )

    assert [(t.name, t.interval_s) for t in tasks] == [("expire-jobs", 1800), ("evict-admission-history", 600)]
    assert not any(t.running for t in tasks)

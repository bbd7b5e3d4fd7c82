import asyncio
from unittest.mock import AsyncMock

from pulse_engine.models.snapshot import BrandStats, Snapshot
from pulse_engine.orchestrator import scheduler


def test_prewarm_runs_a_cached_snapshot():
    aggregator = AsyncMock()
    aggregator.snapshot.return_value = Snapshot(data={"acme": BrandStats(now=1)})

    asyncio.run(scheduler.job_prewarm(aggregator))
    aggregator.snapshot.assert_awaited_once_with(bypass_cache=False)


def test_prewarm_swallows_snapshot_failure():
    aggregator = AsyncMock()
    aggregator.snapshot.side_effect = RuntimeError("config store down")

    asyncio.run(scheduler.job_prewarm(aggregator))   # must not raise


def test_zero_interval_disables_scheduler():
    scheduler.start_scheduler(AsyncMock(), 0)
    assert scheduler.get_scheduler_status()["running"] is False


def test_scheduler_lists_prewarm_job():
    async def scenario():
        scheduler.start_scheduler(AsyncMock(), 60)
        try:
            return scheduler.get_scheduler_status()
        finally:
            scheduler.stop_scheduler()

    status = asyncio.run(scenario())
    assert status["running"] is True
    assert [job["id"] for job in status["jobs"]] == [scheduler.JOB_ID]
    assert scheduler.get_scheduler_status()["running"] is False

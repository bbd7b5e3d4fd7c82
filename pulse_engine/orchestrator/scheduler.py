"""
Brand Pulse — Prewarm Scheduler
────────────────────────────────
Optional background job that takes a regular snapshot every
PREWARM_INTERVAL_S seconds, so dashboard requests land on warm caches
instead of paying for the upstream fan-out themselves.

The job goes through the same horizon cache as requests do, so it never
adds upstream calls for keys that are still fresh.
"""

import logging
import time
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

log = logging.getLogger("pulse.scheduler")

GRACE_S = 30   # misfire grace window
JOB_ID  = "prewarm_snapshot"

_scheduler: Optional[AsyncIOScheduler] = None
_interval_s = 0


async def job_prewarm(aggregator):
    started = time.monotonic()
    try:
        snap = await aggregator.snapshot(bypass_cache=False)
    except Exception as e:
        log.error(f"[prewarm] Snapshot failed: {e!r}")
        return
    took = time.monotonic() - started
    log.info(f"[prewarm] {len(snap.data)} brands, {len(snap.errors)} with errors, {took:.2f}s")


def is_running() -> bool:
    return _scheduler is not None and _scheduler.running


def start_scheduler(aggregator, interval_s: int):
    """Schedule the prewarm job. interval_s <= 0 leaves prewarming off."""
    global _scheduler, _interval_s
    if interval_s <= 0:
        log.info("Prewarm disabled (PREWARM_INTERVAL_S=0)")
        return
    if is_running():
        log.warning("Prewarm scheduler already running")
        return

    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        job_prewarm,
        IntervalTrigger(seconds=interval_s),
        args                = [aggregator],
        id                  = JOB_ID,
        name                = f"Snapshot prewarm every {interval_s}s",
        max_instances       = 1,
        coalesce            = True,
        misfire_grace_time  = GRACE_S,
        replace_existing    = True,
    )
    _scheduler.start()
    _interval_s = interval_s
    log.info(f"Prewarm scheduler started ({interval_s}s interval)")


def stop_scheduler():
    if is_running():
        _scheduler.shutdown(wait=False)
        log.info("Prewarm scheduler stopped")


def get_scheduler_status() -> dict:
    if not is_running():
        return {"running": False, "jobs": []}
    job = _scheduler.get_job(JOB_ID)
    next_run = job.next_run_time if job else None
    return {
        "running":    True,
        "interval_s": _interval_s,
        "jobs": [{
            "id":       JOB_ID,
            "name":     job.name if job else None,
            "next_run": next_run.isoformat() if next_run else None,
        }] if job else [],
    }

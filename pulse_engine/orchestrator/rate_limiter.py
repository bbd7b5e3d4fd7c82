"""
Brand Pulse — Rate Limiter
───────────────────────────
Per-API token buckets plus a cap on parallel requests, so that a wide
snapshot (brands × horizons) cannot burn through GA4 quota in one burst.

GA4 Data API quotas (standard properties):
  Core reports:      10 concurrent requests per property, hourly token pool
  Realtime reports:  10 concurrent requests per property, separate pool
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

log = logging.getLogger("pulse.rate_limiter")


class TokenBucket:
    """
    Refills continuously at `rate` tokens per second, up to `capacity`.

    A caller that finds the bucket short still takes its tokens (the level
    goes negative) and is told how long to hold off, so a queue of callers
    spaces itself out instead of stampeding once the bucket refills.
    """

    def __init__(self, capacity: float, rate: float, clock: Callable[[], float] = time.monotonic):
        if capacity <= 0 or rate <= 0:
            raise ValueError("Token bucket capacity and rate must be positive")
        self.capacity = capacity
        self.rate     = rate
        self._clock   = clock
        self._level   = float(capacity)
        self._stamp   = clock()
        self._lock    = asyncio.Lock()

    def _refill(self):
        t = self._clock()
        self._level = min(self.capacity, self._level + (t - self._stamp) * self.rate)
        self._stamp = t

    @property
    def available(self) -> float:
        self._refill()
        return max(self._level, 0.0)

    async def reserve(self, tokens: float = 1.0) -> float:
        """Take `tokens` and return the delay in seconds before they may be spent."""
        async with self._lock:
            self._refill()
            self._level -= tokens
            return 0.0 if self._level >= 0 else -self._level / self.rate

    def refund(self, tokens: float = 1.0):
        """Give back tokens reserved by a caller that never made its request."""
        self._refill()
        self._level = min(self.capacity, self._level + tokens)

    async def throttle(self, tokens: float = 1.0):
        delay = await self.reserve(tokens)
        if delay > 0:
            log.debug(f"Throttled for {delay:.2f}s")
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self.refund(tokens)
                raise


# ── Per-API budgets ───────────────────────────────────────────
# api -> (burst capacity, sustained tokens per second)

API_LIMITS: Dict[str, Tuple[float, float]] = {
    # runReport: today/30d/365d for every brand. A full snapshot for a
    # dozen brands fits in the burst.
    "ga4_core":     (40, 5.0),

    # runRealtimeReport: one call per unfiltered brand per `now` interval
    "ga4_realtime": (20, 5.0),
}

FALLBACK_LIMIT = (5, 1.0)


class ApiLimiter:
    """
    One bucket per report API plus a shared concurrency cap. Owned by a
    single analytics client; separate clients never share quota state.
    """

    def __init__(self, limits: Optional[Dict[str, Tuple[float, float]]] = None,
                 max_concurrent: int = 10):
        self._limits  = dict(limits or API_LIMITS)
        self._buckets: Dict[str, TokenBucket] = {}
        self.requests = asyncio.Semaphore(max_concurrent)

    def bucket(self, api: str) -> TokenBucket:
        bucket = self._buckets.get(api)
        if bucket is None:
            capacity, rate = self._limits.get(api, FALLBACK_LIMIT)
            bucket = self._buckets[api] = TokenBucket(capacity, rate)
        return bucket

    async def acquire(self, api: str, tokens: float = 1.0):
        await self.bucket(api).throttle(tokens)

"""
Brand Pulse — Horizon Cache
────────────────────────────
In-process TTL store for per-brand, per-horizon metric values.

Keys are (brand, horizon, interval_ms). interval_ms is only set for the
`now` horizon, where callers may ask for their own refresh interval and
each interval gets its own entry.

Rules:
  - fresh iff  clock() - entry.fetched_at < ttl
  - a fresh hit never touches upstream
  - a failed refresh never overwrites a good value
  - at most one refresh in flight per key; concurrent callers share it
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple, Union

from pulse_engine.errors import FetchError
from pulse_engine.models.brand import Horizon
from pulse_engine.models.result import FetchResult
from pulse_engine.models.snapshot import _fmt_age

log = logging.getLogger("pulse.cache")

Number    = Union[int, float]
CacheKey  = Tuple[str, Horizon, Optional[int]]
RefreshFn = Callable[[], Awaitable[FetchResult]]


def cache_key(brand: str, horizon: Horizon, interval_ms: Optional[int] = None) -> CacheKey:
    horizon = Horizon(horizon)
    return (brand, horizon, interval_ms if horizon is Horizon.NOW else None)


def _fmt_key(key: CacheKey) -> str:
    brand, horizon, interval_ms = key
    if interval_ms is None:
        return f"{brand}:{horizon.value}"
    return f"{brand}:{horizon.value}@{interval_ms}ms"


@dataclass(frozen=True)
class CacheEntry:
    value:      Number
    fetched_at: float
    source:     str = "ga4"     # "ga4" or "estimate"

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Cache values are never negative (got {self.value})")


class CacheStore:
    """
    Plain keyed map of CacheEntry objects. Entries are immutable, so a write
    is a single assignment and readers never see a half-written entry.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, key: CacheKey, entry: CacheEntry):
        self._entries[key] = entry

    def drop_brands(self, brands: Iterable[str]) -> int:
        brands = set(brands)
        doomed = [k for k in self._entries if k[0] in brands]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


class HorizonCache:
    """
    TTL cache with single-flight refresh.

    `clock` must be monotonic; it is injectable so tests can move time.
    """

    def __init__(self, store: Optional[CacheStore] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.store      = store if store is not None else CacheStore()
        self._clock     = clock
        self._in_flight: Dict[CacheKey, asyncio.Task] = {}
        self._errors:    Dict[CacheKey, FetchError] = {}
        self._orphaned:  Set[CacheKey] = set()   # in flight when their brand was dropped

    # ── Inspection ────────────────────────────────────────────
    def peek(self, key: CacheKey) -> Optional[CacheEntry]:
        return self.store.get(key)

    def is_fresh(self, key: CacheKey, ttl: float) -> bool:
        entry = self.store.get(key)
        return entry is not None and (self._clock() - entry.fetched_at) < ttl

    def last_error(self, key: CacheKey) -> Optional[FetchError]:
        """Error from the most recent refresh of `key`, cleared by the next success."""
        return self._errors.get(key)

    def in_flight(self, key: CacheKey) -> bool:
        return key in self._in_flight

    def drop_brands(self, brands: Iterable[str]) -> int:
        """
        Forget every key of `brands`: entries, recorded errors, and the result
        of any refresh still running for them. Returns the entries dropped.
        """
        brands = set(brands)
        for key in [k for k in self._errors if k[0] in brands]:
            del self._errors[key]
        self._orphaned.update(k for k in self._in_flight if k[0] in brands)
        return self.store.drop_brands(brands)

    # ── Lookup ────────────────────────────────────────────────
    async def get_or_refresh(
        self,
        key: CacheKey,
        ttl: float,
        refresh_fn: RefreshFn,
        force: bool = False,
    ) -> Number:
        """
        Return the cached value if fresh, else refresh through `refresh_fn`.

        force=True skips the freshness check (cache bypass). A caller that
        arrives while a refresh for the same key is running waits for that
        refresh instead of starting another one.
        """
        if not force:
            entry = self.store.get(key)
            if entry is not None:
                age = self._clock() - entry.fetched_at
                if age < ttl:
                    log.debug(f"{_fmt_key(key)}: cache hit (age={_fmt_age(age)})")
                    return entry.value

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh(key, refresh_fn))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            log.debug(f"{_fmt_key(key)}: joining in-flight refresh")

        # Shielded: one impatient caller must not cancel everyone's refresh
        return await asyncio.shield(task)

    def _forget(self, key: CacheKey, task: asyncio.Task):
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
            self._orphaned.discard(key)

    async def _refresh(self, key: CacheKey, refresh_fn: RefreshFn) -> Number:
        try:
            result = await refresh_fn()
        except Exception as e:
            result = FetchResult.failure(FetchError(FetchError.UPSTREAM, repr(e), e))

        if key in self._orphaned:
            log.debug(f"{_fmt_key(key)}: brand dropped during refresh - result not stored")
            return result.value if result.ok else 0

        if result.ok:
            self.store.put(key, CacheEntry(result.value, self._clock(), result.source))
            self._errors.pop(key, None)
            return result.value

        self._errors[key] = result.error
        previous = self.store.get(key)
        if previous is None:
            log.warning(f"{_fmt_key(key)}: refresh failed ({result.error}) - no cached value, serving 0")
            return 0
        log.warning(f"{_fmt_key(key)}: refresh failed ({result.error}) - serving stale {previous.value}")
        return previous.value

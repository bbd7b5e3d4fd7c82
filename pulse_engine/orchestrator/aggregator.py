"""
Brand Pulse — Aggregator
─────────────────────────
Fans a snapshot out over every brand and every horizon, through the
horizon cache, and folds the results into one map.

Per brand, in one cycle:

    today ──► now          (now may be estimated from this cycle's today)
    30d
    365d                   (all three chains run concurrently)

`now` policy:
  - filtered brand   → never query realtime; now = estimate(today)
  - unfiltered brand → realtime report; on failure now = estimate(today)

Failures stay inside their (brand, horizon) key. Every known brand is in
the result; a key that has never been fetched successfully reads 0.
"""

import asyncio
import logging
from functools import partial
from typing import Dict, Optional, Tuple, Union

from pulse_engine.analytics.fetcher import MetricFetcher
from pulse_engine.cache.horizon_cache import CacheKey, HorizonCache, cache_key
from pulse_engine.cache.ttl_config import TTL, clamp_interval_ms
from pulse_engine.errors import ConfigUnavailable, UnknownBrand
from pulse_engine.models.brand import HISTORICAL_HORIZONS, Brand, Horizon
from pulse_engine.models.result import FetchResult
from pulse_engine.models.snapshot import BrandStats, Snapshot
from pulse_engine.orchestrator.estimation import estimate
from pulse_engine.settings import ACTIVE_USERS_CACHE_MS, GA4_PROPERTY_ID

log = logging.getLogger("pulse.aggregator")

Number = Union[int, float]

DEFAULT_BRAND = "default"


class Aggregator:

    def __init__(
        self,
        config,
        fetcher: MetricFetcher,
        cache: Optional[HorizonCache] = None,
        ttl: Optional[Dict[Horizon, float]] = None,
        now_interval_ms: int = ACTIVE_USERS_CACHE_MS,
        default_property_id: str = GA4_PROPERTY_ID,
    ):
        self.config              = config       # anything with `async get_brands(bypass_cache)`
        self.fetcher             = fetcher
        self.cache               = cache if cache is not None else HorizonCache()
        self.ttl                 = {**TTL, **(ttl or {})}
        self.now_interval_ms     = clamp_interval_ms(now_interval_ms)
        self.default_property_id = default_property_id
        self._brands: Dict[str, Brand] = {}   # last brand set successfully loaded

    # ── Brand set ─────────────────────────────────────────────
    async def load_brands(self, bypass_cache: bool = False) -> Dict[str, Brand]:
        try:
            brands = await self.config.get_brands(bypass_cache=bypass_cache)
        except ConfigUnavailable as e:
            if self._brands:
                log.warning(f"Brand config unavailable ({e}) - reusing last brand set")
                return self._brands
            raise

        removed = set(self._brands) - set(brands)
        if removed:
            dropped = self.cache.drop_brands(removed)
            log.info(f"Brands removed from config: {sorted(removed)} ({dropped} cache entries dropped)")
        self._brands = brands
        return brands

    async def resolve_brand(self, key: str, bypass_cache: bool = False) -> Brand:
        if not key:
            raise ValueError("brand is required")
        if key == DEFAULT_BRAND and self.default_property_id:
            return Brand(key=DEFAULT_BRAND, property_id=self.default_property_id)
        brands = await self.load_brands(bypass_cache)
        brand = brands.get(key)
        if brand is None:
            raise UnknownBrand(key)
        return brand

    # ── Per-key refresh ───────────────────────────────────────
    async def _historical(self, brand: Brand, horizon: Horizon, force: bool) -> Number:
        key = cache_key(brand.key, horizon)
        refresh = partial(self.fetcher.fetch, brand.property_id, horizon, brand.filter)
        return await self.cache.get_or_refresh(key, self.ttl[horizon], refresh, force=force)

    async def _realtime(
        self,
        brand: Brand,
        interval_ms: int,
        force: bool,
        today_value: Optional[Number] = None,
    ) -> Number:
        key = cache_key(brand.key, Horizon.NOW, interval_ms)

        async def refresh() -> FetchResult:
            if not brand.is_filtered:
                result = await self.fetcher.fetch(brand.property_id, Horizon.NOW)
                if result.ok:
                    return result
                log.info(f"{brand.key}: realtime unavailable ({result.error}) - estimating from today")

            today = today_value
            if today is None:
                today = await self._historical(brand, Horizon.TODAY, force)
            return FetchResult.success(estimate(today), source="estimate")

        return await self.cache.get_or_refresh(key, interval_ms / 1000, refresh, force=force)

    async def _refresh_brand(self, brand: Brand, force: bool) -> BrandStats:
        async def today_then_now() -> Tuple[Number, Number]:
            today = await self._historical(brand, Horizon.TODAY, force)
            now   = await self._realtime(brand, self.now_interval_ms, force, today_value=today)
            return today, now

        (today, now), days30, days365 = await asyncio.gather(
            today_then_now(),
            self._historical(brand, Horizon.DAYS30, force),
            self._historical(brand, Horizon.DAYS365, force),
        )
        return BrandStats(now=now, today=today, days30=days30, days365=days365)

    def _keys(self, brand: Brand) -> Dict[str, Tuple[CacheKey, float]]:
        keys = {h.value: (cache_key(brand.key, h), self.ttl[h]) for h in HISTORICAL_HORIZONS}
        keys[Horizon.NOW.value] = (cache_key(brand.key, Horizon.NOW, self.now_interval_ms),
                                   self.now_interval_ms / 1000)
        return keys

    def _cached_stats(self, brand: Brand) -> BrandStats:
        values = {}
        for name, (key, _) in self._keys(brand).items():
            entry = self.cache.peek(key)
            values[name] = entry.value if entry else 0
        return BrandStats(now=values["now"], today=values["today"],
                          days30=values["30d"], days365=values["365d"])

    def _errors(self, brand: Brand) -> Dict[str, str]:
        """Keys whose latest refresh failed and that are still not fresh."""
        errors = {}
        for name, (key, ttl) in self._keys(brand).items():
            error = self.cache.last_error(key)
            if error is not None and not self.cache.is_fresh(key, ttl):
                errors[name] = str(error)
        return errors

    # ── Public operations ─────────────────────────────────────
    async def snapshot(self, bypass_cache: bool = False) -> Snapshot:
        """Every known brand × every horizon. bypass_cache forces a full re-fetch."""
        brands = list((await self.load_brands(bypass_cache)).values())
        log.info(f"Snapshot: {len(brands)} brands (bypass_cache={bypass_cache})")

        results = await asyncio.gather(
            *[self._refresh_brand(b, bypass_cache) for b in brands],
            return_exceptions=True,
        )

        snap = Snapshot()
        for brand, result in zip(brands, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                log.error(f"{brand.key}: refresh crashed: {result!r}")
                snap.errors[brand.key] = {"brand": repr(result)}
                result = self._cached_stats(brand)
            snap.data[brand.key] = result
            errors = self._errors(brand)
            if errors:
                snap.errors.setdefault(brand.key, {}).update(errors)
        return snap

    async def active_now(
        self,
        brand_key: str,
        refresh_interval_ms=None,
        bypass_cache: bool = False,
    ) -> dict:
        """Realtime-only view of one brand, cached per requested interval."""
        if refresh_interval_ms is None:
            interval_ms = self.now_interval_ms
        else:
            interval_ms = clamp_interval_ms(refresh_interval_ms)
        brand = await self.resolve_brand(brand_key, bypass_cache)

        key    = cache_key(brand.key, Horizon.NOW, interval_ms)
        cached = not bypass_cache and self.cache.is_fresh(key, interval_ms / 1000)
        value  = await self._realtime(brand, interval_ms, bypass_cache)
        return {
            "brand":       brand.key,
            "activeUsers": value,
            "cached":      cached,
            "intervalms":  interval_ms,
        }

    async def active_horizon(
        self,
        brand_key: str,
        horizon: Horizon,
        bypass_cache: bool = False,
    ) -> dict:
        """One historical horizon of one brand, read through the snapshot's cache entry."""
        horizon = Horizon(horizon)
        if horizon not in HISTORICAL_HORIZONS:
            raise ValueError("The realtime horizon is served by active_now")
        brand = await self.resolve_brand(brand_key, bypass_cache)

        key    = cache_key(brand.key, horizon)
        cached = not bypass_cache and self.cache.is_fresh(key, self.ttl[horizon])
        value  = await self._historical(brand, horizon, bypass_cache)
        return {
            "brand":       brand.key,
            "horizon":     horizon.value,
            "activeUsers": value,
            "cached":      cached,
        }

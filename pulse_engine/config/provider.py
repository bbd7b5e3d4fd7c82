"""
Brand Pulse — Brand Config Provider
────────────────────────────────────
Brand configuration lives in two JSON documents owned by the dashboard's
document store:

  brand-properties       brand → {name, image?, group?, ga4_filter?}
  brand-ga4-properties   brand → GA4 property id

Each document is fetched from the first source that answers (Redis, then
the HTTP JSON provider), cached for CONFIG_TTL seconds, and remembered as
last-known. When every source fails: last-known, then the packaged default,
then ConfigUnavailable. A join that yields no usable brand is also
ConfigUnavailable, so callers fall back to the brand set they last had.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from pulse_engine.cache.ttl_config import CONFIG_TTL
from pulse_engine.errors import ConfigUnavailable
from pulse_engine.models.brand import Brand, DimensionFilter
from pulse_engine.settings import DEFAULT_BRANDS_PATH, UPSTREAM_TIMEOUT_S

log = logging.getLogger("pulse.config")

DOC_BRANDS     = "brand-properties"
DOC_PROPERTIES = "brand-ga4-properties"
COLLECTION     = "dashboard-config"


# ── Sources ───────────────────────────────────────────────────

class ConfigSource(ABC):
    name = "source"

    @abstractmethod
    async def load(self, doc: str, bypass_cache: bool = False) -> Dict[str, Any]:
        """Return the document as a dict, or raise."""


class RedisConfigSource(ConfigSource):
    """Reads `dashboard-config:<doc>` keys holding JSON strings."""

    name = "redis"

    def __init__(self, get_redis: Callable[[], Awaitable[Any]]):
        self._get_redis = get_redis

    async def load(self, doc: str, bypass_cache: bool = False) -> Dict[str, Any]:
        r = await self._get_redis()
        if r is None:
            raise ConnectionError("Redis unavailable")
        raw = await r.get(f"{COLLECTION}:{doc}")
        if raw is None:
            raise LookupError(f"{COLLECTION}:{doc} not set")
        return _as_document(json.loads(raw), doc)


class HttpConfigSource(ConfigSource):
    """
    GET {base_url}/api/json-provider/dashboard-config/<doc>
    The provider answers either {"data": {...}} or the bare document.
    """

    name = "http"

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = UPSTREAM_TIMEOUT_S):
        self.base_url = base_url.rstrip("/")
        self.timeout  = timeout
        self._client  = client

    async def load(self, doc: str, bypass_cache: bool = False) -> Dict[str, Any]:
        url    = f"{self.base_url}/api/json-provider/{COLLECTION}/{doc}"
        params = {"cache": "false"} if bypass_cache else None
        if self._client is not None:
            r = await self._client.get(url, params=params, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.get(url, params=params)
        r.raise_for_status()
        body = r.json()
        if isinstance(body, dict) and "data" in body:
            body = body["data"]
        return _as_document(body, doc)


def _as_document(body: Any, doc: str) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ValueError(f"{doc}: expected an object, got {type(body).__name__}")
    return body


# ── Brand assembly ────────────────────────────────────────────

def build_brands(brand_props: Dict[str, Any], ga4_props: Dict[str, Any]) -> Dict[str, Brand]:
    """Join the two documents. Brands without a property id are skipped."""
    brands: Dict[str, Brand] = {}
    for key, props in brand_props.items():
        props = props if isinstance(props, dict) else {}
        property_id = ga4_props.get(key)
        if not property_id:
            log.info(f"Brand {key!r} has no GA4 property - skipped")
            continue

        dim_filter = None
        raw_filter = props.get("ga4_filter")
        if raw_filter:
            try:
                dim_filter = DimensionFilter.from_dict(raw_filter)
            except (ValueError, AttributeError) as e:
                # An unfiltered query would report the whole shared property
                log.warning(f"Brand {key!r} has an unusable ga4_filter ({e}) - skipped")
                continue

        brands[key] = Brand(
            key=key,
            property_id=str(property_id),
            filter=dim_filter,
            name=props.get("name"),
            image=props.get("image"),
            group=props.get("group"),
        )
    return brands


# ── Provider ──────────────────────────────────────────────────

class BrandConfigProvider:

    def __init__(
        self,
        sources: List[ConfigSource],
        default_path: Optional[Path] = DEFAULT_BRANDS_PATH,
        ttl: float = CONFIG_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sources      = sources
        self.default_path = Path(default_path) if default_path else None
        self.ttl          = ttl
        self._clock       = clock
        self._docs:       Dict[str, Tuple[float, Dict[str, Any]]] = {}   # doc -> (fetched_at, data)
        self._last_known: Dict[str, Dict[str, Any]] = {}

    async def get_brands(self, bypass_cache: bool = False) -> Dict[str, Brand]:
        brand_props, ga4_props = await asyncio.gather(
            self._document(DOC_BRANDS, bypass_cache),
            self._document(DOC_PROPERTIES, bypass_cache),
        )
        brands = build_brands(brand_props, ga4_props)
        if not brands:
            raise ConfigUnavailable(
                f"no usable brand ({len(brand_props)} in {DOC_BRANDS}, {len(ga4_props)} in {DOC_PROPERTIES})"
            )
        return brands

    async def _document(self, doc: str, bypass_cache: bool) -> Dict[str, Any]:
        if not bypass_cache and doc in self._docs:
            fetched_at, data = self._docs[doc]
            if self._clock() - fetched_at < self.ttl:
                return data

        for source in self.sources:
            try:
                data = await source.load(doc, bypass_cache)
            except Exception as e:
                log.warning(f"{doc}: {source.name} source failed ({e!r})")
                continue
            log.info(f"{doc}: loaded from {source.name} ({len(data)} entries)")
            self._docs[doc]       = (self._clock(), data)
            self._last_known[doc] = data
            return data

        if doc in self._last_known:
            log.warning(f"{doc}: all sources failed - using last known")
            return self._last_known[doc]

        default = self._default_document(doc)
        if default is not None:
            log.warning(f"{doc}: all sources failed - using built-in default")
            return default

        raise ConfigUnavailable(f"{doc}: no source, last-known or default available")

    def _default_document(self, doc: str) -> Optional[Dict[str, Any]]:
        if self.default_path is None:
            return None
        try:
            with open(self.default_path) as f:
                defaults = json.load(f)
        except (OSError, ValueError) as e:
            log.error(f"Default brand config unreadable ({self.default_path}): {e}")
            return None
        data = defaults.get(doc) if isinstance(defaults, dict) else None
        return data if isinstance(data, dict) else None

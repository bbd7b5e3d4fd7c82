import asyncio
import json

import httpx
import pytest

from pulse_engine.analytics.fetcher import MetricFetcher
from pulse_engine.cache.horizon_cache import HorizonCache
from pulse_engine.config.provider import (
    DOC_BRANDS,
    DOC_PROPERTIES,
    BrandConfigProvider,
    ConfigSource,
    HttpConfigSource,
    RedisConfigSource,
    build_brands,
)
from pulse_engine.errors import ConfigUnavailable
from pulse_engine.orchestrator.aggregator import Aggregator

BRAND_PROPS = {
    "acme": {"name": "Acme", "image": "acme.png"},
    "beta": {
        "name": "Beta",
        "ga4_filter": {
            "fieldName": "pagePath",
            "stringFilter": {"matchType": "CONTAINS", "value": "/beta/"},
        },
    },
}
GA4_PROPS = {"acme": "111", "beta": "222"}


class FakeSource(ConfigSource):
    def __init__(self, name, docs=None, error=None):
        self.name  = name
        self.docs  = docs or {}
        self.error = error
        self.calls = []

    async def load(self, doc, bypass_cache=False):
        self.calls.append((doc, bypass_cache))
        if self.error:
            raise self.error
        return self.docs[doc]


class FakeRedis:
    def __init__(self, values):
        self.values = values

    async def get(self, key):
        return self.values.get(key)


def _docs():
    return {DOC_BRANDS: BRAND_PROPS, DOC_PROPERTIES: GA4_PROPS}


# ── build_brands ──────────────────────────────────────────────

def test_build_brands_joins_documents():
    brands = build_brands(BRAND_PROPS, GA4_PROPS)

    assert set(brands) == {"acme", "beta"}
    assert brands["acme"].property_id == "111"
    assert brands["acme"].name == "Acme"
    assert not brands["acme"].is_filtered
    assert brands["beta"].filter.match_type == "CONTAINS"
    assert brands["beta"].filter.value == "/beta/"


def test_build_brands_skips_brand_without_property():
    brands = build_brands({**BRAND_PROPS, "ghost": {"name": "Ghost"}}, GA4_PROPS)
    assert "ghost" not in brands


def test_build_brands_skips_brand_with_unusable_filter():
    props = {**BRAND_PROPS, "bad": {"ga4_filter": {"field": "pagePath", "matchType": "REGEX", "value": "x"}}}
    brands = build_brands(props, {**GA4_PROPS, "bad": "444"})

    assert "bad" not in brands
    assert "acme" in brands


def test_build_brands_accepts_flat_filter_shape():
    props = {"gamma": {"ga4_filter": {"field": "hostName", "matchType": "exact", "value": "gamma.example"}}}
    brands = build_brands(props, {"gamma": 333})

    assert brands["gamma"].property_id == "333"
    assert brands["gamma"].filter.field_name == "hostName"
    assert brands["gamma"].filter.match_type == "EXACT"


# ── Provider ──────────────────────────────────────────────────

def test_documents_are_cached_for_ttl(clock):
    source   = FakeSource("redis", _docs())
    provider = BrandConfigProvider([source], default_path=None, ttl=600, clock=clock)

    asyncio.run(provider.get_brands())
    clock.advance(599)
    asyncio.run(provider.get_brands())
    assert len(source.calls) == 2          # one per document

    clock.advance(1)
    asyncio.run(provider.get_brands())
    assert len(source.calls) == 4


def test_bypass_skips_document_cache(clock):
    source   = FakeSource("redis", _docs())
    provider = BrandConfigProvider([source], default_path=None, clock=clock)

    asyncio.run(provider.get_brands())
    asyncio.run(provider.get_brands(bypass_cache=True))

    assert len(source.calls) == 4
    assert (DOC_BRANDS, True) in source.calls


def test_falls_through_to_next_source(clock):
    broken   = FakeSource("redis", error=ConnectionError("down"))
    http     = FakeSource("http", _docs())
    provider = BrandConfigProvider([broken, http], default_path=None, clock=clock)

    brands = asyncio.run(provider.get_brands())

    assert set(brands) == {"acme", "beta"}
    assert len(broken.calls) == 2


def test_last_known_survives_source_outage(clock):
    source   = FakeSource("redis", _docs())
    provider = BrandConfigProvider([source], default_path=None, clock=clock)

    asyncio.run(provider.get_brands())
    source.error = ConnectionError("down")
    clock.advance(3600)
    brands = asyncio.run(provider.get_brands())

    assert set(brands) == {"acme", "beta"}


def test_default_document_used_when_nothing_else(clock, tmp_path):
    path = tmp_path / "default_brands.json"
    path.write_text(json.dumps({DOC_BRANDS: {"acme": {}}, DOC_PROPERTIES: {"acme": "111"}}))
    provider = BrandConfigProvider([FakeSource("redis", error=ConnectionError("down"))],
                                   default_path=path, clock=clock)

    brands = asyncio.run(provider.get_brands())
    assert list(brands) == ["acme"]


def test_packaged_default_alone_is_unavailable(clock):
    provider = BrandConfigProvider([], clock=clock)
    with pytest.raises(ConfigUnavailable):
        asyncio.run(provider.get_brands())


def test_brands_document_on_empty_default_is_unavailable(clock):
    # properties load fine, brand-properties falls back to the empty packaged default
    source   = FakeSource("redis", {DOC_PROPERTIES: GA4_PROPS})
    provider = BrandConfigProvider([source], clock=clock)

    with pytest.raises(ConfigUnavailable) as exc_info:
        asyncio.run(provider.get_brands())
    assert "0 in brand-properties" in str(exc_info.value)


def test_join_without_usable_brand_is_unavailable(clock):
    source   = FakeSource("redis", {DOC_BRANDS: BRAND_PROPS, DOC_PROPERTIES: {}})
    provider = BrandConfigProvider([source], default_path=None, clock=clock)

    with pytest.raises(ConfigUnavailable):
        asyncio.run(provider.get_brands())


def test_unavailable_when_no_fallback(clock, tmp_path):
    provider = BrandConfigProvider([FakeSource("redis", error=ConnectionError("down"))],
                                   default_path=tmp_path / "missing.json", clock=clock)
    with pytest.raises(ConfigUnavailable):
        asyncio.run(provider.get_brands())


def test_emptied_config_keeps_previous_brand_set(clock, ga4):
    source     = FakeSource("redis", _docs())
    provider   = BrandConfigProvider([source], default_path=None, clock=clock)
    aggregator = Aggregator(provider, MetricFetcher(ga4), cache=HorizonCache(clock=clock))

    asyncio.run(aggregator.snapshot())
    source.docs = {DOC_BRANDS: {}, DOC_PROPERTIES: {}}
    snap = asyncio.run(aggregator.snapshot(bypass_cache=True))

    assert set(snap.data) == {"acme", "beta"}


# ── Sources ───────────────────────────────────────────────────

def test_redis_source_reads_json_keys():
    r = FakeRedis({f"dashboard-config:{DOC_PROPERTIES}": json.dumps(GA4_PROPS)})

    async def get_redis():
        return r

    source = RedisConfigSource(get_redis)
    assert asyncio.run(source.load(DOC_PROPERTIES)) == GA4_PROPS
    with pytest.raises(LookupError):
        asyncio.run(source.load(DOC_BRANDS))


def test_redis_source_without_connection_raises():
    async def get_redis():
        return None

    with pytest.raises(ConnectionError):
        asyncio.run(RedisConfigSource(get_redis).load(DOC_BRANDS))


def test_http_source_unwraps_data_and_forwards_bypass():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": GA4_PROPS})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = HttpConfigSource("https://config.test/", client=client)
            return await source.load(DOC_PROPERTIES, bypass_cache=True)

    assert asyncio.run(scenario()) == GA4_PROPS
    assert seen[0].url.path == f"/api/json-provider/dashboard-config/{DOC_PROPERTIES}"
    assert seen[0].url.params["cache"] == "false"


def test_http_source_rejects_non_object():
    def handler(request):
        return httpx.Response(200, json=["not", "a", "document"])

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpConfigSource("https://config.test", client=client).load(DOC_BRANDS)

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_http_source_raises_on_error_status():
    def handler(request):
        return httpx.Response(500, text="boom")

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpConfigSource("https://config.test", client=client).load(DOC_BRANDS)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(scenario())

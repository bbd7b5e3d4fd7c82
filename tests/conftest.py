import asyncio
from typing import Dict, Optional

import httpx
import pytest

from pulse_engine.analytics.client import AnalyticsClient, DateRange
from pulse_engine.analytics.fetcher import MetricFetcher
from pulse_engine.cache.horizon_cache import HorizonCache
from pulse_engine.errors import ConfigUnavailable
from pulse_engine.models.brand import Brand, DimensionFilter
from pulse_engine.orchestrator.aggregator import Aggregator

_HORIZON_BY_START = {"today": "today", "30daysAgo": "30d", "365daysAgo": "365d"}


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float):
        self.t += seconds


class FakeAnalyticsClient(AnalyticsClient):
    """
    In-memory GA4 stand-in. values maps (property_id, horizon) to a number,
    with horizon one of "now", "today", "30d", "365d". Keys in `failing`
    raise a connection error.
    """

    def __init__(self, values: Optional[Dict[tuple, float]] = None, delay: float = 0.0):
        self.values  = dict(values or {})
        self.failing = set()
        self.delay   = delay
        self.calls   = []     # (property_id, horizon)
        self.filters = []     # dimension_filter per runReport call

    def count(self, property_id: str = None, horizon: str = None) -> int:
        return sum(1 for p, h in self.calls
                   if (property_id is None or p == property_id) and (horizon is None or h == horizon))

    async def _answer(self, property_id: str, horizon: str) -> dict:
        self.calls.append((property_id, horizon))
        if self.delay:
            await asyncio.sleep(self.delay)
        if (property_id, horizon) in self.failing:
            raise httpx.ConnectError(f"upstream down for {property_id}/{horizon}")
        value = self.values.get((property_id, horizon))
        if value is None:
            return {}
        return {"rows": [{"metricValues": [{"value": str(value)}]}]}

    async def run_report(self, property_id, date_range: DateRange, metric="activeUsers",
                         dimension_filter=None):
        self.filters.append(dimension_filter)
        return await self._answer(property_id, _HORIZON_BY_START[date_range.start_date])

    async def run_realtime_report(self, property_id, metric="activeUsers"):
        return await self._answer(property_id, "now")


class StaticConfig:
    """ConfigProvider stand-in; set `brands = None` to simulate an outage."""

    def __init__(self, brands: Optional[Dict[str, Brand]]):
        self.brands = brands
        self.calls  = []

    async def get_brands(self, bypass_cache: bool = False):
        self.calls.append(bypass_cache)
        if self.brands is None:
            raise ConfigUnavailable("config store down")
        return dict(self.brands)


def scenario_brands() -> Dict[str, Brand]:
    return {
        "acme": Brand(key="acme", property_id="111"),
        "beta": Brand(
            key="beta",
            property_id="222",
            filter=DimensionFilter(field_name="pagePath", value="/beta/", match_type="CONTAINS"),
        ),
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ga4():
    return FakeAnalyticsClient({
        ("111", "today"): 4800,
        ("111", "30d"):   90000,
        ("111", "365d"):  1000000,
        ("111", "now"):   37,
        ("222", "today"): 960,
        ("222", "30d"):   20000,
        ("222", "365d"):  250000,
    })


@pytest.fixture
def config():
    return StaticConfig(scenario_brands())


@pytest.fixture
def aggregator(config, ga4, clock):
    return Aggregator(
        config,
        MetricFetcher(ga4),
        cache=HorizonCache(clock=clock),
        now_interval_ms=60000,
        default_property_id="999",
    )

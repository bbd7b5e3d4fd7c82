import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pulse_engine import settings
from pulse_engine.analytics.client import GA4Client, ServiceAccountTokenSource, UnconfiguredTokenSource
from pulse_engine.analytics.fetcher import MetricFetcher
from pulse_engine.api.active_endpoint import (
    get_active_horizon_response,
    get_active_now_response,
    get_all_active_response,
    unavailable_response,
)
from pulse_engine.config.provider import BrandConfigProvider, HttpConfigSource, RedisConfigSource
from pulse_engine.errors import ConfigUnavailable, UnknownBrand
from pulse_engine.models.brand import Horizon
from pulse_engine.orchestrator.aggregator import Aggregator
from pulse_engine.orchestrator.scheduler import get_scheduler_status, start_scheduler, stop_scheduler

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger(__name__)

redis_client: Optional[aioredis.Redis] = None


async def get_redis() -> Optional[aioredis.Redis]:
    global redis_client
    if not settings.REDIS_URL:
        return None
    if redis_client:
        try:
            await redis_client.ping()
            return redis_client
        except Exception:
            redis_client = None
    try:
        redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=2)
        await redis_client.ping()
        log.info("Redis connected")
        return redis_client
    except Exception as e:
        log.warning(f"Redis unavailable ({e}) - config falls back to HTTP/default")
        redis_client = None
        return None


def build_aggregator() -> Aggregator:
    sources = []
    if settings.REDIS_URL:
        sources.append(RedisConfigSource(get_redis))
    if settings.CONFIG_SOURCE_URL:
        sources.append(HttpConfigSource(settings.CONFIG_SOURCE_URL))
    if not sources:
        log.warning("No CONFIG_SOURCE_URL or REDIS_URL - brand config comes from the built-in default")
    provider = BrandConfigProvider(sources)

    if settings.GOOGLE_SERVICE_ACCOUNT_JSON:
        token_source = ServiceAccountTokenSource.from_json(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
    else:
        log.warning("GOOGLE_SERVICE_ACCOUNT_JSON not set - every GA4 call will fail")
        token_source = UnconfiguredTokenSource()
    client = GA4Client(token_source)

    return Aggregator(provider, MetricFetcher(client))


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_redis()
    app.state.aggregator = build_aggregator()
    start_scheduler(app.state.aggregator, settings.PREWARM_INTERVAL_S)
    yield
    stop_scheduler()
    await app.state.aggregator.fetcher.client.aclose()
    if redis_client:
        await redis_client.aclose()


app = FastAPI(
    title="Brand Pulse API",
    description="Active users per brand (now / today / 30d / 365d) from Google Analytics 4.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


@app.exception_handler(ConfigUnavailable)
async def config_unavailable_handler(request: Request, exc: ConfigUnavailable):
    log.error(f"No brand configuration available: {exc}")
    return JSONResponse(status_code=503, content=unavailable_response(str(exc)))


@app.exception_handler(UnknownBrand)
async def unknown_brand_handler(request: Request, exc: UnknownBrand):
    return JSONResponse(status_code=404, content={"error": str(exc), "brand": exc.brand})


@app.get("/")
async def root():
    return {"status": "ok", "docs": "/docs", "api": "/api/all/active"}


@app.get("/health")
async def health(aggregator: Aggregator = Depends(get_aggregator)):
    r = await get_redis()
    return {
        "status":        "healthy",
        "redis":         "connected" if r else "unavailable",
        "cache_entries": len(aggregator.cache.store),
        "timestamp":     int(time.time()),
    }


@app.get("/api/all/active", tags=["Active users"])
async def all_active(
    cache: Optional[str] = Query(None, description="'false' bypasses every cache for this request"),
    aggregator: Aggregator = Depends(get_aggregator),
):
    return await get_all_active_response(aggregator, cache)


@app.get("/api/active-now/{brand}", tags=["Active users"])
async def active_now(
    brand: str,
    intervalms: Optional[str] = Query(None, description="Refresh interval in ms (min 5000)"),
    cache: Optional[str] = Query(None, description="'false' bypasses the cache"),
    aggregator: Aggregator = Depends(get_aggregator),
):
    try:
        return await get_active_now_response(aggregator, brand, intervalms, cache)
    except ValueError as e:
        raise HTTPException(400, str(e))


@app.get("/api/active-today/{brand}", tags=["Active users"])
async def active_today(
    brand: str,
    cache: Optional[str] = Query(None, description="'false' bypasses the cache"),
    aggregator: Aggregator = Depends(get_aggregator),
):
    return await _active_horizon(aggregator, brand, Horizon.TODAY, cache)


@app.get("/api/active-30-days/{brand}", tags=["Active users"])
async def active_30_days(
    brand: str,
    cache: Optional[str] = Query(None, description="'false' bypasses the cache"),
    aggregator: Aggregator = Depends(get_aggregator),
):
    return await _active_horizon(aggregator, brand, Horizon.DAYS30, cache)


@app.get("/api/active-365-days/{brand}", tags=["Active users"])
async def active_365_days(
    brand: str,
    cache: Optional[str] = Query(None, description="'false' bypasses the cache"),
    aggregator: Aggregator = Depends(get_aggregator),
):
    return await _active_horizon(aggregator, brand, Horizon.DAYS365, cache)


async def _active_horizon(aggregator: Aggregator, brand: str, horizon: Horizon, cache: Optional[str]):
    try:
        return await get_active_horizon_response(aggregator, brand, horizon, cache)
    except ValueError as e:
        raise HTTPException(400, str(e))


@app.get("/api/scheduler", tags=["Service"])
async def scheduler_status():
    return get_scheduler_status()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=settings.PORT, reload=False, log_level="info")

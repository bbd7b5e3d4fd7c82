"""
Brand Pulse — Metric Fetcher
─────────────────────────────
One upstream query for one (property, horizon) pair, normalised to a number.

    today  → runReport  today .. today
    30d    → runReport  30daysAgo .. today
    365d   → runReport  365daysAgo .. today
    now    → runRealtimeReport (no date range, no dimension filter)

fetch() never raises for upstream trouble; it returns a FetchResult whose
error is a classified FetchError. Only bad caller input raises (ValueError).
The per-call timeout is the client's: it bounds the HTTP exchange, not
the time a call spends queued behind the rate limiter.
"""

import asyncio
import logging
from typing import Optional

import httpx
from google.auth.exceptions import GoogleAuthError

from pulse_engine.analytics.client import AnalyticsApiError, AnalyticsClient, DateRange
from pulse_engine.analytics.decoder import decode_value
from pulse_engine.errors import FetchError
from pulse_engine.models.brand import DimensionFilter, Horizon
from pulse_engine.models.result import FetchResult

log = logging.getLogger("pulse.fetcher")

METRIC = "activeUsers"

DATE_RANGES = {
    Horizon.TODAY:   DateRange("today", "today"),
    Horizon.DAYS30:  DateRange("30daysAgo", "today"),
    Horizon.DAYS365: DateRange("365daysAgo", "today"),
}


def classify(exc: BaseException, property_id: str) -> FetchError:
    """Map whatever the client raised onto the FetchError taxonomy."""
    if isinstance(exc, FetchError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return FetchError(FetchError.TIMEOUT, f"properties/{property_id} timed out", exc)
    if isinstance(exc, httpx.TransportError):
        return FetchError(FetchError.NETWORK, f"properties/{property_id}: {exc!r}", exc)
    if isinstance(exc, AnalyticsApiError):
        if exc.status_code in (403, 404):
            return FetchError(FetchError.UNKNOWN_PROPERTY,
                              f"properties/{property_id} not found or not accessible", exc)
        return FetchError(FetchError.UPSTREAM, str(exc), exc)
    if isinstance(exc, ValueError):
        return FetchError(FetchError.MALFORMED, f"properties/{property_id}: {exc}", exc)
    if isinstance(exc, GoogleAuthError):
        return FetchError(FetchError.UPSTREAM, f"auth failed: {exc}", exc)
    return FetchError(FetchError.UPSTREAM, repr(exc), exc)


class MetricFetcher:

    def __init__(self, client: AnalyticsClient):
        self.client = client

    async def fetch(
        self,
        property_id: str,
        horizon: Horizon,
        filter: Optional[DimensionFilter] = None,
    ) -> FetchResult:
        if not property_id:
            raise ValueError("property_id is required")
        horizon = Horizon(horizon)
        if horizon is Horizon.NOW and filter is not None:
            raise ValueError("Realtime reports do not support dimension filters")

        try:
            if horizon is Horizon.NOW:
                body = await self.client.run_realtime_report(property_id, METRIC)
            else:
                body = await self.client.run_report(
                    property_id,
                    DATE_RANGES[horizon],
                    METRIC,
                    filter.to_ga4() if filter else None,
                )
            value = decode_value(body)
        except Exception as e:
            error = classify(e, property_id)
            log.warning(f"properties/{property_id} {horizon.value}: {error}")
            return FetchResult.failure(error)

        log.info(f"properties/{property_id} {horizon.value}: {value}")
        return FetchResult.success(value)

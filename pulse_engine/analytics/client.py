"""
Brand Pulse — GA4 Analytics Client
───────────────────────────────────
Thin async wrapper over the Google Analytics 4 Data API (v1beta, REST).

  runReport          properties/{id}:runReport          today / 30d / 365d
  runRealtimeReport  properties/{id}:runRealtimeReport  now

Authentication uses a Google service account. Access tokens come from
google-auth; the refresh is a blocking HTTP call, so it runs in a worker
thread. A 401 forces one token refresh and one retry.

This module raises. Classifying failures into FetchError is the fetcher's job.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import google.auth.transport.requests
import httpx
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

from pulse_engine.orchestrator.rate_limiter import ApiLimiter
from pulse_engine.settings import GA4_API_BASE, UPSTREAM_TIMEOUT_S

log = logging.getLogger("pulse.ga4")

SCOPES = ["https://www.googleapis.com/auth/analytics.readonly"]


@dataclass(frozen=True)
class DateRange:
    start_date: str
    end_date:   str

    def to_ga4(self) -> dict:
        return {"startDate": self.start_date, "endDate": self.end_date}


class AnalyticsApiError(Exception):
    """Non-200 answer from the Data API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"GA4 API Error: {status_code} - {message}")
        self.status_code = status_code
        self.message     = message


class AnalyticsClient(ABC):
    """
    What the fetcher needs from an analytics backend. Both calls return the
    raw report body (a dict in GA4's JSON shape). Implementations put their
    own timeout on each upstream exchange.
    """

    @abstractmethod
    async def run_report(
        self,
        property_id: str,
        date_range: DateRange,
        metric: str = "activeUsers",
        dimension_filter: Optional[dict] = None,
    ) -> dict: ...

    @abstractmethod
    async def run_realtime_report(self, property_id: str, metric: str = "activeUsers") -> dict: ...

    async def aclose(self):
        pass


class ServiceAccountTokenSource:
    """Hands out bearer tokens for a service account, refreshing when expired."""

    def __init__(self, credentials: service_account.Credentials):
        self._credentials = credentials
        self._lock        = asyncio.Lock()

    @classmethod
    def from_json(cls, raw: str) -> "ServiceAccountTokenSource":
        info = json.loads(raw)
        creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
        return cls(creds)

    async def token(self, force: bool = False) -> str:
        async with self._lock:
            if force or not self._credentials.valid:
                request = google.auth.transport.requests.Request()
                await asyncio.to_thread(self._credentials.refresh, request)
                log.info("GA4 access token refreshed")
            return self._credentials.token


class GA4Client(AnalyticsClient):

    def __init__(
        self,
        token_source,
        http_client: Optional[httpx.AsyncClient] = None,
        api_base: str = GA4_API_BASE,
        timeout: float = UPSTREAM_TIMEOUT_S,
        limiter: Optional[ApiLimiter] = None,
    ):
        self.token_source = token_source
        self.api_base     = api_base.rstrip("/")
        self.timeout      = timeout
        self.limiter      = limiter or ApiLimiter()
        self._http        = http_client
        self._owns_http   = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                timeout=self.timeout,
            )
            self._owns_http = True
        return self._http

    async def aclose(self):
        if self._http is not None and self._owns_http:
            await self._http.aclose()

    async def _send(self, url: str, body: dict, token: str) -> httpx.Response:
        # The timeout bounds the HTTP exchange only, never the local queueing
        return await asyncio.wait_for(
            self._client().post(url, json=body, headers={"Authorization": f"Bearer {token}"},
                                timeout=self.timeout),
            timeout=self.timeout,
        )

    async def _post(self, api: str, property_id: str, method: str, body: dict) -> dict:
        url = f"{self.api_base}/properties/{property_id}:{method}"

        await self.limiter.acquire(api)
        async with self.limiter.requests:
            token = await self.token_source.token()
            r = await self._send(url, body, token)

            if r.status_code == 401:
                # Token expired or revoked, refresh and retry once
                token = await self.token_source.token(force=True)
                r = await self._send(url, body, token)

        if r.status_code != 200:
            raise AnalyticsApiError(r.status_code, _error_message(r))
        return r.json()

    async def run_report(
        self,
        property_id: str,
        date_range: DateRange,
        metric: str = "activeUsers",
        dimension_filter: Optional[dict] = None,
    ) -> dict:
        body = {
            "dateRanges":         [date_range.to_ga4()],
            "metrics":            [{"name": metric}],
            "metricAggregations": ["TOTAL"],
        }
        if dimension_filter:
            body["dimensionFilter"] = dimension_filter
        return await self._post("ga4_core", property_id, "runReport", body)

    async def run_realtime_report(self, property_id: str, metric: str = "activeUsers") -> dict:
        body = {
            "metrics":            [{"name": metric}],
            "metricAggregations": ["TOTAL"],
        }
        return await self._post("ga4_realtime", property_id, "runRealtimeReport", body)


def _error_message(r: httpx.Response) -> str:
    """GA4 wraps errors as {"error": {"code", "message", "status"}}."""
    try:
        err = r.json().get("error") or {}
        return err.get("message") or r.text[:200]
    except (ValueError, AttributeError):
        return r.text[:200]


class UnconfiguredTokenSource:
    """Stand-in when no service account is configured; every call fails as an auth error."""

    async def token(self, force: bool = False) -> str:
        raise GoogleAuthError("GOOGLE_SERVICE_ACCOUNT_JSON not set")

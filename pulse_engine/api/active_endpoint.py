"""
Brand Pulse — Active Users Endpoints
─────────────────────────────────────
/api/all/active                 every brand × every horizon
/api/active-now/{brand}         realtime only, per requested interval
/api/active-today/{brand}       one historical horizon of one brand
/api/active-30-days/{brand}     (same cache entries as the snapshot)
/api/active-365-days/{brand}

Handlers are framework-free: they take the aggregator and raw query
values, return JSON-serialisable dicts, and let domain errors through
for the app to map onto status codes.
"""

import logging
import time
from typing import Optional

from pulse_engine.models.brand import Horizon
from pulse_engine.orchestrator.aggregator import Aggregator

log = logging.getLogger("pulse.api.active")

# Field each single-horizon endpoint reports its value under
HORIZON_FIELDS = {
    Horizon.TODAY:   "activeToday",
    Horizon.DAYS30:  "activeLast30Days",
    Horizon.DAYS365: "activeLast365Days",
}


def wants_bypass(cache: Optional[str]) -> bool:
    """`?cache=false` bypasses every cache layer for this request."""
    return (cache or "").strip().lower() == "false"


async def get_all_active_response(aggregator: Aggregator, cache: Optional[str] = None) -> dict:
    bypass = wants_bypass(cache)
    t0     = time.monotonic()
    snap   = await aggregator.snapshot(bypass_cache=bypass)

    result = snap.to_dict()
    result["_served_from"] = "upstream" if bypass else "cache"
    result["_duration_ms"] = int((time.monotonic() - t0) * 1000)
    if snap.errors:
        log.warning(f"Snapshot served with errors for {sorted(snap.errors)}")
    return result


async def get_active_now_response(
    aggregator: Aggregator,
    brand: str,
    intervalms: Optional[str] = None,
    cache: Optional[str] = None,
) -> dict:
    result = await aggregator.active_now(
        brand.strip(),
        refresh_interval_ms=intervalms,
        bypass_cache=wants_bypass(cache),
    )
    log.debug(f"{brand}: activeUsers={result['activeUsers']} cached={result['cached']}")
    return result


async def get_active_horizon_response(
    aggregator: Aggregator,
    brand: str,
    horizon: Horizon,
    cache: Optional[str] = None,
) -> dict:
    result = await aggregator.active_horizon(brand.strip(), horizon, bypass_cache=wants_bypass(cache))
    return {
        "brand":                 result["brand"],
        HORIZON_FIELDS[horizon]: result["activeUsers"],
        "horizon":               result["horizon"],
        "cached":                result["cached"],
    }


def unavailable_response(message: str) -> dict:
    """Well-formed body for when no brand configuration exists at all."""
    return {
        "data":         {},
        "errors":       {},
        "error":        message,
        "timestamp":    int(time.time()),
        "_served_from": "unavailable",
    }

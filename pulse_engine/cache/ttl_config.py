"""
Brand Pulse — TTL Configuration
────────────────────────────────
Single source of truth for all cache durations.
Organised by horizon: how fast each number actually moves.
"""

from pulse_engine.models.brand import Horizon
from pulse_engine.settings import ACTIVE_USERS_CACHE_MS, CONFIG_TTL_S, MIN_INTERVAL_MS

# ── Per-horizon TTL (seconds) ─────────────────────────────────

TTL = {
    # Realtime, dashboards tick on this
    Horizon.NOW:     ACTIVE_USERS_CACHE_MS / 1000,   # 1 minute unless overridden

    # Intraday total, moves steadily through the day
    Horizon.TODAY:   5 * 60,                         # 5 minutes

    # Long windows, a few minutes of drift is invisible
    Horizon.DAYS30:  30 * 60,                        # 30 minutes
    Horizon.DAYS365: 30 * 60,                        # 30 minutes
}

# ── Brand configuration documents ─────────────────────────────
CONFIG_TTL = CONFIG_TTL_S   # 10 minutes by default


def clamp_interval_ms(interval_ms=None) -> int:
    """Resolve a requested `now` refresh interval, floor-clamped to MIN_INTERVAL_MS."""
    if interval_ms is None:
        return ACTIVE_USERS_CACHE_MS
    try:
        interval_ms = int(float(interval_ms))
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"Invalid refresh interval: {interval_ms!r}")
    return max(interval_ms, MIN_INTERVAL_MS)

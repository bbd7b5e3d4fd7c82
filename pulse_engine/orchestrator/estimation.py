"""
Brand Pulse — Realtime Estimation
──────────────────────────────────
GA4 realtime reports do not accept the dimension filters some brands need,
and realtime calls can fail. In both cases "active now" is approximated from
the day's total: one day holds 48 half-hour windows, and realtime counts
users active in roughly the last 30 minutes.

    estimate(today) = max(1, round_half_up(today / 48))

estimate(0) == 1 is kept on purpose: a brand with zero traffic today still
reports one active user. This is a candidate for correction, not a feature.
"""

import math
from typing import Union

WINDOWS_PER_DAY = 48
FLOOR           = 1


def estimate(today_value: Union[int, float]) -> int:
    """Approximate a 30-minute realtime count from a full-day total (halves round up)."""
    today_value = max(0, today_value)
    return max(FLOOR, math.floor(today_value / WINDOWS_PER_DAY + 0.5))

"""
Brand Pulse — Snapshot Model
─────────────────────────────
Canonical structure of a combined active-users result.
This is what /api/all/active returns.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Union

Number = Union[int, float]


@dataclass
class BrandStats:
    now:     Number = 0
    today:   Number = 0
    days30:  Number = 0
    days365: Number = 0

    def to_dict(self) -> dict:
        return {
            "now":   self.now,
            "today": self.today,
            "30d":   self.days30,
            "365d":  self.days365,
        }


@dataclass
class Snapshot:
    """
    One aggregation cycle over every known brand.
    `errors` lists the keys whose refresh failed this cycle, e.g.
    {"acme": {"30d": "timeout: ..."}}; their values are the retained ones.
    """
    data:      Dict[str, BrandStats] = field(default_factory=dict)
    errors:    Dict[str, Dict[str, str]] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "data":      {brand: stats.to_dict() for brand, stats in self.data.items()},
            "errors":    self.errors,
            "timestamp": int(self.timestamp),
        }


def _fmt_age(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    return f"{seconds // 3600}h"

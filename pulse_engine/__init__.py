"""
Brand Pulse
────────────
Active-users aggregation for many brands over Google Analytics 4:

    from pulse_engine import Aggregator
    snap = await aggregator.snapshot(bypass_cache=False)
    return snap.to_dict()
"""

from .orchestrator.aggregator import Aggregator
from .models.snapshot import Snapshot, BrandStats

__all__ = ["Aggregator", "Snapshot", "BrandStats"]

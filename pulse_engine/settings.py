"""
Brand Pulse — Settings
───────────────────────
Environment-driven configuration. Values are read once at import time
(after .env is loaded) and exposed as module constants.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── Upstream (GA4 Data API) ───────────────────────────────────
GOOGLE_SERVICE_ACCOUNT_JSON = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON", "")
GA4_PROPERTY_ID             = os.getenv("GA4_PROPERTY_ID", "")
GA4_API_BASE                = os.getenv("GA4_API_BASE", "https://analyticsdata.googleapis.com/v1beta")
UPSTREAM_TIMEOUT_S          = float(os.getenv("UPSTREAM_TIMEOUT_S", "8"))

# ── Realtime interval ─────────────────────────────────────────
ACTIVE_USERS_CACHE_MS = int(os.getenv("ACTIVE_USERS_CACHE_MS", "60000"))
MIN_INTERVAL_MS       = int(os.getenv("MIN_INTERVAL_MS", "5000"))

# ── Brand configuration sources ───────────────────────────────
CONFIG_SOURCE_URL   = os.getenv("CONFIG_SOURCE_URL", "")
REDIS_URL           = os.getenv("REDIS_URL", "")
CONFIG_TTL_S        = int(os.getenv("CONFIG_TTL_S", "600"))
DEFAULT_BRANDS_PATH = Path(os.getenv(
    "DEFAULT_BRANDS_PATH",
    str(Path(__file__).parent / "data" / "default_brands.json"),
))

# ── Service ───────────────────────────────────────────────────
PREWARM_INTERVAL_S = int(os.getenv("PREWARM_INTERVAL_S", "0"))   # 0 = disabled
CORS_ORIGINS       = os.getenv("CORS_ORIGINS", "*")
PORT               = int(os.getenv("PORT", "8000"))

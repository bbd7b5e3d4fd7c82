"""
Brand Pulse — Error Taxonomy
─────────────────────────────
  FetchError         one (brand, horizon) upstream call failed; recovered locally
  ConfigUnavailable  no brand configuration could be obtained, not even a fallback
  UnknownBrand       a requested brand has no property mapping
"""

from typing import Optional


class PulseError(Exception):
    """Base class for every error raised by pulse_engine."""


class FetchError(PulseError):
    """
    An upstream analytics call failed.

    kind is one of: "timeout", "network", "malformed", "unknown_property",
    "upstream". The triggering exception, if any, is kept on `cause`.
    """

    TIMEOUT          = "timeout"
    NETWORK          = "network"
    MALFORMED        = "malformed"
    UNKNOWN_PROPERTY = "unknown_property"
    UPSTREAM         = "upstream"

    def __init__(self, kind: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.kind    = kind
        self.message = message
        self.cause   = cause

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class ConfigUnavailable(PulseError):
    """Brand/property mapping could not be obtained from any source."""


class UnknownBrand(PulseError):
    def __init__(self, brand: str):
        super().__init__(f"Unknown brand: {brand}")
        self.brand = brand

"""
Brand Pulse — Fetch Result
───────────────────────────
Every upstream call returns a FetchResult. It holds either a value or a
FetchError, never both, so callers branch on `ok` instead of catching.
"""

from dataclasses import dataclass
from typing import Optional, Union

from pulse_engine.errors import FetchError

Number = Union[int, float]

@dataclass(frozen=True)
class FetchResult:
    value:     Optional[Number] = None
    error:     Optional[FetchError] = None
    source:    str = "ga4"

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Number, source: str = "ga4") -> "FetchResult":
        return cls(value=value, source=source)

    @classmethod
    def failure(cls, error: FetchError) -> "FetchResult":
        return cls(error=error, source="error")

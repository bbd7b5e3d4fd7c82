"""
Brand Pulse — Brand Model
──────────────────────────
A brand maps to one GA4 property and, optionally, a dimension filter that
narrows the property's traffic down to the brand (e.g. a pagePath prefix
on a shared property).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Horizon(str, Enum):
    NOW     = "now"
    TODAY   = "today"
    DAYS30  = "30d"
    DAYS365 = "365d"


HISTORICAL_HORIZONS = (Horizon.TODAY, Horizon.DAYS30, Horizon.DAYS365)

MATCH_TYPES = {
    "MATCH_TYPE_UNSPECIFIED",
    "EXACT",
    "CONTAINS",
    "BEGINS_WITH",
    "ENDS_WITH",
}


@dataclass(frozen=True)
class DimensionFilter:
    field_name:     str
    value:          str
    match_type:     str = "MATCH_TYPE_UNSPECIFIED"
    case_sensitive: bool = False

    def __post_init__(self):
        if not self.field_name:
            raise ValueError("Dimension filter needs a field name")
        if self.match_type not in MATCH_TYPES:
            raise ValueError(f"Unsupported match type: {self.match_type}")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DimensionFilter":
        """
        Accepts the GA4 shape stored in the config documents:
            {"fieldName": ..., "stringFilter": {"matchType", "value", "caseSensitive"}}
        and the flat shorthand:
            {"field": ..., "matchType": ..., "value": ..., "caseSensitive": ...}
        """
        string_filter = d.get("stringFilter") or d
        return cls(
            field_name=d.get("fieldName") or d.get("field") or "",
            value=str(string_filter.get("value", "")),
            match_type=(string_filter.get("matchType") or "MATCH_TYPE_UNSPECIFIED").upper(),
            case_sensitive=bool(string_filter.get("caseSensitive", False)),
        )

    def to_ga4(self) -> dict:
        """GA4 FilterExpression for the runReport dimensionFilter field."""
        return {
            "filter": {
                "fieldName": self.field_name,
                "stringFilter": {
                    "matchType":     self.match_type,
                    "value":         self.value,
                    "caseSensitive": self.case_sensitive,
                },
            }
        }


@dataclass(frozen=True)
class Brand:
    key:         str
    property_id: str
    filter:      Optional[DimensionFilter] = None
    name:        Optional[str] = None
    image:       Optional[str] = None
    group:       Optional[str] = None

    @property
    def is_filtered(self) -> bool:
        return self.filter is not None

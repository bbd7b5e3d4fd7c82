"""
Brand Pulse — GA4 Response Decoder
───────────────────────────────────
Turns a runReport / runRealtimeReport JSON body into one of:

    Totals(value)  the report carried a totals row          (preferred)
    Rows(value)    no totals, but the first data row has it
    Empty          neither; GA4 omits rows when there was no activity

Empty decodes to 0. It is "nobody was here", not a failure.
Anything structurally off raises FetchError(kind="malformed").
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from pulse_engine.errors import FetchError

Number = Union[int, float]


@dataclass(frozen=True)
class Totals:
    value: Number


@dataclass(frozen=True)
class Rows:
    value: Number


@dataclass(frozen=True)
class Empty:
    value: Number = 0


Decoded = Union[Totals, Rows, Empty]


def _malformed(msg: str) -> FetchError:
    return FetchError(FetchError.MALFORMED, msg)


def _first_metric(rows: Any, section: str) -> Optional[Number]:
    """First metricValues[0].value of a rows/totals list, or None if absent."""
    if rows is None:
        return None
    if not isinstance(rows, list):
        raise _malformed(f"'{section}' is not a list")
    if not rows:
        return None
    first = rows[0]
    if not isinstance(first, dict):
        raise _malformed(f"'{section}[0]' is not an object")
    metric_values = first.get("metricValues")
    if not metric_values:
        return None
    if not isinstance(metric_values, list) or not isinstance(metric_values[0], dict):
        raise _malformed(f"'{section}[0].metricValues' is malformed")
    raw = metric_values[0].get("value")
    if raw is None:
        return None
    return _to_number(raw, section)


def _to_number(raw: Any, section: str) -> Number:
    try:
        number = float(raw)
    except (TypeError, ValueError):
        raise _malformed(f"non-numeric metric value in '{section}': {raw!r}")
    if number != number or number in (float("inf"), float("-inf")):
        raise _malformed(f"non-finite metric value in '{section}': {raw!r}")
    if number < 0:
        raise _malformed(f"negative metric value in '{section}': {raw!r}")
    return int(number) if number.is_integer() else number


def decode_report(body: Any) -> Decoded:
    if not isinstance(body, dict):
        raise _malformed(f"report body is {type(body).__name__}, expected object")

    totals = _first_metric(body.get("totals"), "totals")
    if totals is not None:
        return Totals(totals)

    first_row = _first_metric(body.get("rows"), "rows")
    if first_row is not None:
        return Rows(first_row)

    return Empty()


def decode_value(body: Any) -> Number:
    return decode_report(body).value

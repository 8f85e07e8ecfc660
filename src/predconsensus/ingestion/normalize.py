"""Raw per-source reading -> canonical Observation. Pure functions, no state."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from predconsensus.errors import InvalidInput
from predconsensus.models import Observation, SourceMarket

# Field names seen across platforms for the YES probability
_PROBABILITY_KEYS = ("probability", "prob", "yes_price", "price", "last_price")


def _float(value: Any, field: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} is not a number: {value!r}") from None
    if not math.isfinite(out):
        raise InvalidInput(f"{field} is not finite: {value!r}")
    return out


def _optional_float(value: Any, field: str) -> float | None:
    if value is None or value == "":
        return None
    return _float(value, field)


def _from_epoch_ms(ms: int | float, value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise InvalidInput(f"timestamp out of range: {value!r}") from None


def parse_timestamp(value: Any) -> datetime:
    """Accept datetime, ISO-8601 string or epoch milliseconds; return an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise InvalidInput(f"not a timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        dt = _from_epoch_ms(value, value)
    elif isinstance(value, str) and value.strip():
        s = value.strip()
        if s.isdigit():
            dt = _from_epoch_ms(int(s), value)
        else:
            try:
                dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                raise InvalidInput(f"timestamp is not ISO-8601: {value!r}") from None
    else:
        raise InvalidInput(f"timestamp is missing or malformed: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_probability(raw: dict[str, Any]) -> float:
    """Extract the YES probability. Values flagged as percent (0-100) are rescaled."""
    value = None
    for key in _PROBABILITY_KEYS:
        if raw.get(key) is not None:
            value = raw[key]
            break
    if value is None:
        raise InvalidInput("reading has no probability field")
    p = _float(value, "probability")
    if raw.get("percent"):
        p = p / 100.0
    if not 0.0 <= p <= 1.0:
        raise InvalidInput(f"probability outside [0, 1]: {p}")
    return p


def normalize_reading(raw: dict[str, Any], binding: SourceMarket) -> Observation:
    """Convert a raw reading for the given source market binding to an Observation.

    Raises InvalidInput for a bad probability, timestamp, volume or identifier.
    """
    if not binding.id or not binding.source_id:
        raise InvalidInput("source market binding has no id")
    probability = parse_probability(raw)
    observed_at = parse_timestamp(raw.get("observed_at") or raw.get("timestamp"))
    volume = _optional_float(raw.get("volume"), "volume")
    trade_count = raw.get("trade_count")
    if trade_count is not None:
        trade_count = int(_float(trade_count, "trade_count"))
    try:
        return Observation(
            source_market_id=binding.id,
            source_id=binding.source_id,
            market_id=binding.market_id,
            probability=probability,
            volume=volume,
            trade_count=trade_count,
            observed_at=observed_at,
        )
    except ValidationError as e:
        raise InvalidInput(str(e)) from e


def make_observation(
    source_market_id: str,
    source_id: str,
    probability: float,
    observed_at: Any,
    market_id: str | None = None,
    volume: float | None = None,
    trade_count: int | None = None,
) -> Observation:
    """Build a validated Observation from already-separated fields."""
    if not source_market_id or not source_id:
        raise InvalidInput("source_market_id and source_id are required")
    p = _float(probability, "probability")
    if not 0.0 <= p <= 1.0:
        raise InvalidInput(f"probability outside [0, 1]: {p}")
    try:
        return Observation(
            source_market_id=source_market_id,
            source_id=source_id,
            market_id=market_id,
            probability=p,
            volume=volume,
            trade_count=trade_count,
            observed_at=parse_timestamp(observed_at),
        )
    except ValidationError as e:
        raise InvalidInput(str(e)) from e

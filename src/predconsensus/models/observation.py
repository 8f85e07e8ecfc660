"""Observation - canonical point-in-time probability reading."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Observation(BaseModel):
    """Immutable reading for one source market. Keyed by (source_market_id, observed_at)."""

    model_config = ConfigDict(frozen=True)

    source_market_id: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1)
    market_id: str | None = None
    probability: float = Field(..., ge=0, le=1, description="Probability in [0, 1]")
    volume: float | None = Field(None, ge=0)
    trade_count: int | None = Field(None, ge=0)
    observed_at: datetime

"""Source, Category, Market, SourceMarket - reference entities."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SourceType(str, Enum):
    PREDICTION_MARKET = "prediction_market"
    FORECAST_PLATFORM = "forecast_platform"
    ANALYST = "analyst"


class MarketStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class Source(BaseModel):
    """Forecasting provider. Immutable except for the active flag (replaced via model_copy)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    name: str = ""
    source_type: SourceType = SourceType.PREDICTION_MARKET
    active: bool = True


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    name: str = ""


class Market(BaseModel):
    """Unified question tracked across sources."""

    id: str = Field(..., min_length=1)
    title: str = ""
    category_id: str | None = None
    status: MarketStatus = MarketStatus.ACTIVE
    resolution_value: float | None = Field(None, ge=0, le=1)
    resolution_date: datetime | None = None


class SourceMarket(BaseModel):
    """One source's listing bound to a unified market; carries the latest known state."""

    id: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1)
    external_id: str = Field(..., min_length=1)
    market_id: str | None = None
    title: str = ""
    current_probability: float | None = Field(None, ge=0, le=1)
    volume: float | None = None
    liquidity: float | None = None
    last_observed_at: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

"""AccuracyRecord, PredictionScore - resolved-prediction scoring."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PredictionScore(BaseModel):
    """One source market's last call scored against the market's resolution. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_market_id: str
    source_id: str
    market_id: str
    category_id: str | None = None
    predicted_probability: float = Field(..., ge=0, le=1)
    actual_outcome: float = Field(..., ge=0, le=1)
    brier_score: float = Field(..., ge=0, le=1)
    resolved_at: datetime


class AccuracyRecord(BaseModel):
    """Aggregate accuracy for (source, category); category_id None is the source's global record."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    category_id: str | None = None
    total_resolved: int = Field(0, ge=0)
    correct_predictions: int = Field(0, ge=0)
    brier_score: float | None = Field(None, ge=0, le=1)
    accuracy_pct: float | None = Field(None, ge=0, le=100)
    last_calculated_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.source_id, self.category_id)

"""ConsensusSnapshot, MovementEvent - engine data products."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ConsensusSnapshot(BaseModel):
    """One aggregation run for one market. Append-only; corrections are new snapshots."""

    model_config = ConfigDict(frozen=True)

    market_id: str
    time: datetime
    consensus_probability: float = Field(..., ge=0, le=1)
    confidence_score: float = Field(..., ge=0, le=1)
    source_count: int = Field(..., ge=1)
    agreement_score: float | None = Field(None, ge=0, le=1)
    outlier_source_ids: list[str] = Field(default_factory=list)
    # source_id -> normalized weight; outliers carry 0.0
    weights: dict[str, float] = Field(default_factory=dict)


class MovementEvent(BaseModel):
    """Significant probability move between two consecutive readings of one source market."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_market_id: str
    market_id: str | None = None
    source_id: str | None = None
    probability_before: float = Field(..., ge=0, le=1)
    probability_after: float = Field(..., ge=0, le=1)
    change_pct: float = Field(..., ge=-1, le=1, description="Signed absolute change (0.05 = 5 points)")
    detected_at: datetime
    explanation: str | None = None

    @property
    def direction(self) -> str:
        return "UP" if self.change_pct > 0 else "DOWN"

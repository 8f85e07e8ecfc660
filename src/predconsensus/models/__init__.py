"""Canonical schema (Pydantic) - reference entities, observations, scores, snapshots."""

from predconsensus.models.accuracy import AccuracyRecord, PredictionScore
from predconsensus.models.consensus import ConsensusSnapshot, MovementEvent
from predconsensus.models.market import (
    Category,
    Market,
    MarketStatus,
    Source,
    SourceMarket,
    SourceType,
)
from predconsensus.models.observation import Observation

__all__ = [
    "Source",
    "SourceType",
    "Category",
    "Market",
    "MarketStatus",
    "SourceMarket",
    "Observation",
    "PredictionScore",
    "AccuracyRecord",
    "ConsensusSnapshot",
    "MovementEvent",
]

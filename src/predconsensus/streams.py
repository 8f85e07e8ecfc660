"""Output streams handed to storage: snapshots, accuracy records, scores, movements."""

from __future__ import annotations

from threading import Lock
from typing import Protocol

from predconsensus.models import (
    AccuracyRecord,
    Category,
    ConsensusSnapshot,
    Market,
    MovementEvent,
    Observation,
    PredictionScore,
    Source,
    SourceMarket,
)


class StreamSink(Protocol):
    """Consumer of engine data products (e.g. DuckDBSink)."""

    def write_source(self, source: Source) -> None: ...
    def write_category(self, category: Category) -> None: ...
    def write_source_market(self, source_market: SourceMarket) -> None: ...
    def write_observation(self, obs: Observation) -> None: ...
    def write_snapshot(self, snapshot: ConsensusSnapshot) -> None: ...
    def write_movement(self, event: MovementEvent) -> None: ...
    def write_prediction_score(self, score: PredictionScore) -> None: ...
    def write_accuracy_record(self, record: AccuracyRecord) -> None: ...
    def write_market(self, market: Market) -> None: ...


class MemorySink:
    """Collects every product in lists. Thread-safe."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.observations: list[Observation] = []
        self.snapshots: list[ConsensusSnapshot] = []
        self.movements: list[MovementEvent] = []
        self.scores: list[PredictionScore] = []
        self.accuracy_records: list[AccuracyRecord] = []
        self.markets: list[Market] = []
        self.reference: list[Source | Category | SourceMarket] = []

    def write_source(self, source: Source) -> None:
        with self._lock:
            self.reference.append(source)

    def write_category(self, category: Category) -> None:
        with self._lock:
            self.reference.append(category)

    def write_source_market(self, source_market: SourceMarket) -> None:
        with self._lock:
            self.reference.append(source_market)

    def write_observation(self, obs: Observation) -> None:
        with self._lock:
            self.observations.append(obs)

    def write_snapshot(self, snapshot: ConsensusSnapshot) -> None:
        with self._lock:
            self.snapshots.append(snapshot)

    def write_movement(self, event: MovementEvent) -> None:
        with self._lock:
            self.movements.append(event)

    def write_prediction_score(self, score: PredictionScore) -> None:
        with self._lock:
            self.scores.append(score)

    def write_accuracy_record(self, record: AccuracyRecord) -> None:
        with self._lock:
            self.accuracy_records.append(record)

    def write_market(self, market: Market) -> None:
        with self._lock:
            self.markets.append(market)

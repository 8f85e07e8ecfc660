"""Market resolution -> one PredictionScore per source market -> accuracy records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any

import structlog

from predconsensus.accuracy.brier import OutcomePolicy, brier_score_single, interpret_outcome
from predconsensus.accuracy.tracker import AccuracyTracker
from predconsensus.catalog import Catalog
from predconsensus.errors import InvalidInput, NoObservation
from predconsensus.ingestion.normalize import parse_timestamp
from predconsensus.models import (
    AccuracyRecord,
    Market,
    MarketStatus,
    Observation,
    PredictionScore,
    SourceMarket,
)
from predconsensus.streams import StreamSink

log = structlog.get_logger(__name__)


@dataclass
class ResolutionResult:
    """Outcome of one resolve() call."""

    market_id: str
    already_resolved: bool = False
    scores: list[PredictionScore] = field(default_factory=list)
    records: list[AccuracyRecord] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    market: Market | None = None


class ResolutionProcessor:
    """Scores every listing's last known call and feeds the accuracy tracker.

    The market is marked resolved only after all eligible scores are recorded, so a reader
    never sees a resolved market with an incomplete accuracy picture. Resolving an already
    resolved market is a no-op.
    """

    def __init__(
        self,
        catalog: Catalog,
        tracker: AccuracyTracker,
        outcome_policy: OutcomePolicy | str = OutcomePolicy.LITERAL,
        sink: StreamSink | None = None,
    ) -> None:
        self.catalog = catalog
        self.tracker = tracker
        self.outcome_policy = OutcomePolicy(outcome_policy)
        self.sink = sink
        self._locks: dict[str, Lock] = {}
        self._guard = Lock()

    def _market_lock(self, market_id: str) -> Lock:
        with self._guard:
            lock = self._locks.get(market_id)
            if lock is None:
                lock = self._locks[market_id] = Lock()
            return lock

    def last_known_call(self, source_market: SourceMarket, resolved_at: datetime) -> Observation:
        """Most recent reading at or before resolution. Raises NoObservation if there is none."""
        obs = self.catalog.observation_at_or_before(source_market.id, resolved_at)
        if obs is None:
            raise NoObservation(source_market.id)
        return obs

    def score(
        self,
        source_market: SourceMarket,
        market: Market,
        resolution_value: float,
        resolved_at: datetime,
    ) -> PredictionScore:
        obs = self.last_known_call(source_market, resolved_at)
        actual = interpret_outcome(resolution_value, self.outcome_policy)
        return PredictionScore(
            source_market_id=source_market.id,
            source_id=source_market.source_id,
            market_id=market.id,
            category_id=market.category_id,
            predicted_probability=obs.probability,
            actual_outcome=actual,
            brier_score=brier_score_single(obs.probability, actual),
            resolved_at=resolved_at,
        )

    def _publish(self, score: PredictionScore, records: list[AccuracyRecord]) -> None:
        self.sink.write_prediction_score(score)
        for rec in records:
            self.sink.write_accuracy_record(rec)

    def resolve(self, market_id: str, resolution_value: float, resolved_at: Any) -> ResolutionResult:
        if not 0.0 <= resolution_value <= 1.0:
            raise InvalidInput(f"resolution value outside [0, 1]: {resolution_value}")
        when = parse_timestamp(resolved_at)
        with self._market_lock(market_id):
            market = self.catalog.market(market_id)
            if market.status == MarketStatus.RESOLVED:
                log.info("resolution_already_applied", market_id=market_id)
                return ResolutionResult(market_id=market_id, already_resolved=True, market=market)
            if market.status != MarketStatus.ACTIVE:
                raise InvalidInput(f"market {market_id} is {market.status.value}; cannot resolve")

            result = ResolutionResult(market_id=market_id)
            for sm in self.catalog.source_markets_for(market_id):
                if self.tracker.is_scored(sm.id, market_id):
                    continue
                try:
                    score = self.score(sm, market, resolution_value, when)
                except NoObservation as e:
                    log.warning("resolution_no_observation", market_id=market_id, source_market_id=e.source_market_id)
                    result.skipped.append(e.source_market_id)
                    continue
                # Persisted before the tracker commits; a failed write leaves the pair unscored
                records = self.tracker.record(score, publish=self._publish if self.sink is not None else None)
                result.scores.append(score)
                result.records.extend(records)

            result.market = self.catalog.mark_resolved(market_id, resolution_value, when)
            if self.sink is not None:
                self.sink.write_market(result.market)
            log.info(
                "market_resolved",
                market_id=market_id,
                value=resolution_value,
                scored=len(result.scores),
                skipped=len(result.skipped),
            )
            return result

"""ConsensusEngine - wires catalog, accuracy, weights, consensus, movement and resolution."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

import structlog

from predconsensus.accuracy.brier import OutcomePolicy
from predconsensus.accuracy.tracker import AccuracyTracker
from predconsensus.accuracy.weights import (
    EPSILON,
    MIN_RESOLVED,
    PRIOR_WEIGHT,
    W_MAX,
    W_MIN,
    WeightCalculator,
)
from predconsensus.catalog import Catalog
from predconsensus.consensus.aggregator import (
    CONFIDENCE_FULL_N,
    OUTLIER_THRESHOLD,
    AllOutlierFallback,
    ConsensusAggregator,
)
from predconsensus.errors import InsufficientData
from predconsensus.ingestion.normalize import normalize_reading
from predconsensus.models import (
    AccuracyRecord,
    Category,
    ConsensusSnapshot,
    Market,
    MarketStatus,
    MovementEvent,
    Observation,
    Source,
    SourceMarket,
)
from predconsensus.movement.detector import MOVEMENT_THRESHOLD, MOVEMENT_WINDOW, MovementDetector
from predconsensus.resolution.processor import ResolutionProcessor, ResolutionResult
from predconsensus.storage.accuracy import load_accuracy_records, load_scored_pairs
from predconsensus.streams import StreamSink

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from predconsensus.config import Settings

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConsensusEngine:
    """In-process consensus and accuracy engine.

    Every data product (observations, movements, snapshots, scores, accuracy records,
    market state) is handed to the optional sink as it is produced.
    """

    def __init__(
        self,
        sink: StreamSink | None = None,
        *,
        min_resolved: int = MIN_RESOLVED,
        prior_weight: float = PRIOR_WEIGHT,
        epsilon: float = EPSILON,
        min_weight: float = W_MIN,
        max_weight: float = W_MAX,
        outlier_threshold: float = OUTLIER_THRESHOLD,
        confidence_full_n: int = CONFIDENCE_FULL_N,
        all_outlier_fallback: AllOutlierFallback | str = AllOutlierFallback.SIMPLE_MEAN,
        movement_threshold: float = MOVEMENT_THRESHOLD,
        movement_window: timedelta = MOVEMENT_WINDOW,
        outcome_policy: OutcomePolicy | str = OutcomePolicy.LITERAL,
        aggregate_workers: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.sink = sink
        self.catalog = Catalog()
        self.tracker = AccuracyTracker(registry=self.catalog, clock=clock)
        self.weights = WeightCalculator(
            self.tracker,
            min_resolved=min_resolved,
            prior_weight=prior_weight,
            epsilon=epsilon,
            min_weight=min_weight,
            max_weight=max_weight,
        )
        self.aggregator = ConsensusAggregator(
            self.catalog,
            self.weights,
            outlier_threshold=outlier_threshold,
            confidence_full_n=confidence_full_n,
            all_outlier_fallback=all_outlier_fallback,
            clock=clock,
        )
        self.detector = MovementDetector(threshold=movement_threshold, window=movement_window)
        self.processor = ResolutionProcessor(self.catalog, self.tracker, outcome_policy=outcome_policy, sink=sink)
        self.aggregate_workers = max(1, aggregate_workers)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sink: StreamSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> ConsensusEngine:
        return cls(
            sink,
            min_resolved=settings.min_resolved,
            prior_weight=settings.prior_weight,
            epsilon=settings.weight_epsilon,
            min_weight=settings.min_weight,
            max_weight=settings.max_weight,
            outlier_threshold=settings.outlier_threshold,
            confidence_full_n=settings.confidence_full_n,
            all_outlier_fallback=settings.all_outlier_fallback,
            movement_threshold=settings.movement_threshold,
            movement_window=timedelta(hours=settings.movement_window_hours),
            outcome_policy=settings.outcome_policy,
            aggregate_workers=settings.aggregate_workers,
            clock=clock,
        )

    # --- reference data ---

    def add_source(self, source: Source) -> Source:
        source = self.catalog.add_source(source)
        if self.sink is not None:
            self.sink.write_source(source)
        return source

    def add_category(self, category: Category) -> Category:
        category = self.catalog.add_category(category)
        if self.sink is not None:
            self.sink.write_category(category)
        return category

    def add_market(self, market: Market) -> Market:
        market = self.catalog.add_market(market)
        if self.sink is not None:
            self.sink.write_market(market)
        return market

    def bind_source_market(self, source_market: SourceMarket) -> SourceMarket:
        source_market = self.catalog.bind_source_market(source_market)
        if self.sink is not None:
            self.sink.write_source_market(source_market)
        return source_market

    def set_source_active(self, source_id: str, active: bool) -> Source:
        source = self.catalog.set_source_active(source_id, active)
        if self.sink is not None:
            self.sink.write_source(source)
        return source

    def set_market_status(self, market_id: str, status: MarketStatus | str) -> Market:
        market = self.catalog.set_market_status(market_id, MarketStatus(status))
        if self.sink is not None:
            self.sink.write_market(market)
        return market

    # --- readings ---

    def ingest(self, obs: Observation) -> MovementEvent | None:
        """Record a reading; return the movement it triggers against the previous one, if any."""
        if obs.market_id is None:
            market_id = self.catalog.get_source_market(obs.source_market_id).market_id
            if market_id is not None:
                obs = obs.model_copy(update={"market_id": market_id})
        previous = self.catalog.record_observation(obs)
        if (
            previous is not None
            and previous.observed_at == obs.observed_at
            and previous.probability == obs.probability
        ):
            return None
        if self.sink is not None:
            self.sink.write_observation(obs)
        if previous is None:
            return None
        event = self.detector.detect(previous, obs)
        if event is not None and self.sink is not None:
            self.sink.write_movement(event)
        return event

    def ingest_reading(self, raw: dict[str, Any], source_slug: str, external_id: str) -> MovementEvent | None:
        """Normalize a raw per-source reading for a listing and ingest it."""
        source = self.catalog.source_by_slug(source_slug)
        binding = self.catalog.find_source_market(source.id, external_id)
        return self.ingest(normalize_reading(raw, binding))

    # --- consensus ---

    def _cycle_weights(self) -> WeightCalculator:
        # One accuracy snapshot per cycle so every market sees the same weights
        return self.weights.bind(self.tracker.view())

    def aggregate(
        self,
        market_id: str,
        at: datetime | None = None,
        weights: WeightCalculator | None = None,
    ) -> ConsensusSnapshot | None:
        snapshot = self.aggregator.aggregate(
            market_id,
            self.catalog.latest_observations(market_id),
            weights=weights or self._cycle_weights(),
            at=at,
        )
        if snapshot is not None and self.sink is not None:
            self.sink.write_snapshot(snapshot)
        return snapshot

    def aggregate_all(
        self,
        market_ids: list[str] | None = None,
        at: datetime | None = None,
        max_workers: int | None = None,
    ) -> dict[str, ConsensusSnapshot]:
        """Aggregate many markets (default: every active one) in parallel.

        Markets without live sources are left out of the result.
        """
        ids = sorted(market_ids if market_ids is not None else self.catalog.active_market_ids())
        if not ids:
            return {}
        weights = self._cycle_weights()
        workers = min(max_workers or self.aggregate_workers, len(ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="aggregate") as pool:
            results = list(pool.map(lambda m: self.aggregate(m, at=at, weights=weights), ids))
        out = {m: snap for m, snap in zip(ids, results) if snap is not None}
        log.info("aggregate_cycle", markets=len(ids), snapshots=len(out))
        return out

    def require_consensus(self, market_id: str, at: datetime | None = None) -> ConsensusSnapshot:
        snapshot = self.aggregate(market_id, at=at)
        if snapshot is None:
            raise InsufficientData(f"no live sources for market {market_id}")
        return snapshot

    # --- resolution and accuracy ---

    def resolve(self, market_id: str, resolution_value: float, resolved_at: Any) -> ResolutionResult:
        return self.processor.resolve(market_id, resolution_value, resolved_at)

    def weight_for(self, source_id: str, category_id: str | None = None) -> float:
        return self.weights.weight_for(source_id, category_id)

    def leaderboard(
        self,
        category_id: str | None = None,
        min_resolved: int | None = None,
        limit: int = 20,
    ) -> list[AccuracyRecord]:
        return self.tracker.leaderboard(
            category_id,
            min_resolved=self.weights.min_resolved if min_resolved is None else min_resolved,
            limit=limit,
        )

    def restore_from(self, conn: DuckDBPyConnection) -> int:
        """Reload accuracy records and already-scored pairs persisted by a DuckDBSink."""
        n = self.tracker.restore(load_accuracy_records(conn), load_scored_pairs(conn))
        log.info("accuracy_restored", records=n)
        return n

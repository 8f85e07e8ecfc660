"""Accuracy-weighted consensus over the latest reading per source, with median-based outliers."""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable

import structlog

from predconsensus.accuracy.weights import WeightCalculator
from predconsensus.catalog import Catalog
from predconsensus.models import ConsensusSnapshot, Observation

log = structlog.get_logger(__name__)

OUTLIER_THRESHOLD = 0.25
CONFIDENCE_FULL_N = 5
# Agreement used for the confidence term when only one source contributes
SINGLE_SOURCE_AGREEMENT = 1.0


class AllOutlierFallback(str, Enum):
    """What to average when every source is flagged (e.g. two sources far apart)."""

    SIMPLE_MEAN = "simple_mean"
    WEIGHTED_MEAN = "weighted_mean"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Contribution:
    """One source's input to a consensus run."""

    source_id: str
    source_market_id: str
    probability: float
    weight: float


@dataclass
class ConsensusResult:
    probability: float
    confidence: float
    agreement: float | None
    source_count: int
    weights: dict[str, float] = field(default_factory=dict)
    outliers: list[str] = field(default_factory=list)


def compute_consensus(
    contributions: Iterable[Contribution],
    outlier_threshold: float = OUTLIER_THRESHOLD,
    confidence_full_n: int = CONFIDENCE_FULL_N,
    all_outlier_fallback: AllOutlierFallback = AllOutlierFallback.SIMPLE_MEAN,
) -> ConsensusResult | None:
    """Pure consensus math. Returns None when nothing contributes.

    Outliers (further than outlier_threshold from the unweighted median) keep a 0.0 entry in
    the weight map and count toward source_count, but do not move the average.
    """
    rows = sorted(contributions, key=lambda c: c.source_id)
    if not rows:
        return None
    n = len(rows)
    median = statistics.median(c.probability for c in rows)
    outliers = [c.source_id for c in rows if abs(c.probability - median) > outlier_threshold]

    if len(outliers) == n:
        # Cannot discard everything: flag all, average all
        inliers = rows
        if all_outlier_fallback == AllOutlierFallback.WEIGHTED_MEAN:
            raw = {c.source_id: c.weight for c in rows}
        else:
            raw = {c.source_id: 1.0 for c in rows}
    else:
        flagged = set(outliers)
        inliers = [c for c in rows if c.source_id not in flagged]
        raw = {c.source_id: c.weight for c in inliers}

    total = sum(raw.values())
    if total <= 0:
        raw = {c.source_id: 1.0 for c in inliers}
        total = float(len(inliers))
    weights = {c.source_id: raw.get(c.source_id, 0.0) / total for c in rows}

    probability = sum(weights[c.source_id] * c.probability for c in inliers)
    lo = min(c.probability for c in inliers)
    hi = max(c.probability for c in inliers)
    probability = min(hi, max(lo, probability))

    # Spread is only meaningful across two or more averaged sources
    agreement: float | None = None
    if len(inliers) > 1:
        variance = sum(weights[c.source_id] * (c.probability - probability) ** 2 for c in inliers)
        agreement = min(1.0, max(0.0, 1.0 - math.sqrt(variance)))

    breadth = min(1.0, n / confidence_full_n) if confidence_full_n > 0 else 1.0
    confidence = (agreement if agreement is not None else SINGLE_SOURCE_AGREEMENT) * breadth
    return ConsensusResult(
        probability=probability,
        confidence=min(1.0, max(0.0, confidence)),
        agreement=agreement,
        source_count=n,
        weights=weights,
        outliers=outliers,
    )


class ConsensusAggregator:
    """Builds a ConsensusSnapshot for one market from the latest reading per source market.

    Holds no mutable state: many markets may be aggregated in parallel.
    """

    def __init__(
        self,
        catalog: Catalog,
        weights: WeightCalculator,
        outlier_threshold: float = OUTLIER_THRESHOLD,
        confidence_full_n: int = CONFIDENCE_FULL_N,
        all_outlier_fallback: AllOutlierFallback | str = AllOutlierFallback.SIMPLE_MEAN,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.catalog = catalog
        self.weights = weights
        self.outlier_threshold = outlier_threshold
        self.confidence_full_n = confidence_full_n
        self.all_outlier_fallback = AllOutlierFallback(all_outlier_fallback)
        self._clock = clock

    def contributions(
        self,
        market_id: str,
        observations: Iterable[Observation],
        weights: WeightCalculator | None = None,
    ) -> list[Contribution]:
        """Latest reading per active source for the market, each with its accuracy weight."""
        calc = weights or self.weights
        market = self.catalog.get_market(market_id)
        latest: dict[str, Observation] = {}
        for obs in observations:
            if obs.market_id is not None and obs.market_id != market_id:
                log.warning(
                    "consensus_foreign_observation",
                    market_id=market_id,
                    source_market_id=obs.source_market_id,
                    observation_market_id=obs.market_id,
                )
                continue
            current = latest.get(obs.source_id)
            if current is None or (obs.observed_at, obs.source_market_id) > (
                current.observed_at,
                current.source_market_id,
            ):
                latest[obs.source_id] = obs
        out = []
        for source_id in sorted(latest):
            if not self.catalog.get_source(source_id).active:
                continue
            obs = latest[source_id]
            out.append(
                Contribution(
                    source_id=source_id,
                    source_market_id=obs.source_market_id,
                    probability=obs.probability,
                    weight=calc.weight_for(source_id, market.category_id),
                )
            )
        return out

    def aggregate(
        self,
        market_id: str,
        observations: Iterable[Observation],
        weights: WeightCalculator | None = None,
        at: datetime | None = None,
    ) -> ConsensusSnapshot | None:
        """Consensus snapshot for the market, or None when no source has live data.

        ``at`` stamps the snapshot (replay passes feed time); defaults to the clock.
        """
        result = compute_consensus(
            self.contributions(market_id, observations, weights),
            outlier_threshold=self.outlier_threshold,
            confidence_full_n=self.confidence_full_n,
            all_outlier_fallback=self.all_outlier_fallback,
        )
        if result is None:
            log.debug("consensus_no_live_sources", market_id=market_id)
            return None
        snapshot = ConsensusSnapshot(
            market_id=market_id,
            time=at or self._clock(),
            consensus_probability=result.probability,
            confidence_score=result.confidence,
            source_count=result.source_count,
            agreement_score=result.agreement,
            outlier_source_ids=result.outliers,
            weights=result.weights,
        )
        log.debug(
            "consensus_snapshot",
            market_id=market_id,
            probability=round(snapshot.consensus_probability, 6),
            sources=snapshot.source_count,
            outliers=len(snapshot.outlier_source_ids),
        )
        return snapshot

"""Source weight from accuracy history: reciprocal Brier with a floor, cold-start prior."""

from __future__ import annotations

import math
from typing import Protocol

from predconsensus.errors import InvalidInput
from predconsensus.models import AccuracyRecord

MIN_RESOLVED = 30
PRIOR_WEIGHT = 1.0
EPSILON = 0.01
W_MIN = 0.1
W_MAX = 100.0


class AccuracyLookup(Protocol):
    def lookup(self, source_id: str, category_id: str | None = None) -> AccuracyRecord | None: ...


class WeightCalculator:
    """Maps a source's accuracy record to a non-negative, finite consensus weight.

    Deterministic given the lookup's state. Lower Brier score means higher weight:
    weight = 1 / (brier + epsilon), clamped to [min_weight, max_weight]. Sources with fewer
    than min_resolved resolutions (or none) get prior_weight.
    """

    def __init__(
        self,
        accuracy: AccuracyLookup,
        min_resolved: int = MIN_RESOLVED,
        prior_weight: float = PRIOR_WEIGHT,
        epsilon: float = EPSILON,
        min_weight: float = W_MIN,
        max_weight: float = W_MAX,
    ) -> None:
        if epsilon <= 0:
            raise InvalidInput("epsilon must be positive")
        if not 0 < min_weight <= max_weight or not math.isfinite(max_weight):
            raise InvalidInput(f"invalid weight bounds [{min_weight}, {max_weight}]")
        self.accuracy = accuracy
        self.min_resolved = min_resolved
        self.prior_weight = prior_weight
        self.epsilon = epsilon
        self.min_weight = min_weight
        self.max_weight = max_weight

    def _clamp(self, w: float) -> float:
        return min(self.max_weight, max(self.min_weight, w))

    def weight_from_record(self, record: AccuracyRecord | None) -> float:
        if record is None or record.brier_score is None or record.total_resolved < self.min_resolved:
            return self._clamp(self.prior_weight)
        return self._clamp(1.0 / (record.brier_score + self.epsilon))

    def weight_for(self, source_id: str, category_id: str | None = None) -> float:
        return self.weight_from_record(self.accuracy.lookup(source_id, category_id))

    def bind(self, accuracy: AccuracyLookup) -> WeightCalculator:
        """Same policy over another lookup (e.g. a per-cycle AccuracyView)."""
        return WeightCalculator(
            accuracy,
            min_resolved=self.min_resolved,
            prior_weight=self.prior_weight,
            epsilon=self.epsilon,
            min_weight=self.min_weight,
            max_weight=self.max_weight,
        )

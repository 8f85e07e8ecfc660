"""Brier score helpers and resolution-outcome interpretation.

Brier score = (1/N) * sum((forecast_i - outcome_i)^2). Lower is better: 0 is perfect, 1 is worst.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from predconsensus.errors import InvalidInput


class OutcomePolicy(str, Enum):
    """How a (possibly fractional) resolution value becomes the scored outcome."""

    LITERAL = "literal"
    BINARIZE = "binarize"


def interpret_outcome(resolution_value: float, policy: OutcomePolicy = OutcomePolicy.LITERAL) -> float:
    if not 0.0 <= resolution_value <= 1.0:
        raise InvalidInput(f"resolution value outside [0, 1]: {resolution_value}")
    if policy == OutcomePolicy.BINARIZE:
        return 1.0 if resolution_value >= 0.5 else 0.0
    return float(resolution_value)


def brier_score_single(predicted: float, actual: float) -> float:
    return (predicted - actual) ** 2


def brier_score_average(predictions: Iterable[tuple[float, float]]) -> float | None:
    """Mean Brier score over (predicted, actual) pairs; None when there are none."""
    pairs = list(predictions)
    if not pairs:
        return None
    return sum(brier_score_single(p, a) for p, a in pairs) / len(pairs)


def is_correct(predicted: float, actual: float) -> bool:
    """A call is correct when it leaned YES (>= 0.5) exactly when the outcome was YES."""
    return (predicted >= 0.5) == (actual == 1.0)


def running_mean(previous: float | None, value: float, count: int) -> float:
    """Incremental mean after `count` samples (count includes `value`)."""
    if previous is None or count <= 1:
        return value
    return previous + (value - previous) / count

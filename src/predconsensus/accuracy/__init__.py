"""Accuracy tracking: Brier scoring, per-source records and consensus weights."""

from predconsensus.accuracy.brier import OutcomePolicy, brier_score_average, brier_score_single
from predconsensus.accuracy.tracker import AccuracyStore, AccuracyTracker, AccuracyView
from predconsensus.accuracy.weights import WeightCalculator

__all__ = [
    "AccuracyStore",
    "AccuracyTracker",
    "AccuracyView",
    "OutcomePolicy",
    "WeightCalculator",
    "brier_score_average",
    "brier_score_single",
]

"""Consensus aggregation."""

from predconsensus.consensus.aggregator import (
    AllOutlierFallback,
    ConsensusAggregator,
    ConsensusResult,
    Contribution,
    compute_consensus,
)

__all__ = [
    "AllOutlierFallback",
    "ConsensusAggregator",
    "ConsensusResult",
    "Contribution",
    "compute_consensus",
]

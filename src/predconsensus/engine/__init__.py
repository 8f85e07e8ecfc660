"""Engine facade."""

from predconsensus.engine.pipeline import ConsensusEngine

__all__ = ["ConsensusEngine"]

"""Movement detection."""

from predconsensus.movement.detector import MovementDetector

__all__ = ["MovementDetector"]

"""Engine error kinds."""

from __future__ import annotations


class EngineError(Exception):
    """Base for all consensus/accuracy engine errors."""


class InvalidInput(EngineError, ValueError):
    """Probability outside [0, 1], malformed identifier or out-of-order reading."""


class NotFound(EngineError, LookupError):
    """Reference to an unknown source, category, market or source market."""


class NoObservation(EngineError):
    """A source market produced no reading at or before the resolution time."""

    def __init__(self, source_market_id: str, message: str | None = None) -> None:
        self.source_market_id = source_market_id
        super().__init__(message or f"No observation for source market {source_market_id}")


class InsufficientData(EngineError):
    """Aggregation attempted with zero live sources."""

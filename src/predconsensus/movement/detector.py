"""Significant probability moves between consecutive readings of one source market."""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable

import structlog

from predconsensus.errors import InvalidInput
from predconsensus.models import MovementEvent, Observation

log = structlog.get_logger(__name__)

# 5 percentage points
MOVEMENT_THRESHOLD = 0.05
MOVEMENT_WINDOW = timedelta(hours=24)


class MovementDetector:
    """Emits a MovementEvent when |curr - prev| >= threshold within the time window.

    A slow drift (readings further apart than the window) is not a movement.
    """

    def __init__(
        self,
        threshold: float = MOVEMENT_THRESHOLD,
        window: timedelta = MOVEMENT_WINDOW,
    ) -> None:
        if threshold <= 0:
            raise InvalidInput("movement threshold must be positive")
        self.threshold = threshold
        self.window = window

    def detect(self, prev: Observation, curr: Observation) -> MovementEvent | None:
        if prev.source_market_id != curr.source_market_id:
            raise InvalidInput(
                f"readings belong to different source markets: {prev.source_market_id} != {curr.source_market_id}"
            )
        if curr.observed_at < prev.observed_at:
            raise InvalidInput("current reading is older than the previous one")
        if curr.observed_at - prev.observed_at > self.window:
            return None
        # Rounded so that e.g. 0.30 -> 0.35 is exactly a 5-point move
        change = round(curr.probability - prev.probability, 9)
        if abs(change) < self.threshold:
            return None
        event = MovementEvent(
            source_market_id=curr.source_market_id,
            market_id=curr.market_id or prev.market_id,
            source_id=curr.source_id,
            probability_before=prev.probability,
            probability_after=curr.probability,
            change_pct=change,
            detected_at=curr.observed_at,
        )
        log.info(
            "movement_detected",
            source_market_id=event.source_market_id,
            market_id=event.market_id,
            direction=event.direction,
            before=f"{prev.probability * 100:.1f}%",
            after=f"{curr.probability * 100:.1f}%",
        )
        return event

    def detect_series(self, observations: Iterable[Observation]) -> list[MovementEvent]:
        """Run detect over consecutive pairs of one source market's history (sorted by time)."""
        ordered = sorted(observations, key=lambda o: o.observed_at)
        events = []
        for prev, curr in zip(ordered, ordered[1:]):
            event = self.detect(prev, curr)
            if event is not None:
                events.append(event)
        return events

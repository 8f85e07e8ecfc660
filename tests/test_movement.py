"""Movement detection between consecutive readings."""

from datetime import datetime, timedelta, timezone

import pytest

from predconsensus.errors import InvalidInput
from predconsensus.ingestion.normalize import make_observation
from predconsensus.movement import MovementDetector

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _obs(p, hours=0.0, sm="sm1"):
    return make_observation(sm, "s1", p, T0 + timedelta(hours=hours), market_id="m1")


def test_five_point_move_is_detected():
    event = MovementDetector().detect(_obs(0.30), _obs(0.35, hours=1))
    assert event is not None
    assert event.change_pct == pytest.approx(0.05)
    assert event.direction == "UP"
    assert event.detected_at == T0 + timedelta(hours=1)
    assert event.source_id == "s1"
    assert event.market_id == "m1"
    assert (event.probability_before, event.probability_after) == (0.30, 0.35)


def test_small_move_ignored():
    assert MovementDetector().detect(_obs(0.30), _obs(0.34, hours=1)) is None


def test_downward_move():
    event = MovementDetector().detect(_obs(0.60), _obs(0.50, hours=2))
    assert event.direction == "DOWN"
    assert event.change_pct == pytest.approx(-0.10)


def test_window():
    detector = MovementDetector()
    assert detector.detect(_obs(0.2), _obs(0.6, hours=24)) is not None
    assert detector.detect(_obs(0.2), _obs(0.6, hours=25)) is None
    narrow = MovementDetector(threshold=0.1, window=timedelta(minutes=30))
    assert narrow.detect(_obs(0.2), _obs(0.6, hours=1)) is None


def test_invalid_pairs():
    detector = MovementDetector()
    with pytest.raises(InvalidInput):
        detector.detect(_obs(0.2), _obs(0.6, hours=1, sm="sm2"))
    with pytest.raises(InvalidInput):
        detector.detect(_obs(0.2, hours=1), _obs(0.6))
    with pytest.raises(InvalidInput):
        MovementDetector(threshold=0)


def test_detect_series():
    history = [_obs(p, hours=h) for h, p in enumerate([0.30, 0.36, 0.37, 0.30, 0.31])]
    events = MovementDetector().detect_series(reversed(history))
    assert [round(e.change_pct, 2) for e in events] == [0.06, -0.07]
    assert [e.detected_at for e in events] == [T0 + timedelta(hours=1), T0 + timedelta(hours=3)]

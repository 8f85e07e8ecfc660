"""Consensus math and per-market aggregation."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from predconsensus.accuracy import AccuracyTracker, WeightCalculator
from predconsensus.catalog import Catalog
from predconsensus.consensus import AllOutlierFallback, ConsensusAggregator, Contribution, compute_consensus
from predconsensus.ingestion.normalize import make_observation
from predconsensus.models import Category, Market, Source, SourceMarket

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _rows(probs, weights=None):
    weights = weights or [1.0] * len(probs)
    return [
        Contribution(source_id=f"s{i}", source_market_id=f"sm{i}", probability=p, weight=w)
        for i, (p, w) in enumerate(zip(probs, weights))
    ]


def test_outlier_excluded_from_average():
    result = compute_consensus(_rows([0.6, 0.65, 0.95]))
    assert result.outliers == ["s2"]
    assert result.probability == pytest.approx(0.625)
    assert result.source_count == 3
    assert result.weights == pytest.approx({"s0": 0.5, "s1": 0.5, "s2": 0.0})
    assert result.agreement == pytest.approx(0.975)
    assert result.confidence == pytest.approx(0.975 * 3 / 5)


def test_single_source():
    result = compute_consensus(_rows([0.7]))
    assert result.probability == pytest.approx(0.7)
    assert result.agreement is None
    assert result.confidence == pytest.approx(0.2)
    assert result.weights == {"s0": 1.0}


def test_lone_inlier_has_no_agreement():
    result = compute_consensus(_rows([0.0, 0.5, 1.0]))
    assert result.outliers == ["s0", "s2"]
    assert result.probability == pytest.approx(0.5)
    assert result.agreement is None
    assert result.confidence == pytest.approx(3 / 5)
    assert result.weights == pytest.approx({"s0": 0.0, "s1": 1.0, "s2": 0.0})


def test_all_outliers_fall_back_to_mean():
    result = compute_consensus(_rows([0.1, 0.9], [3.0, 1.0]))
    assert sorted(result.outliers) == ["s0", "s1"]
    assert result.probability == pytest.approx(0.5)
    weighted = compute_consensus(
        _rows([0.1, 0.9], [3.0, 1.0]), all_outlier_fallback=AllOutlierFallback.WEIGHTED_MEAN
    )
    assert weighted.probability == pytest.approx(0.3)
    assert sum(weighted.weights.values()) == pytest.approx(1.0)


def test_empty_input():
    assert compute_consensus([]) is None


def test_weights_pull_towards_accurate_source():
    result = compute_consensus(_rows([0.7, 0.5], [20.0, 2.0]))
    assert result.probability == pytest.approx(15 / 22)
    assert abs(result.probability - 0.7) < abs(result.probability - 0.5)


def test_bounded_and_normalized_on_random_inputs():
    rng = random.Random(42)
    for _ in range(500):
        n = rng.randint(1, 8)
        probs = [rng.random() for _ in range(n)]
        weights = [rng.uniform(0.1, 100.0) for _ in range(n)]
        result = compute_consensus(_rows(probs, weights))
        assert min(probs) <= result.probability <= max(probs)
        assert 0.0 <= result.confidence <= 1.0
        assert result.agreement is None or 0.0 <= result.agreement <= 1.0
        assert result.source_count == len(result.weights) == n
        assert sum(result.weights.values()) == pytest.approx(1.0)
        if len(result.outliers) < n:
            assert all(result.weights[s] == 0.0 for s in result.outliers)


def test_same_inputs_same_output():
    rows = _rows([0.2, 0.35, 0.4, 0.9], [1.0, 5.0, 2.0, 7.0])
    shuffled = list(reversed(rows))
    assert compute_consensus(rows) == compute_consensus(rows) == compute_consensus(shuffled)


@pytest.fixture
def catalog():
    c = Catalog()
    c.add_category(Category(id="pol", slug="politics"))
    c.add_market(Market(id="m1", category_id="pol"))
    c.add_market(Market(id="m2", category_id="pol"))
    for sid in ("a", "b", "c"):
        c.add_source(Source(id=sid, slug=sid))
        c.bind_source_market(SourceMarket(id=f"{sid}-m1", source_id=sid, external_id=f"{sid}1", market_id="m1"))
    return c


def _aggregator(catalog):
    return ConsensusAggregator(catalog, WeightCalculator(AccuracyTracker()), clock=lambda: T0)


def test_aggregate_market(catalog):
    for sid, p in (("a", 0.6), ("b", 0.65), ("c", 0.95)):
        catalog.record_observation(make_observation(f"{sid}-m1", sid, p, T0))
    snap = _aggregator(catalog).aggregate("m1", catalog.latest_observations("m1"))
    assert snap.market_id == "m1"
    assert snap.time == T0
    assert snap.consensus_probability == pytest.approx(0.625)
    assert snap.outlier_source_ids == ["c"]
    assert snap.source_count == 3


def test_no_readings_yields_nothing(catalog):
    assert _aggregator(catalog).aggregate("m1", catalog.latest_observations("m1")) is None


def test_inactive_source_excluded(catalog):
    for sid, p in (("a", 0.6), ("b", 0.64), ("c", 0.62)):
        catalog.record_observation(make_observation(f"{sid}-m1", sid, p, T0))
    catalog.set_source_active("c", False)
    snap = _aggregator(catalog).aggregate("m1", catalog.latest_observations("m1"))
    assert snap.source_count == 2
    assert "c" not in snap.weights


def test_latest_listing_per_source(catalog):
    catalog.bind_source_market(SourceMarket(id="a-m1-alt", source_id="a", external_id="a1-alt", market_id="m1"))
    catalog.record_observation(make_observation("a-m1", "a", 0.4, T0))
    catalog.record_observation(make_observation("a-m1-alt", "a", 0.5, T0 + timedelta(minutes=5)))
    snap = _aggregator(catalog).aggregate("m1", catalog.latest_observations("m1"))
    assert snap.source_count == 1
    assert snap.consensus_probability == pytest.approx(0.5)


def test_foreign_market_readings_skipped(catalog):
    catalog.record_observation(make_observation("a-m1", "a", 0.4, T0))
    stray = make_observation("b-m1", "b", 0.9, T0, market_id="m2")
    snap = _aggregator(catalog).aggregate("m1", [*catalog.latest_observations("m1"), stray])
    assert snap.source_count == 1
    assert snap.consensus_probability == pytest.approx(0.4)

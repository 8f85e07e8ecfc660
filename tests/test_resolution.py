"""Market resolution: scoring last known calls and feeding accuracy records."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from predconsensus.accuracy import AccuracyTracker
from predconsensus.catalog import Catalog
from predconsensus.errors import InvalidInput, NotFound
from predconsensus.ingestion.normalize import make_observation
from predconsensus.models import Category, Market, MarketStatus, Source, SourceMarket
from predconsensus.resolution import ResolutionProcessor
from predconsensus.streams import MemorySink

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)
RESOLVED_AT = T0 + timedelta(days=1)


class StatusRecordingSink(MemorySink):
    """Remembers the market status seen while each score is written."""

    def __init__(self, catalog):
        super().__init__()
        self.catalog = catalog
        self.status_at_score = []

    def write_prediction_score(self, score):
        self.status_at_score.append(self.catalog.market(score.market_id).status)
        super().write_prediction_score(score)


@pytest.fixture
def catalog():
    c = Catalog()
    c.add_category(Category(id="pol", slug="politics"))
    c.add_market(Market(id="m1", category_id="pol"))
    for sid in ("a", "b", "c"):
        c.add_source(Source(id=sid, slug=sid))
        c.bind_source_market(SourceMarket(id=f"{sid}-m1", source_id=sid, external_id=f"{sid}1", market_id="m1"))
    c.record_observation(make_observation("a-m1", "a", 0.7, T0))
    c.record_observation(make_observation("b-m1", "b", 0.2, T0))
    return c


def _processor(catalog, **kwargs):
    tracker = AccuracyTracker(registry=catalog)
    sink = StatusRecordingSink(catalog)
    return ResolutionProcessor(catalog, tracker, sink=sink, **kwargs), tracker, sink


def test_resolve_scores_each_listing(catalog):
    processor, tracker, sink = _processor(catalog)
    result = processor.resolve("m1", 1.0, RESOLVED_AT)
    assert not result.already_resolved
    assert [s.source_market_id for s in result.scores] == ["a-m1", "b-m1"]
    assert [s.brier_score for s in result.scores] == pytest.approx([0.09, 0.64])
    assert result.skipped == ["c-m1"]
    assert tracker.get("a", "pol").total_resolved == 1
    assert tracker.get("c", "pol") is None
    assert result.market.status == MarketStatus.RESOLVED
    assert catalog.market("m1").resolution_value == 1.0
    assert len(sink.scores) == 2
    assert len(sink.accuracy_records) == 4
    assert sink.markets[-1].status == MarketStatus.RESOLVED


def test_market_marked_resolved_after_scores(catalog):
    processor, _, sink = _processor(catalog)
    processor.resolve("m1", 1.0, RESOLVED_AT)
    assert sink.status_at_score == [MarketStatus.ACTIVE, MarketStatus.ACTIVE]


class FailOnceSink(MemorySink):
    """Raises on the first score write, then behaves normally."""

    def __init__(self):
        super().__init__()
        self.failed = False

    def write_prediction_score(self, score):
        if not self.failed:
            self.failed = True
            raise RuntimeError("disk full")
        super().write_prediction_score(score)


def test_failed_score_write_is_retried(catalog):
    tracker = AccuracyTracker(registry=catalog)
    sink = FailOnceSink()
    processor = ResolutionProcessor(catalog, tracker, sink=sink)
    with pytest.raises(RuntimeError):
        processor.resolve("m1", 1.0, RESOLVED_AT)
    assert catalog.market("m1").status == MarketStatus.ACTIVE
    assert not tracker.is_scored("a-m1", "m1")
    assert tracker.get("a", "pol") is None

    result = processor.resolve("m1", 1.0, RESOLVED_AT)
    assert result.market.status == MarketStatus.RESOLVED
    assert [s.source_market_id for s in sink.scores] == ["a-m1", "b-m1"]
    assert tracker.get("a", "pol").total_resolved == 1
    assert tracker.get("b").total_resolved == 1


def test_last_call_before_resolution_is_scored(catalog):
    catalog.record_observation(make_observation("a-m1", "a", 0.95, RESOLVED_AT + timedelta(hours=1)))
    processor, _, _ = _processor(catalog)
    result = processor.resolve("m1", 1.0, RESOLVED_AT)
    assert result.scores[0].predicted_probability == 0.7


def test_resolve_twice_is_noop(catalog):
    processor, tracker, sink = _processor(catalog)
    processor.resolve("m1", 1.0, RESOLVED_AT)
    again = processor.resolve("m1", 0.0, RESOLVED_AT + timedelta(days=1))
    assert again.already_resolved
    assert again.scores == []
    assert again.market.resolution_value == 1.0
    assert tracker.get("a").total_resolved == 1
    assert len(sink.scores) == 2


def test_concurrent_resolution_scores_once(catalog):
    processor, tracker, _ = _processor(catalog)
    results = []

    def worker():
        results.append(processor.resolve("m1", 1.0, RESOLVED_AT))

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sum(not r.already_resolved for r in results) == 1
    assert tracker.get("a", "pol").total_resolved == 1
    assert tracker.get("b").total_resolved == 1


def test_fractional_outcome_policies(catalog):
    processor, _, _ = _processor(catalog)
    literal = processor.resolve("m1", 0.7, RESOLVED_AT)
    assert literal.scores[0].actual_outcome == 0.7
    assert literal.scores[0].brier_score == pytest.approx(0.0)

    other = Catalog()
    other.add_source(Source(id="a", slug="a"))
    other.add_market(Market(id="m1"))
    other.bind_source_market(SourceMarket(id="a-m1", source_id="a", external_id="a1", market_id="m1"))
    other.record_observation(make_observation("a-m1", "a", 0.7, T0))
    binarized, _, _ = _processor(other, outcome_policy="binarize")
    score = binarized.resolve("m1", 0.7, RESOLVED_AT).scores[0]
    assert score.actual_outcome == 1.0
    assert score.category_id is None
    assert score.brier_score == pytest.approx(0.09)


def test_rejected_resolutions(catalog):
    processor, _, _ = _processor(catalog)
    with pytest.raises(InvalidInput):
        processor.resolve("m1", 1.5, RESOLVED_AT)
    with pytest.raises(NotFound):
        processor.resolve("ghost", 1.0, RESOLVED_AT)
    catalog.set_market_status("m1", MarketStatus.CANCELLED)
    with pytest.raises(InvalidInput):
        processor.resolve("m1", 1.0, RESOLVED_AT)

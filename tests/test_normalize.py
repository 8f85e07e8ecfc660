"""Raw reading normalization and validation."""

from datetime import datetime, timezone

import pytest

from predconsensus.errors import InvalidInput
from predconsensus.ingestion.normalize import (
    make_observation,
    normalize_reading,
    parse_probability,
    parse_timestamp,
)
from predconsensus.models import SourceMarket

BINDING = SourceMarket(id="sm-1", source_id="poly", external_id="x-1", market_id="m-1")
NOON = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_normalize_reading_fields():
    obs = normalize_reading(
        {"probability": 0.62, "observed_at": "2024-05-01T12:00:00Z", "volume": "1500", "trade_count": 12},
        BINDING,
    )
    assert obs.source_market_id == "sm-1"
    assert obs.source_id == "poly"
    assert obs.market_id == "m-1"
    assert obs.probability == 0.62
    assert obs.volume == 1500.0
    assert obs.trade_count == 12
    assert obs.observed_at == NOON


def test_probability_aliases_and_percent():
    assert parse_probability({"yes_price": "0.41"}) == 0.41
    assert parse_probability({"last_price": 0.0}) == 0.0
    assert parse_probability({"price": 62, "percent": True}) == pytest.approx(0.62)


@pytest.mark.parametrize(
    "raw",
    [
        {"probability": 1.2},
        {"probability": -0.01},
        {"probability": "abc"},
        {"probability": float("nan")},
        {"price": 150, "percent": True},
        {},
    ],
)
def test_bad_probability_rejected(raw):
    with pytest.raises(InvalidInput):
        normalize_reading({**raw, "observed_at": "2024-05-01T12:00:00Z"}, BINDING)


def test_timestamp_forms():
    assert parse_timestamp(1714564800000) == NOON
    assert parse_timestamp("1714564800000") == NOON
    assert parse_timestamp("2024-05-01T14:00:00+02:00") == NOON
    assert parse_timestamp(datetime(2024, 5, 1, 12, 0)) == NOON


@pytest.mark.parametrize("value", [None, "", "yesterday", True])
def test_bad_timestamp_rejected(value):
    with pytest.raises(InvalidInput):
        parse_timestamp(value)


@pytest.mark.parametrize("value", [10**20, "99999999999999999999", -(10**20), float("nan")])
def test_out_of_range_timestamp_rejected(value):
    with pytest.raises(InvalidInput, match="timestamp out of range"):
        parse_timestamp(value)


def test_timestamp_errors_do_not_name_a_field():
    with pytest.raises(InvalidInput) as exc:
        parse_timestamp("yesterday")
    assert "observed_at" not in str(exc.value)


def test_missing_timestamp_rejected():
    with pytest.raises(InvalidInput):
        normalize_reading({"probability": 0.5}, BINDING)


def test_negative_volume_rejected():
    with pytest.raises(InvalidInput):
        normalize_reading({"probability": 0.5, "timestamp": 1714564800000, "volume": -3}, BINDING)


def test_make_observation():
    obs = make_observation("sm-1", "poly", 0.3, "2024-05-01T12:00:00Z", market_id="m-1")
    assert obs.probability == 0.3
    assert obs.observed_at == NOON
    with pytest.raises(InvalidInput):
        make_observation("", "poly", 0.3, NOON)
    with pytest.raises(InvalidInput):
        make_observation("sm-1", "poly", 1.01, NOON)

"""CLI commands against a temporary database."""

import json

import pytest
import structlog
from typer.testing import CliRunner

from predconsensus.cli.app import app

runner = CliRunner()

FEED = [
    {"kind": "category", "id": "pol", "slug": "politics", "name": "Politics"},
    {"kind": "source", "id": "a", "slug": "alpha", "name": "Alpha"},
    {"kind": "source", "id": "b", "slug": "beta", "name": "Beta"},
    {"kind": "market", "id": "m1", "title": "Will X happen?", "category_id": "pol"},
    {"kind": "source_market", "id": "a-m1", "source_id": "a", "external_id": "A1", "market_id": "m1"},
    {"kind": "source_market", "id": "b-m1", "source_id": "b", "external_id": "B1", "market_id": "m1"},
    {"kind": "reading", "source_market_id": "a-m1", "probability": 0.40, "observed_at": "2024-06-01T00:00:00Z"},
    {"kind": "reading", "source_market_id": "b-m1", "probability": 0.50, "observed_at": "2024-06-01T00:00:00Z"},
    {"kind": "reading", "source_market_id": "a-m1", "probability": 0.60, "observed_at": "2024-06-01T02:00:00Z"},
    {"kind": "aggregate", "at": "2024-06-01T03:00:00Z"},
    {"kind": "resolution", "market_id": "m1", "value": 1, "resolved_at": "2024-06-02T00:00:00Z"},
]


@pytest.fixture
def workspace(tmp_path):
    config = tmp_path / "config"
    config.mkdir()
    db_path = (tmp_path / "cli.duckdb").as_posix()
    (config / "default.toml").write_text(
        f'[engine.weights]\nmin_resolved = 1\n\n[storage]\ndb_path = "{db_path}"\n\n[logging]\nlevel = "ERROR"\n'
    )
    feed = tmp_path / "feed.jsonl"
    feed.write_text("\n".join(json.dumps(r) for r in FEED) + "\n")
    yield config, feed
    structlog.reset_defaults()


def _invoke(config, *args):
    result = runner.invoke(app, ["--config-dir", str(config), *args])
    assert result.exit_code == 0, result.output
    return result.output


def test_replay_then_query(workspace):
    config, feed = workspace
    out = _invoke(config, "replay", "run", "--input", str(feed))
    assert "Replayed 11 records" in out
    assert "Movements: 1" in out

    out = _invoke(config, "consensus", "show", "--market", "m1")
    assert "Consensus:   55.0%" in out
    assert "Sources:     2" in out

    out = _invoke(config, "accuracy", "leaderboard", "--category", "politics")
    assert "Alpha" in out and "Beta" in out

    out = _invoke(config, "movements", "list", "--market", "m1")
    assert "UP" in out
    assert "Total: 1 movements" in out


def test_show_unknown_market(workspace):
    config, feed = workspace
    _invoke(config, "replay", "run", "--input", str(feed))
    result = runner.invoke(app, ["--config-dir", str(config), "consensus", "show", "--market", "nope"])
    assert result.exit_code == 1
    assert "No consensus snapshot" in result.output


@pytest.mark.parametrize(
    "args",
    [["consensus", "show", "--market", "m1"], ["accuracy", "leaderboard"], ["movements", "list"]],
)
def test_query_without_database_creates_nothing(workspace, tmp_path, args):
    config, _ = workspace
    result = runner.invoke(app, ["--config-dir", str(config), *args])
    assert result.exit_code == 1
    assert "No database" in result.output
    assert not (tmp_path / "cli.duckdb").exists()

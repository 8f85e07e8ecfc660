"""Deterministic replay of a JSONL event feed through the ConsensusEngine."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import structlog
from pydantic import ValidationError

from predconsensus.engine import ConsensusEngine
from predconsensus.errors import EngineError, InvalidInput
from predconsensus.ingestion.base import FEED_KINDS, EventFeed
from predconsensus.ingestion.normalize import normalize_reading, parse_timestamp
from predconsensus.models import Category, Market, Source, SourceMarket

log = structlog.get_logger(__name__)


@dataclass
class ReplayStats:
    """Counts per record kind plus what the engine produced."""

    records: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)
    movements: int = 0
    snapshots: int = 0
    scores: int = 0
    rejected: int = 0


class JsonlFeed(EventFeed):
    """One JSON object per line. Blank lines and undecodable lines are skipped."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.feed_id = self.path.name

    def records(self) -> Iterator[tuple[int, dict[str, Any]]]:
        return stream_feed_events(self.path)


def stream_feed_events(path: str | Path) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield (line_no, record) from a JSONL feed in file order."""
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                log.warning("replay_bad_line", line=line_no)
                continue
            if not isinstance(record, dict):
                log.warning("replay_bad_line", line=line_no)
                continue
            yield (line_no, record)


def _fields(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k != "kind"}


def _reading(engine: ConsensusEngine, record: dict[str, Any]):
    if record.get("source_market_id"):
        sm = engine.catalog.get_source_market(record["source_market_id"])
        return engine.ingest(normalize_reading(record, sm))
    if record.get("source") and record.get("external_id"):
        return engine.ingest_reading(record, record["source"], record["external_id"])
    raise InvalidInput("reading needs source_market_id or source + external_id")


def apply_record(engine: ConsensusEngine, record: dict[str, Any], stats: ReplayStats) -> None:
    """Apply one feed record to the engine. Raises EngineError for a bad record."""
    kind = record.get("kind")
    if kind not in FEED_KINDS:
        raise InvalidInput(f"unknown record kind: {kind!r}")
    try:
        if kind == "source":
            engine.add_source(Source.model_validate(_fields(record)))
        elif kind == "category":
            engine.add_category(Category.model_validate(_fields(record)))
        elif kind == "market":
            engine.add_market(Market.model_validate(_fields(record)))
        elif kind == "source_market":
            engine.bind_source_market(SourceMarket.model_validate(_fields(record)))
        elif kind == "reading":
            if _reading(engine, record) is not None:
                stats.movements += 1
        elif kind == "resolution":
            result = engine.resolve(record["market_id"], float(record["value"]), record["resolved_at"])
            stats.scores += len(result.scores)
        elif kind == "aggregate":
            at = parse_timestamp(record["at"]) if record.get("at") is not None else None
            if record.get("market_id"):
                stats.snapshots += int(engine.aggregate(record["market_id"], at=at) is not None)
            else:
                stats.snapshots += len(engine.aggregate_all(at=at))
        elif kind == "status":
            if record.get("market_id"):
                engine.set_market_status(record["market_id"], record["status"])
            else:
                engine.set_source_active(record["source_id"], bool(record["active"]))
    except EngineError:
        raise
    except ValidationError as e:
        raise InvalidInput(str(e)) from e
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidInput(f"malformed {kind} record: {e}") from e


def replay_feed(engine: ConsensusEngine, feed: EventFeed, strict: bool = False) -> ReplayStats:
    """Apply every record in order. Bad records are logged and counted unless strict."""
    stats = ReplayStats()
    for seq, record in feed.records():
        stats.records += 1
        kind = str(record.get("kind"))
        stats.by_kind[kind] = stats.by_kind.get(kind, 0) + 1
        try:
            apply_record(engine, record, stats)
        except EngineError as e:
            if strict:
                raise
            stats.rejected += 1
            log.warning("replay_record_rejected", seq=seq, kind=kind, error=str(e))
    log.info(
        "replay_done",
        feed=feed.feed_id,
        records=stats.records,
        movements=stats.movements,
        snapshots=stats.snapshots,
        scores=stats.scores,
        rejected=stats.rejected,
    )
    return stats


def replay_file(path: str | Path, engine: ConsensusEngine, strict: bool = False) -> ReplayStats:
    """Replay a JSONL file into the engine (deterministic: same file + config -> same output)."""
    return replay_feed(engine, JsonlFeed(path), strict=strict)

"""Persist consensus snapshots to DuckDB."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from predconsensus.models import ConsensusSnapshot
from predconsensus.storage.db import from_ms, to_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_COLUMNS = (
    "market_id, time, consensus_probability, confidence_score, source_count, "
    "agreement_score, outlier_sources, weights"
)


def append_snapshot(conn: DuckDBPyConnection, snapshot: ConsensusSnapshot) -> None:
    """Append one consensus_snapshots row."""
    conn.execute(
        f"INSERT INTO consensus_snapshots ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        [
            snapshot.market_id,
            to_ms(snapshot.time),
            snapshot.consensus_probability,
            snapshot.confidence_score,
            snapshot.source_count,
            snapshot.agreement_score,
            json.dumps(snapshot.outlier_source_ids),
            json.dumps(snapshot.weights, sort_keys=True),
        ],
    )


def _row_to_snapshot(row: tuple) -> ConsensusSnapshot:
    outliers = json.loads(row[6]) if isinstance(row[6], str) else (row[6] or [])
    weights = json.loads(row[7]) if isinstance(row[7], str) else (row[7] or {})
    return ConsensusSnapshot(
        market_id=row[0],
        time=from_ms(row[1]),
        consensus_probability=row[2],
        confidence_score=row[3],
        source_count=row[4],
        agreement_score=row[5],
        outlier_source_ids=outliers,
        weights=weights,
    )


def latest_snapshot(conn: DuckDBPyConnection, market_id: str) -> ConsensusSnapshot | None:
    row = conn.execute(
        f"SELECT {_COLUMNS} FROM consensus_snapshots WHERE market_id = ? ORDER BY time DESC, id DESC LIMIT 1",
        [market_id],
    ).fetchone()
    return _row_to_snapshot(row) if row else None


def list_snapshots(conn: DuckDBPyConnection, market_id: str, limit: int = 100) -> list[ConsensusSnapshot]:
    """Snapshot series for one market, oldest first."""
    rows = conn.execute(
        f"SELECT {_COLUMNS} FROM consensus_snapshots WHERE market_id = ? ORDER BY time ASC, id ASC LIMIT ?",
        [market_id, limit],
    ).fetchall()
    return [_row_to_snapshot(r) for r in rows]

"""Reading time series and movement events - append-only."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from predconsensus.models import MovementEvent, Observation
from predconsensus.storage.db import from_ms, to_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_OBS_INSERT = """
    INSERT INTO observations (source_market_id, observed_at, source_id, market_id, probability, volume, trade_count)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT DO NOTHING
"""


def _obs_row(obs: Observation) -> list[Any]:
    return [
        obs.source_market_id,
        to_ms(obs.observed_at),
        obs.source_id,
        obs.market_id,
        obs.probability,
        obs.volume,
        obs.trade_count,
    ]


def append_observation(conn: DuckDBPyConnection, obs: Observation) -> None:
    """Append one reading. Prefer append_observations_batch for throughput."""
    conn.execute(_OBS_INSERT, _obs_row(obs))


def append_observations_batch(conn: DuckDBPyConnection, observations: list[Observation]) -> None:
    if not observations:
        return
    conn.executemany(_OBS_INSERT, [_obs_row(o) for o in observations])


def load_history(conn: DuckDBPyConnection, source_market_id: str) -> list[Observation]:
    """Readings for one listing in time order."""
    rows = conn.execute(
        """
        SELECT source_market_id, source_id, market_id, probability, volume, trade_count, observed_at
        FROM observations WHERE source_market_id = ? ORDER BY observed_at ASC
        """,
        [source_market_id],
    ).fetchall()
    return [
        Observation(
            source_market_id=r[0],
            source_id=r[1],
            market_id=r[2],
            probability=r[3],
            volume=r[4],
            trade_count=r[5],
            observed_at=from_ms(r[6]),
        )
        for r in rows
    ]


def append_movement(conn: DuckDBPyConnection, event: MovementEvent) -> None:
    conn.execute(
        """
        INSERT INTO movement_events (event_id, source_market_id, market_id, source_id,
                                     probability_before, probability_after, change_pct, detected_at, explanation)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            event.id,
            event.source_market_id,
            event.market_id,
            event.source_id,
            event.probability_before,
            event.probability_after,
            event.change_pct,
            to_ms(event.detected_at),
            event.explanation,
        ],
    )


def list_movements(
    conn: DuckDBPyConnection,
    market_id: str | None = None,
    limit: int = 50,
) -> list[MovementEvent]:
    """Most recent movement events first, optionally for one market."""
    sql = """
        SELECT event_id, source_market_id, market_id, source_id, probability_before,
               probability_after, change_pct, detected_at, explanation
        FROM movement_events
    """
    params: list[Any] = []
    if market_id:
        sql += " WHERE market_id = ?"
        params.append(market_id)
    sql += " ORDER BY detected_at DESC, event_id LIMIT ?"
    params.append(limit)
    rows = conn.execute(sql, params).fetchall()
    return [
        MovementEvent(
            id=r[0],
            source_market_id=r[1],
            market_id=r[2],
            source_id=r[3],
            probability_before=r[4],
            probability_after=r[5],
            change_pct=r[6],
            detected_at=from_ms(r[7]),
            explanation=r[8],
        )
        for r in rows
    ]

"""DuckDB-backed StreamSink: every engine data product lands in its table."""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING

import structlog

from predconsensus.models import (
    AccuracyRecord,
    Category,
    ConsensusSnapshot,
    Market,
    MovementEvent,
    Observation,
    PredictionScore,
    Source,
    SourceMarket,
)
from predconsensus.storage.accuracy import append_prediction_score, upsert_accuracy_record
from predconsensus.storage.catalog import upsert_category, upsert_market, upsert_source, upsert_source_market
from predconsensus.storage.db import get_connection, init_schema, to_ms
from predconsensus.storage.observations import append_movement, append_observations_batch
from predconsensus.storage.snapshots import append_snapshot

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)


class DuckDBSink:
    """Writes engine outputs to DuckDB. A single connection, serialised behind a lock.

    Observations are buffered and flushed in batches; everything else is written through.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        conn: DuckDBPyConnection | None = None,
        observation_batch_size: int = 100,
    ) -> None:
        if conn is None and db_path is None:
            raise ValueError("db_path or conn is required")
        self._owns_conn = conn is None
        self._conn = conn if conn is not None else get_connection(db_path)
        init_schema(self._conn)
        self.observation_batch_size = observation_batch_size
        self._batch: list[Observation] = []
        self._lock = Lock()
        self._written = 0

    @property
    def conn(self) -> DuckDBPyConnection:
        return self._conn

    def _flush_batch(self) -> None:
        if not self._batch:
            return
        append_observations_batch(self._conn, self._batch)
        self._batch = []

    def flush(self) -> None:
        with self._lock:
            self._flush_batch()

    # --- reference data ---

    def write_source(self, source: Source) -> None:
        with self._lock:
            upsert_source(self._conn, source)

    def write_category(self, category: Category) -> None:
        with self._lock:
            upsert_category(self._conn, category)

    def write_source_market(self, source_market: SourceMarket) -> None:
        with self._lock:
            upsert_source_market(self._conn, source_market)

    def write_market(self, market: Market) -> None:
        with self._lock:
            upsert_market(self._conn, market)

    # --- streams ---

    def write_observation(self, obs: Observation) -> None:
        with self._lock:
            self._batch.append(obs)
            self._conn.execute(
                """
                UPDATE source_markets SET current_probability = ?, volume = COALESCE(?, volume), last_observed_at = ?
                WHERE source_market_id = ?
                """,
                [obs.probability, obs.volume, to_ms(obs.observed_at), obs.source_market_id],
            )
            if len(self._batch) >= self.observation_batch_size:
                self._flush_batch()

    def write_snapshot(self, snapshot: ConsensusSnapshot) -> None:
        with self._lock:
            append_snapshot(self._conn, snapshot)
            self._written += 1

    def write_movement(self, event: MovementEvent) -> None:
        with self._lock:
            append_movement(self._conn, event)
            self._written += 1

    def write_prediction_score(self, score: PredictionScore) -> None:
        with self._lock:
            # Scores must be durable before the market is marked resolved
            self._flush_batch()
            append_prediction_score(self._conn, score)
            self._written += 1

    def write_accuracy_record(self, record: AccuracyRecord) -> None:
        with self._lock:
            upsert_accuracy_record(self._conn, record)
            self._written += 1

    def close(self) -> None:
        with self._lock:
            self._flush_batch()
            if self._owns_conn:
                self._conn.close()
        log.debug("sink_closed", products_written=self._written)

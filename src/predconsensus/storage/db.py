"""DuckDB connection and schema init."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import duckdb

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SCHEMA_SQL = """
CREATE SEQUENCE IF NOT EXISTS snapshot_seq START 1;

-- Reference data (owned by configuration, mirrored here for queries)
CREATE TABLE IF NOT EXISTS sources (
    source_id       VARCHAR PRIMARY KEY,
    slug            VARCHAR NOT NULL UNIQUE,
    name            VARCHAR,
    source_type     VARCHAR NOT NULL,
    active          BOOLEAN NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    category_id     VARCHAR PRIMARY KEY,
    slug            VARCHAR NOT NULL,
    name            VARCHAR
);

CREATE TABLE IF NOT EXISTS markets (
    market_id       VARCHAR PRIMARY KEY,
    title           VARCHAR,
    category_id     VARCHAR,
    status          VARCHAR NOT NULL,
    resolution_value DOUBLE,
    resolution_date BIGINT
);

CREATE TABLE IF NOT EXISTS source_markets (
    source_market_id VARCHAR PRIMARY KEY,
    source_id       VARCHAR NOT NULL,
    external_id     VARCHAR NOT NULL,
    market_id       VARCHAR,
    title           VARCHAR,
    current_probability DOUBLE,
    volume          DOUBLE,
    liquidity       DOUBLE,
    last_observed_at BIGINT,
    UNIQUE (source_id, external_id)
);

-- Append-only reading time series
CREATE TABLE IF NOT EXISTS observations (
    source_market_id VARCHAR NOT NULL,
    observed_at     BIGINT NOT NULL,
    source_id       VARCHAR NOT NULL,
    market_id       VARCHAR,
    probability     DOUBLE NOT NULL,
    volume          DOUBLE,
    trade_count     INTEGER,
    PRIMARY KEY (source_market_id, observed_at)
);

-- One row per (source, category), category_id NULL is the global record
CREATE TABLE IF NOT EXISTS accuracy_records (
    source_id       VARCHAR NOT NULL,
    category_id     VARCHAR,
    total_resolved  INTEGER NOT NULL,
    correct_predictions INTEGER NOT NULL,
    brier_score     DOUBLE,
    accuracy_pct    DOUBLE,
    last_calculated_at BIGINT
);

CREATE TABLE IF NOT EXISTS prediction_scores (
    score_id        VARCHAR PRIMARY KEY,
    source_market_id VARCHAR NOT NULL,
    source_id       VARCHAR NOT NULL,
    market_id       VARCHAR NOT NULL,
    category_id     VARCHAR,
    predicted_probability DOUBLE NOT NULL,
    actual_outcome  DOUBLE NOT NULL,
    brier_score     DOUBLE NOT NULL,
    resolved_at     BIGINT NOT NULL,
    UNIQUE (source_market_id, market_id)
);

CREATE TABLE IF NOT EXISTS consensus_snapshots (
    id              BIGINT PRIMARY KEY DEFAULT nextval('snapshot_seq'),
    market_id       VARCHAR NOT NULL,
    time            BIGINT NOT NULL,
    consensus_probability DOUBLE NOT NULL,
    confidence_score DOUBLE NOT NULL,
    source_count    INTEGER NOT NULL,
    agreement_score DOUBLE,
    outlier_sources JSON,
    weights         JSON NOT NULL
);

CREATE TABLE IF NOT EXISTS movement_events (
    event_id        VARCHAR PRIMARY KEY,
    source_market_id VARCHAR NOT NULL,
    market_id       VARCHAR,
    source_id       VARCHAR,
    probability_before DOUBLE NOT NULL,
    probability_after DOUBLE NOT NULL,
    change_pct      DOUBLE NOT NULL,
    detected_at     BIGINT NOT NULL,
    explanation     VARCHAR
);
"""


def to_ms(dt: datetime | None) -> int | None:
    """Aware datetime -> ms epoch (naive values are taken as UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def from_ms(ms: int | None) -> datetime | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager.
    Use read_only=True for query-only commands so a running replay keeps the write lock."""
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables and sequences if they do not exist."""
    for stmt in SCHEMA_SQL.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise

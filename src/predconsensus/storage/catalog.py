"""Sources, categories, markets and source_markets persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING

from predconsensus.models import Category, Market, Source, SourceMarket
from predconsensus.storage.db import to_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def upsert_source(conn: DuckDBPyConnection, source: Source) -> None:
    conn.execute(
        """
        INSERT INTO sources (source_id, slug, name, source_type, active)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (source_id) DO UPDATE SET
            name = excluded.name,
            source_type = excluded.source_type,
            active = excluded.active
        """,
        [source.id, source.slug, source.name, source.source_type.value, source.active],
    )


def upsert_category(conn: DuckDBPyConnection, category: Category) -> None:
    conn.execute(
        """
        INSERT INTO categories (category_id, slug, name) VALUES (?, ?, ?)
        ON CONFLICT (category_id) DO UPDATE SET slug = excluded.slug, name = excluded.name
        """,
        [category.id, category.slug, category.name],
    )


def upsert_market(conn: DuckDBPyConnection, market: Market) -> None:
    """Insert or replace a market. A resolved row is never overwritten."""
    conn.execute(
        """
        INSERT INTO markets (market_id, title, category_id, status, resolution_value, resolution_date)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (market_id) DO UPDATE SET
            title = excluded.title,
            category_id = excluded.category_id,
            status = excluded.status,
            resolution_value = excluded.resolution_value,
            resolution_date = excluded.resolution_date
        WHERE markets.status <> 'resolved'
        """,
        [
            market.id,
            market.title,
            market.category_id,
            market.status.value,
            market.resolution_value,
            to_ms(market.resolution_date),
        ],
    )


def upsert_source_market(conn: DuckDBPyConnection, sm: SourceMarket) -> None:
    """Insert or update a listing and its latest known state."""
    conn.execute(
        """
        INSERT INTO source_markets (source_market_id, source_id, external_id, market_id, title,
                                    current_probability, volume, liquidity, last_observed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (source_market_id) DO UPDATE SET
            market_id = excluded.market_id,
            title = excluded.title,
            current_probability = excluded.current_probability,
            volume = excluded.volume,
            liquidity = excluded.liquidity,
            last_observed_at = excluded.last_observed_at
        """,
        [
            sm.id,
            sm.source_id,
            sm.external_id,
            sm.market_id,
            sm.title,
            sm.current_probability,
            sm.volume,
            sm.liquidity,
            to_ms(sm.last_observed_at),
        ],
    )


def list_markets(conn: DuckDBPyConnection, status: str | None = None) -> list[dict]:
    """List markets (optionally by status) as list of dicts."""
    sql = "SELECT market_id, title, category_id, status, resolution_value, resolution_date FROM markets"
    params: list = []
    if status:
        sql += " WHERE status = ?"
        params.append(status)
    rows = conn.execute(sql + " ORDER BY market_id", params).fetchall()
    columns = ["market_id", "title", "category_id", "status", "resolution_value", "resolution_date"]
    return [dict(zip(columns, r)) for r in rows]

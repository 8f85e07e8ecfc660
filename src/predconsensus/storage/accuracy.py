"""Accuracy records and prediction scores persistence, plus the leaderboard query."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from predconsensus.models import AccuracyRecord, PredictionScore
from predconsensus.storage.db import from_ms, to_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def append_prediction_score(conn: DuckDBPyConnection, score: PredictionScore) -> None:
    """Insert one score. A second score for the same (source market, market) is ignored."""
    conn.execute(
        """
        INSERT INTO prediction_scores (score_id, source_market_id, source_id, market_id, category_id,
                                       predicted_probability, actual_outcome, brier_score, resolved_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        [
            score.id,
            score.source_market_id,
            score.source_id,
            score.market_id,
            score.category_id,
            score.predicted_probability,
            score.actual_outcome,
            score.brier_score,
            to_ms(score.resolved_at),
        ],
    )


def upsert_accuracy_record(conn: DuckDBPyConnection, record: AccuracyRecord) -> None:
    """Replace the row for (source, category) in one transaction."""
    conn.execute("BEGIN TRANSACTION")
    try:
        conn.execute(
            "DELETE FROM accuracy_records WHERE source_id = ? AND category_id IS NOT DISTINCT FROM ?",
            [record.source_id, record.category_id],
        )
        conn.execute(
            """
            INSERT INTO accuracy_records (source_id, category_id, total_resolved, correct_predictions,
                                          brier_score, accuracy_pct, last_calculated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                record.source_id,
                record.category_id,
                record.total_resolved,
                record.correct_predictions,
                record.brier_score,
                record.accuracy_pct,
                to_ms(record.last_calculated_at),
            ],
        )
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise


def load_accuracy_records(conn: DuckDBPyConnection) -> list[AccuracyRecord]:
    rows = conn.execute(
        """
        SELECT source_id, category_id, total_resolved, correct_predictions, brier_score,
               accuracy_pct, last_calculated_at
        FROM accuracy_records
        """
    ).fetchall()
    return [
        AccuracyRecord(
            source_id=r[0],
            category_id=r[1],
            total_resolved=r[2],
            correct_predictions=r[3],
            brier_score=r[4],
            accuracy_pct=r[5],
            last_calculated_at=from_ms(r[6]),
        )
        for r in rows
    ]


def load_scored_pairs(conn: DuckDBPyConnection) -> list[tuple[str, str]]:
    """(source_market_id, market_id) pairs that already have a prediction score."""
    rows = conn.execute("SELECT source_market_id, market_id FROM prediction_scores").fetchall()
    return [(r[0], r[1]) for r in rows]


def leaderboard(
    conn: DuckDBPyConnection,
    category_slug: str | None = None,
    min_resolved: int = 30,
    limit: int = 20,
) -> list[dict[str, Any]]:
    """Ranked sources by accuracy_pct for a category (by slug) or globally."""
    if category_slug:
        category_filter = "ar.category_id = (SELECT category_id FROM categories WHERE slug = ?)"
        params: list[Any] = [category_slug]
    else:
        category_filter = "ar.category_id IS NULL"
        params = []
    rows = conn.execute(
        f"""
        SELECT
            ROW_NUMBER() OVER (ORDER BY ar.accuracy_pct DESC NULLS LAST, ar.brier_score ASC, ar.source_id) AS rank,
            COALESCE(s.name, ar.source_id) AS source_name,
            COALESCE(s.slug, ar.source_id) AS source_slug,
            ar.accuracy_pct,
            ar.brier_score,
            ar.total_resolved
        FROM accuracy_records ar
        LEFT JOIN sources s ON ar.source_id = s.source_id
        WHERE ar.total_resolved >= ? AND {category_filter}
        ORDER BY rank
        LIMIT ?
        """,
        [min_resolved, *params, limit],
    ).fetchall()
    columns = ["rank", "source_name", "source_slug", "accuracy_pct", "brier_score", "total_resolved"]
    return [dict(zip(columns, r)) for r in rows]

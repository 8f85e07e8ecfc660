"""Accuracy subcommand: leaderboard."""

from __future__ import annotations

from pathlib import Path

import typer

from predconsensus.storage.accuracy import leaderboard as storage_leaderboard
from predconsensus.storage.db import get_connection

app = typer.Typer(help="Source accuracy")


@app.command("leaderboard")
def leaderboard(
    ctx: typer.Context,
    category: str | None = typer.Option(None, "--category", "-c", help="Category slug (default: global)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max rows"),
    min_resolved: int | None = typer.Option(
        None, "--min-resolved", help="Minimum resolutions (default: engine.weights.min_resolved)"
    ),
) -> None:
    """Rank sources by accuracy for a category or globally."""
    settings = ctx.obj["settings"]
    if not Path(settings.db_path).exists():
        typer.echo(f"No database at {settings.db_path}; run a replay first")
        raise typer.Exit(1)
    conn = get_connection(settings.db_path, read_only=True)
    try:
        threshold = settings.min_resolved if min_resolved is None else min_resolved
        rows = storage_leaderboard(conn, category_slug=category, min_resolved=threshold, limit=limit)
        scope = category or "global"
        if not rows:
            typer.echo(f"No sources with at least {threshold} resolutions ({scope})")
            return
        typer.echo(f"Leaderboard ({scope}, min {threshold} resolved)")
        for r in rows:
            brier = "-" if r["brier_score"] is None else f"{r['brier_score']:.4f}"
            typer.echo(
                f"  {r['rank']:>3}. {r['source_name'][:28]:<28} {r['accuracy_pct'] or 0:6.1f}%  "
                f"brier={brier}  n={r['total_resolved']}"
            )
    finally:
        conn.close()

"""Consensus subcommand: show the latest snapshot for a market."""

from __future__ import annotations

from pathlib import Path

import typer

from predconsensus.storage.db import get_connection
from predconsensus.storage.snapshots import latest_snapshot, list_snapshots

app = typer.Typer(help="Consensus snapshots")


@app.command("show")
def show(
    ctx: typer.Context,
    market: str = typer.Option(..., "--market", "-m", help="Market ID"),
    history: int = typer.Option(0, "--history", "-n", help="Also print the last N snapshots"),
) -> None:
    """Print the most recent consensus snapshot for a market."""
    settings = ctx.obj["settings"]
    if not Path(settings.db_path).exists():
        typer.echo(f"No database at {settings.db_path}; run a replay first")
        raise typer.Exit(1)
    conn = get_connection(settings.db_path, read_only=True)
    try:
        snap = latest_snapshot(conn, market)
        if snap is None:
            typer.echo(f"No consensus snapshot for market {market}")
            raise typer.Exit(1)
        agreement = "-" if snap.agreement_score is None else f"{snap.agreement_score:.3f}"
        typer.echo(f"Market:      {snap.market_id}")
        typer.echo(f"Time:        {snap.time.isoformat()}")
        typer.echo(f"Consensus:   {snap.consensus_probability * 100:.1f}%")
        typer.echo(f"Confidence:  {snap.confidence_score:.3f}")
        typer.echo(f"Agreement:   {agreement}")
        typer.echo(f"Sources:     {snap.source_count}")
        for source_id, weight in sorted(snap.weights.items(), key=lambda kv: (-kv[1], kv[0])):
            flag = "  (outlier)" if source_id in snap.outlier_source_ids else ""
            typer.echo(f"  {source_id:<24} {weight:.4f}{flag}")
        if history > 0:
            rows = list_snapshots(conn, market, limit=10_000)[-history:]
            typer.echo(f"Last {len(rows)} snapshots:")
            for s in rows:
                typer.echo(f"  {s.time.isoformat()}  {s.consensus_probability:.4f}  conf={s.confidence_score:.3f}")
    finally:
        conn.close()

"""Movements subcommand: list detected probability moves."""

from __future__ import annotations

from pathlib import Path

import typer

from predconsensus.storage.db import get_connection
from predconsensus.storage.observations import list_movements

app = typer.Typer(help="Significant probability movements")


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    market: str | None = typer.Option(None, "--market", "-m", help="Filter by market ID"),
    limit: int = typer.Option(50, "--limit", "-n", help="Max events"),
) -> None:
    """List the most recent movement events."""
    settings = ctx.obj["settings"]
    if not Path(settings.db_path).exists():
        typer.echo(f"No database at {settings.db_path}; run a replay first")
        raise typer.Exit(1)
    conn = get_connection(settings.db_path, read_only=True)
    try:
        events = list_movements(conn, market_id=market, limit=limit)
        for e in events:
            typer.echo(
                f"  {e.detected_at.isoformat()}  {e.direction:<4} "
                f"{e.probability_before * 100:5.1f}% -> {e.probability_after * 100:5.1f}%  "
                f"{e.source_market_id}  ({e.market_id or '-'})"
            )
        typer.echo(f"Total: {len(events)} movements")
    finally:
        conn.close()

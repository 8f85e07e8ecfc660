"""Replay subcommand: run a JSONL feed through the engine into DuckDB."""

from pathlib import Path

import typer

from predconsensus.engine import ConsensusEngine
from predconsensus.replay.engine import replay_file
from predconsensus.storage.sink import DuckDBSink

app = typer.Typer(help="Deterministic replay of an event feed")


@app.command("run")
def run_replay(
    ctx: typer.Context,
    input_path: Path = typer.Option(..., "--input", "-i", exists=True, dir_okay=False, help="JSONL feed file"),
    restore: bool = typer.Option(
        False, "--restore/--no-restore", help="Start from accuracy records already in the database"
    ),
    strict: bool = typer.Option(False, "--strict", help="Stop at the first rejected record"),
) -> None:
    """Replay a feed: readings, resolutions and aggregation cycles, in file order."""
    settings = ctx.obj["settings"]
    sink = DuckDBSink(settings.db_path)
    try:
        engine = ConsensusEngine.from_settings(settings, sink=sink)
        if restore:
            engine.restore_from(sink.conn)
        stats = replay_file(input_path, engine, strict=strict)
        typer.echo(f"Replayed {stats.records} records from {input_path}")
        for kind, count in sorted(stats.by_kind.items()):
            typer.echo(f"  {kind:<14} {count}")
        typer.echo(
            f"Movements: {stats.movements}  Snapshots: {stats.snapshots}  "
            f"Scores: {stats.scores}  Rejected: {stats.rejected}"
        )
    finally:
        sink.close()

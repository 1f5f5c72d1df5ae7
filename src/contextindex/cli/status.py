"""contextindex status: index overview and per-source indexing state."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from contextindex.cli.common import console, get_config, open_db, open_service, resolve_db

_STATUS_STYLE = {
    "PENDING": "dim",
    "INDEXING": "yellow",
    "READY": "green",
    "FAILED": "red",
}


def status_cmd(
    ctx: typer.Context,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Show sources, chunk counts and indexing status."""
    cfg = get_config(ctx)
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No index database found.[/]\n"
                "  Run:  contextindex add --location <path-or-url>",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        return

    conn = open_db(db_path)
    try:
        stats = open_service(conn, cfg).get_stats()
    finally:
        conn.close()

    size_mb = db_path.stat().st_size / (1024 * 1024)
    console.print(
        Panel(
            f"Database:  {db_path} ({size_mb:.1f} MB)\n"
            f"Model:     {cfg.embedding.model} ({cfg.embedding.dimensions} dims)\n"
            f"Sources: [bold]{stats['totalSources']}[/]  |  Chunks: [bold]{stats['totalChunks']:,}[/]",
            title="[bold]Index[/]",
            expand=False,
        )
    )
    if not stats["indexingStatus"]:
        console.print("[dim]No sources registered yet.[/]")
        return

    table = Table(show_header=True, padding=(0, 1))
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Last indexed", style="dim")
    table.add_column("Location / error", overflow="fold")
    for entry in stats["indexingStatus"]:
        status = entry["status"]
        detail = entry["location"]
        if entry["errorMessage"]:
            detail = f"{detail}\n[red]{entry['errorMessage']}[/]"
        table.add_row(
            entry["sourceId"],
            f"[{_STATUS_STYLE.get(status, 'white')}]{status}[/]",
            str(entry["chunkCount"]),
            (entry["lastIndexedAt"] or "")[:16],
            detail,
        )
    console.print(table)

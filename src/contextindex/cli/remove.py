"""contextindex remove: delete a source and all of its chunks.

Usage:
  contextindex remove handbook
  contextindex remove handbook --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from contextindex.cli.common import console, get_config, open_db, open_service, resolve_db
from contextindex.cli.errors import err_source_busy, err_source_not_found
from contextindex.db.repository import SqliteIndexStore, SqliteSourceRegistry


def remove_cmd(
    ctx: typer.Context,
    source_id: Annotated[str, typer.Argument(help="Id of the source to remove.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Remove a source and all its chunks from the index."""
    cfg = get_config(ctx)
    conn = open_db(resolve_db(db, cfg))
    try:
        service = open_service(conn, cfg)
        existing = SqliteSourceRegistry(conn).get_source(source_id)
        if existing is None:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(0)
        if service.is_busy(existing):
            console.print(err_source_busy(source_id))
            raise typer.Exit(1)

        chunk_count = SqliteIndexStore(conn, cfg.embedding.dimensions).count_chunks(source_id)
        console.print(f"\nRemove source: [bold]{source_id}[/] ({existing.location})")
        console.print(f"  Status: {existing.status.value}  |  Chunks: {chunk_count}")

        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        outcome = service.remove_source(source_id)
        if not outcome["success"]:
            console.print(f"[red]✗[/] {outcome['message']}")
            raise typer.Exit(1)
        console.print(f"\n[green]✓[/] {outcome['message']}")
    finally:
        conn.close()

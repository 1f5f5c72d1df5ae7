"""contextindex add: register a context source (and optionally index it).

Usage:
  contextindex add --location docs/handbook.pdf
  contextindex add --location https://github.com/acme/handbook --id handbook --index
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from contextindex.cli.common import console, get_config, open_db, open_service, resolve_db
from contextindex.cli.errors import err_request, err_source_exists
from contextindex.cli.reindex import print_outcome
from contextindex.errors import Conflict, ContextIndexError


def add_cmd(
    ctx: typer.Context,
    location: Annotated[
        str,
        typer.Option("--location", "-l", help="File path, file:// URI, web URL or GitHub repository URL."),
    ],
    source_id: Annotated[
        str | None,
        typer.Option("--id", help="Source id (default: generated UUID)."),
    ] = None,
    index: Annotated[
        bool,
        typer.Option("--index", help="Index the source right after registering it."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database (created if missing)."),
    ] = None,
) -> None:
    """Register a new context source."""
    cfg = get_config(ctx)
    conn = open_db(resolve_db(db, cfg), must_exist=False)
    try:
        service = open_service(conn, cfg)
        try:
            created = service.register_source(location, source_id)
        except Conflict as exc:
            console.print(err_source_exists(source_id or ""))
            raise typer.Exit(1) from exc
        except ContextIndexError as exc:
            console.print(err_request(exc))
            raise typer.Exit(1) from exc

        console.print(f"[green]✓[/] Registered [bold]{created['sourceId']}[/] ({location})")
        if index:
            print_outcome(service.trigger_reindex(created["sourceId"]))
    finally:
        conn.close()

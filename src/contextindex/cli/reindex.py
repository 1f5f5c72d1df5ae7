"""contextindex reindex: rebuild the chunks of one source.

Fetch, chunk, embed and store run synchronously; the source ends READY or
FAILED (with the reason recorded, see ``contextindex status``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer

from contextindex.cli.common import console, get_config, open_db, open_service, resolve_db
from contextindex.cli.errors import err_config, err_request
from contextindex.config import ConfigError
from contextindex.errors import ContextIndexError


def reindex_cmd(
    ctx: typer.Context,
    source_id: Annotated[str, typer.Argument(help="Id of the source to re-index.")],
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", min=0.001, help="Cancel the run after this many seconds."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Re-index a source now."""
    cfg = get_config(ctx)
    if timeout is not None:
        cfg.indexing.timeout_seconds = timeout

    conn = open_db(resolve_db(db, cfg))
    try:
        service = open_service(conn, cfg)
        with console.status(f"Indexing {source_id}..."):
            try:
                outcome = service.trigger_reindex(source_id)
            except ConfigError as exc:
                console.print(err_config(str(exc)))
                raise typer.Exit(1) from exc
            except ContextIndexError as exc:
                console.print(err_request(exc))
                raise typer.Exit(1) from exc
    finally:
        conn.close()

    print_outcome(outcome)


def print_outcome(outcome: dict[str, Any]) -> None:
    """Print a trigger_reindex() result; failures exit with status 1."""
    if outcome["success"]:
        console.print(f"[green]✓[/] {outcome['message']}")
        return
    console.print(f"[red]✗[/] {outcome['message']}")
    raise typer.Exit(1)

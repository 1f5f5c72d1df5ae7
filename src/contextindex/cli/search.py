"""contextindex search: semantic search over indexed chunks."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from contextindex.cli.common import console, get_config, open_db, open_service, resolve_db
from contextindex.cli.errors import err_config, err_embedding_unavailable, err_request
from contextindex.config import ConfigError
from contextindex.errors import ContextIndexError, EmbeddingUnavailable

_PREVIEW_CHARS = 160


def search_cmd(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    max_results: Annotated[
        int | None,
        typer.Option("--max-results", "-n", help="Maximum number of chunks (default from config)."),
    ] = None,
    min_similarity: Annotated[
        float | None,
        typer.Option("--min-similarity", help="Cosine similarity threshold 0..1 (default from config)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the raw result as JSON."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Search indexed context for chunks similar to QUERY."""
    cfg = get_config(ctx)
    conn = open_db(resolve_db(db, cfg))
    try:
        service = open_service(conn, cfg)
        try:
            result = service.search(query, max_results=max_results, min_similarity=min_similarity)
        except ConfigError as exc:
            console.print(err_config(str(exc)))
            raise typer.Exit(1) from exc
        except EmbeddingUnavailable as exc:
            console.print(err_embedding_unavailable(exc.message))
            raise typer.Exit(1) from exc
        except ContextIndexError as exc:
            console.print(err_request(exc))
            raise typer.Exit(1) from exc
    finally:
        conn.close()

    if as_json:
        typer.echo(json.dumps(result, indent=2))
        return

    if not result["chunks"]:
        console.print("[dim]No matching chunks.[/]")
        return

    table = Table(title=f"{result['totalResults']} result(s)")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Source", style="dim")
    table.add_column("Text")
    for chunk in result["chunks"]:
        text = " ".join(chunk["text"].split())
        if len(text) > _PREVIEW_CHARS:
            text = text[:_PREVIEW_CHARS] + "…"
        origin = chunk["sourceId"]
        if chunk.get("filePath"):
            origin = f"{origin}:{chunk['filePath']}"
        table.add_row(f"{chunk['score']:.3f}", origin, text)
    console.print(table)

"""contextindex CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from contextindex.cli.add import add_cmd
from contextindex.cli.common import get_config, setup_logging
from contextindex.cli.reindex import reindex_cmd
from contextindex.cli.remove import remove_cmd
from contextindex.cli.search import search_cmd
from contextindex.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("contextindex")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"contextindex {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="contextindex",
    help=(
        "contextindex — semantic search over indexed context sources.\n\n"
        "  contextindex add      Register a file, web page or GitHub repository.\n"
        "  contextindex reindex  Fetch, chunk and embed a source.\n"
        "  contextindex search   Find the chunks closest to a query."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging."),
    ] = False,
) -> None:
    """contextindex — semantic search over indexed context sources."""
    cfg = get_config(ctx)
    setup_logging("DEBUG" if verbose else cfg.logging.level)


app.command("add")(add_cmd)
app.command("reindex")(reindex_cmd)
app.command("search")(search_cmd)
app.command("remove")(remove_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed contextindex version."""
    typer.echo(f"contextindex {_installed_version()}")


if __name__ == "__main__":
    app()

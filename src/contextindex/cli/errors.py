"""contextindex rich error messages: actionable feedback for operators.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from contextindex.cli.errors import err_no_db
    console.print(err_no_db(".contextindex.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from contextindex.errors import ContextIndexError


def err_no_db(db_path: str = ".contextindex.db") -> str:
    """No index database at *db_path*."""
    return (
        f"[red]Error:[/] No index database found at '{db_path}'.\n"
        "  Run:  contextindex add --location <path-or-url>"
    )


def err_config(message: str) -> str:
    """Invalid or forbidden configuration (includes missing API keys)."""
    return (
        f"[red]Configuration error:[/] {message}\n"
        "  Check contextindex.yaml, ~/.contextindex/config.yaml and CONTEXTINDEX_* variables."
    )


def err_source_not_found(source_id: str) -> str:
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not registered.\n"
        "  Run:  contextindex status  to see all sources."
    )


def err_source_exists(source_id: str) -> str:
    return (
        f"[red]Error:[/] A source with id '{source_id}' already exists.\n"
        "  Pick another --id, or run:  contextindex reindex " + source_id
    )


def err_source_busy(source_id: str) -> str:
    """Source is mid-run; removal and re-index must wait."""
    return (
        f"[yellow]Busy:[/] Source '{source_id}' is currently being indexed.\n"
        "  Wait for the run to finish, then retry."
    )


def err_embedding_unavailable(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Check network access and provider quota, then retry."
    )


def err_request(exc: ContextIndexError) -> str:
    """Generic per-request failure, tagged with its error code."""
    return f"[red]Error ({exc.code}):[/] {exc.message}"

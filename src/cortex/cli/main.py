"""Cortex CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from cortex.cli.daemon import daemon_cmd
from cortex.cli.ingest import ingest_cmd
from cortex.cli.maintenance import init_cmd, reindex_cmd, vacuum_cmd
from cortex.cli.search import insights_cmd, search_cmd, show_cmd
from cortex.cli.status import status_cmd


def _version() -> str:
    try:
        return importlib.metadata.version("cortex")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cortex {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="cortex",
    help=(
        "Cortex — personal knowledge ingestion.\n\n"
        "  cortex daemon   Watch folders and extract insights as files change.\n"
        "  cortex search   Semantic search over everything extracted so far."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Cortex — personal knowledge ingestion."""


app.command("init")(init_cmd)
app.command("daemon")(daemon_cmd)
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("insights")(insights_cmd)
app.command("show")(show_cmd)
app.command("status")(status_cmd)
app.command("reindex")(reindex_cmd)
app.command("vacuum")(vacuum_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Cortex version."""
    typer.echo(f"cortex {_version()}")


if __name__ == "__main__":
    app()

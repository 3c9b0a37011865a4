"""cortex ingest — process files now, without the daemon.

  cortex ingest             every file of every watch source
  cortex ingest notes.md    one file (its watch source's lens, else 'general')

Unchanged files are skipped by fingerprint, so repeated runs are cheap.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from cortex.cli._runtime import (
    ConfigOption,
    build_extractor,
    console,
    load_or_exit,
    open_store,
    require_healthy,
)
from cortex.cli.errors import err_no_sources, err_path_not_found
from cortex.config import default_config_path
from cortex.daemon import IngestionDaemon
from cortex.logging_config import setup_logging

_OUTCOME_STYLE = {
    "indexed": "[green]✓ indexed[/]",
    "unchanged": "[dim]– unchanged[/]",
    "error": "[red]✗ error[/]",
    "dropped": "[yellow]✗ unreadable[/]",
    "busy": "[yellow]… busy[/]",
}


def ingest_cmd(
    path: Annotated[
        Optional[Path],
        typer.Argument(help="File to ingest. Omit to process every watched file."),
    ] = None,
    config: ConfigOption = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log progress to stderr."),
    ] = False,
) -> None:
    """Ingest one file, or every file of every watch source."""
    cfg = load_or_exit(config)
    setup_logging("DEBUG" if verbose else "WARNING")

    if path is not None and not path.is_file():
        console.print(err_path_not_found(str(path)))
        raise typer.Exit(1)
    if path is None and not cfg.watch_sources:
        console.print(err_no_sources(str(config or default_config_path())))
        raise typer.Exit(1)

    extractor = build_extractor(cfg)
    require_healthy(cfg, extractor)

    with open_store(cfg) as store:
        daemon = IngestionDaemon(cfg, store, extractor)
        result = asyncio.run(daemon.ingest_now(path))

        if path is not None:
            outcome = result["outcome"]
            console.print(f"{_OUTCOME_STYLE.get(outcome, outcome)}  {result['path']}")
            if outcome == "error":
                record = store.records.get_file(result["path"])
                if record is not None and record.error:
                    console.print(f"  [dim]{record.error}[/]")
                raise typer.Exit(1)
            return

    _print_summary(result)
    if result.get("error"):
        console.print("  Run:  cortex status  to see the failing files.")
        raise typer.Exit(1)


def _print_summary(result: dict) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Outcome")
    table.add_column("Count", justify="right", style="bold")
    for outcome, label in _OUTCOME_STYLE.items():
        if result.get(outcome):
            table.add_row(label, str(result[outcome]))
    console.print(f"Processed [bold]{result['files']}[/] file(s)")
    console.print(table)

"""cortex reindex / vacuum / init — store maintenance.

reindex marks records pending and forgets their fingerprints; the daemon
reprocesses them on its next start (or run ``cortex ingest``).
"""

from __future__ import annotations

from typing import Annotated, Optional

import typer

from cortex.cli._runtime import ConfigOption, build_extractor, console, load_or_exit, open_store
from cortex.cli.errors import err_unknown_source
from cortex.config import ensure_config
from cortex.daemon import IngestionDaemon


def reindex_cmd(
    source: Annotated[
        Optional[str],
        typer.Option("--source", "-s", help="Watch source id. Omit to reindex everything."),
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Mark files for reprocessing."""
    cfg = load_or_exit(config)
    if source is not None and cfg.source(source) is None:
        console.print(err_unknown_source(source, [s.id for s in cfg.watch_sources]))
        raise typer.Exit(1)

    with open_store(cfg) as store:
        count = IngestionDaemon(cfg, store, build_extractor(cfg)).reindex(source)
    scope = f"source '{source}'" if source else "all sources"
    console.print(f"[green]✓[/] {count} file(s) marked pending ({scope}).")
    if count:
        console.print("  Run:  cortex ingest  (or restart the daemon) to reprocess them.")


def vacuum_cmd(config: ConfigOption = None) -> None:
    """Remove vectors whose insight no longer exists and compact the database."""
    cfg = load_or_exit(config)
    with open_store(cfg) as store:
        removed = IngestionDaemon(cfg, store, build_extractor(cfg)).vacuum()
    console.print(f"[green]✓[/] Removed {removed} orphaned vector(s).")


def init_cmd(config: ConfigOption = None) -> None:
    """Write a default config file (existing files are left untouched)."""
    path = ensure_config(config)
    console.print(f"[green]✓[/] Config: {path}")
    console.print("  Edit watch_sources, then export your API key and run:  cortex daemon")

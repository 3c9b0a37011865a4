"""cortex daemon — watch the configured sources and keep the index current.

Runs in the foreground until SIGINT/SIGTERM, then waits for in-flight files
to finish before exiting. Logs go to stderr and to <data_dir>/logs/cortex.log.
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer

from cortex.cli._runtime import (
    ConfigOption,
    build_extractor,
    console,
    load_or_exit,
    open_store,
    require_healthy,
)
from cortex.cli.errors import err_no_sources
from cortex.config import default_config_path
from cortex.daemon import IngestionDaemon
from cortex.logging_config import setup_logging


def daemon_cmd(
    config: ConfigOption = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Console log level (DEBUG, INFO, WARNING, ...)."),
    ] = "INFO",
) -> None:
    """Run the ingestion daemon in the foreground."""
    cfg = load_or_exit(config)
    if not cfg.watch_sources:
        console.print(err_no_sources(str(config or default_config_path())))
        raise typer.Exit(1)

    log_file = setup_logging(log_level, cfg.log_dir)
    extractor = build_extractor(cfg)
    require_healthy(cfg, extractor)

    console.print(f"[bold]Cortex daemon[/]  data: {cfg.data_dir}  log: [dim]{log_file}[/]")
    with open_store(cfg) as store:
        daemon = IngestionDaemon(cfg, store, extractor)
        asyncio.run(daemon.run())

"""cortex status — index counts, failing files and model health."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from cortex.cli._runtime import ConfigOption, build_extractor, console, load_or_exit, open_store
from cortex.query import status


def status_cmd(
    config: ConfigOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print raw JSON.")] = False,
) -> None:
    """Show index status: files, insights, errors, sources, model health."""
    cfg = load_or_exit(config)
    extractor = build_extractor(cfg)
    with open_store(cfg) as store:
        info = status(store, cfg, extractor)

    if as_json:
        typer.echo(json.dumps(info, indent=2))
        return

    health = "[green]✓ credentials found[/]" if info["llm_healthy"] else "[red]✗ no API key[/]"
    lines = [
        f"Files indexed: [bold]{info['files_indexed']}[/]  |  "
        f"Insights: [bold]{info['insights']}[/]  |  "
        f"Pending: [bold]{info['pending']}[/]  |  "
        f"Processing: [bold]{info['processing']}[/]",
        f"Model:    {cfg.llm.model}  {health}",
        f"Database: [dim]{cfg.db_path}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Cortex[/]", expand=False))

    if info["sources"]:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("ID", style="bold")
        table.add_column("Lens", style="cyan")
        table.add_column("Path", style="dim")
        for source in info["sources"]:
            table.add_row(source["id"], source["lens"], source["path"])
        console.print(Panel(table, title="[bold]Watch Sources[/]", expand=False))
    else:
        console.print("[yellow]No watch sources configured.[/]")

    if info["error_count"]:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Path")
        table.add_column("Error", style="red")
        for err in info["errors"]:
            table.add_row(err["path"], err["error"])
        console.print(
            Panel(table, title=f"[bold red]Errors[/] [dim]({info['error_count']})[/]", expand=False)
        )

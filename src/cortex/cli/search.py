"""cortex search / insights / show — read the insight index."""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional

import typer
from rich.panel import Panel
from rich.table import Table

from cortex.analyzer import CATEGORIES
from cortex.cli._runtime import ConfigOption, build_extractor, console, load_or_exit, open_store
from cortex.cli.errors import err_dimension_mismatch, err_insight_not_found, err_model_failure
from cortex.config import LENSES
from cortex.errors import DimensionMismatch, EmbeddingFailed
from cortex.query import get_insight, list_insights, search


def search_cmd(
    text: Annotated[str, typer.Argument(metavar="QUERY", help="What to look for.")],
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum results.")] = 10,
    config: ConfigOption = None,
) -> None:
    """Semantic search over extracted insights."""
    cfg = load_or_exit(config)
    extractor = build_extractor(cfg)

    with open_store(cfg) as store:
        try:
            hits = asyncio.run(search(store, extractor, text, limit))
        except DimensionMismatch as exc:
            console.print(err_dimension_mismatch(exc.expected, exc.actual, cfg.llm.embedding_model))
            raise typer.Exit(1) from exc
        except EmbeddingFailed as exc:
            console.print(err_model_failure(str(exc)))
            raise typer.Exit(1) from exc

    if not hits:
        console.print("[dim]No matching insights.[/]")
        return

    table = Table(show_lines=False)
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Title")
    table.add_column("Category", style="cyan")
    table.add_column("Source", style="dim")
    for hit in hits:
        table.add_row(f"{hit.score:.3f}", f"{hit.title}\n[dim]{hit.snippet}[/]", hit.category, hit.source)
    console.print(table)


def insights_cmd(
    lens: Annotated[
        Optional[str], typer.Option("--lens", help=f"Filter by lens ({', '.join(LENSES)}).")
    ] = None,
    category: Annotated[
        Optional[str],
        typer.Option("--category", help=f"Filter by category ({', '.join(CATEGORIES)})."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum rows.")] = 30,
    offset: Annotated[int, typer.Option("--offset", min=0, help="Rows to skip.")] = 0,
    config: ConfigOption = None,
) -> None:
    """List recent insights, newest first."""
    cfg = load_or_exit(config)
    with open_store(cfg) as store:
        rows = list_insights(store, lens=lens, category=category, limit=limit, offset=offset)

    if not rows:
        console.print("[dim]No insights yet.[/]")
        return

    table = Table()
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title")
    table.add_column("Category", style="cyan")
    table.add_column("Lens")
    table.add_column("Conf.", justify="right")
    for insight in rows:
        table.add_row(
            insight.id[:8],
            insight.title,
            insight.category,
            insight.lens,
            f"{insight.confidence:.2f}",
        )
    console.print(table)


def show_cmd(
    insight_id: Annotated[str, typer.Argument(metavar="ID", help="Insight id.")],
    config: ConfigOption = None,
) -> None:
    """Show one insight in full."""
    cfg = load_or_exit(config)
    with open_store(cfg) as store:
        insight = get_insight(store, insight_id)
        record = store.records.get_file_by_id(insight.file_id) if insight else None

    if insight is None:
        console.print(err_insight_not_found(insight_id))
        raise typer.Exit(1)

    lines = [
        f"[bold]{insight.title}[/]",
        "",
        insight.content,
        "",
        f"Category:  {insight.category}   Lens: {insight.lens}   Confidence: {insight.confidence:.2f}",
    ]
    if insight.tags:
        lines.append(f"Tags:      {', '.join(insight.tags)}")
    if insight.related_concepts:
        lines.append(f"Related:   {', '.join(insight.related_concepts)}")
    if record is not None:
        lines.append(f"Source:    [dim]{record.path}[/]")
    console.print(Panel("\n".join(lines), title=f"[dim]{insight.id}[/]", expand=False))

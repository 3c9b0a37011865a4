"""Cortex rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from cortex.cli.errors import err_no_api_key
    console.print(err_no_api_key("openrouter", "OPENROUTER_API_KEY"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str, env_var: str | None = None) -> str:
    """No credential for *provider* in the environment.

    Example:
        No API key for 'openrouter'. Set:  export OPENROUTER_API_KEY=sk-...
    """
    env_var = env_var or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_config(message: str, config_path: str) -> str:
    """Config file failed validation."""
    return (
        f"[red]Error:[/] Invalid configuration in '{config_path}':\n"
        f"  {message}\n"
        f"  Fix the file, or run:  cortex init  to write a fresh default."
    )


def err_no_sources(config_path: str) -> str:
    """No watch sources configured."""
    return (
        "[red]Error:[/] No watch sources configured.\n"
        f"  Add at least one entry under 'watch_sources:' in {config_path}"
    )


def err_unknown_source(source_id: str, known: list[str]) -> str:
    """--source names no configured watch source."""
    known_list = ", ".join(known) if known else "(none)"
    return (
        f"[red]Error:[/] Unknown watch source '{source_id}'.\n"
        f"  Configured sources: {known_list}"
    )


def err_dimension_mismatch(expected: int, actual: int, model: str) -> str:
    """Embedding model disagrees with the dimensionality stored in the index."""
    return (
        "[red]Error:[/] Embedding dimension mismatch.\n"
        f"  Index stores:   {expected} dimensions\n"
        f"  Config/model:   {actual} dimensions ({model})\n"
        "  Restore the previous embedding model, or move the data directory aside and re-ingest."
    )


def err_path_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path, or run:  cortex ingest  to process every watched file."
    )


def err_insight_not_found(insight_id: str) -> str:
    return (
        f"[yellow]Insight not found:[/] '{insight_id}'\n"
        "  Run:  cortex insights  to list recent insights."
    )


def err_model_failure(message: str) -> str:
    """A model call failed outside per-file processing (e.g. embedding a query)."""
    return (
        f"[red]Error:[/] Model call failed: {message}\n"
        "  Check your network and API key, then retry.  cortex status  shows model health."
    )

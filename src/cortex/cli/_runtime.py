"""Shared wiring for CLI commands: config, store and extractor construction.

Helpers print an actionable message and raise ``typer.Exit(1)`` on failure,
so commands can call them without their own error handling.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from cortex.analyzer import InsightExtractor
from cortex.cli.errors import err_config, err_dimension_mismatch, err_no_api_key
from cortex.config import ConfigError, CortexConfig, default_config_path, load_config
from cortex.db.store import Store
from cortex.errors import DimensionMismatch
from cortex.llm_client import LLMClient, provider_of, required_env_var

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config.yaml (default: $CORTEX_CONFIG or ~/.config/cortex/config.yaml)."),
]


def load_or_exit(config_path: Path | None) -> CortexConfig:
    path = config_path if config_path is not None else default_config_path()
    try:
        return load_config(path)
    except ConfigError as exc:
        console.print(err_config(str(exc), str(path)))
        raise typer.Exit(1) from exc


def open_store(cfg: CortexConfig) -> Store:
    try:
        return Store.open(cfg.db_path, cfg.llm.embedding_dimensions)
    except DimensionMismatch as exc:
        console.print(err_dimension_mismatch(exc.expected, exc.actual, cfg.llm.embedding_model))
        raise typer.Exit(1) from exc


def build_extractor(cfg: CortexConfig) -> InsightExtractor:
    client = LLMClient(
        model=cfg.llm.model,
        embedding_model=cfg.llm.embedding_model,
        provider=cfg.llm.provider,
        api_key_ref=cfg.llm.api_key_ref,
        max_retries=cfg.queue.max_retries,
    )
    return InsightExtractor(client, cfg.llm.embedding_dimensions, privacy=cfg.privacy)


def require_healthy(cfg: CortexConfig, extractor: InsightExtractor) -> None:
    """Exit with a credential hint unless the model credentials are present."""
    if extractor.is_healthy():
        return
    for model in (cfg.llm.model, cfg.llm.embedding_model):
        ref = cfg.llm.api_key_ref if provider_of(model) == cfg.llm.provider.lower() else None
        env_var = required_env_var(model, ref)
        if env_var is not None and not os.environ.get(env_var):
            console.print(err_no_api_key(provider_of(model), env_var))
            break
    raise typer.Exit(1)

"""Cortex configuration loader.

Priority (high → low):
  1. Environment variables  (CORTEX_MODEL, CORTEX_EMBEDDING_MODEL, CORTEX_DATA_DIR)
  2. Config file            ($CORTEX_CONFIG, else ~/.config/cortex/config.yaml)
  3. Hardcoded defaults

The config file must never contain credentials: ``llm.api_key_ref`` names the
environment variable that holds the key. A file whose text matches a secret
pattern is rejected. All YAML reads use yaml.safe_load() — never yaml.load().
Keys may be written in snake_case or camelCase (``watchSources``, ``dataDir``,
``piiConfig`` ...).
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cortex.privacy import PiiConfig, scan_for_secrets

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LENSES: tuple[str, ...] = ("philosopher", "architect", "somatic", "analyst", "general")

_CONFIG_DIR: Path = Path.home() / ".config" / "cortex"
_CONFIG_PATH: Path = _CONFIG_DIR / "config.yaml"
_DEFAULT_DATA_DIR: Path = Path.home() / ".local" / "share" / "cortex"

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["version", "data_dir", "watch_sources", "privacy", "llm", "queue", "debounce"]
)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WatchSource:
    """A watched root folder and how its files are analysed."""

    id: str
    path: Path
    lens: str = "general"
    recursive: bool = True
    extensions: tuple[str, ...] = ()
    ignore: tuple[str, ...] = ()

    def contains(self, path: Path | str) -> bool:
        """True if *path* lies under this source's root."""
        try:
            Path(path).resolve().relative_to(self.path.resolve())
        except ValueError:
            return False
        return True


@dataclass
class PrivacyCfg:
    """Redaction settings (config: privacy:)."""

    redact_secrets: bool = True
    redact_pii: bool = False
    pii: PiiConfig = field(default_factory=PiiConfig)


@dataclass
class LlmCfg:
    """External model settings (config: llm:)."""

    provider: str = "openrouter"
    model: str = "openrouter/google/gemini-2.0-flash-001"
    embedding_model: str = "openai/text-embedding-3-small"
    embedding_dimensions: int = 1536
    api_key_ref: str | None = None  # name of the env var holding the key


@dataclass
class QueueCfg:
    """Processing limits (config: queue:)."""

    concurrency: int = 2
    max_retries: int = 3


@dataclass
class CortexConfig:
    """Root configuration object, built by load_config()."""

    data_dir: Path = _DEFAULT_DATA_DIR
    watch_sources: list[WatchSource] = field(default_factory=list)
    privacy: PrivacyCfg = field(default_factory=PrivacyCfg)
    llm: LlmCfg = field(default_factory=LlmCfg)
    queue: QueueCfg = field(default_factory=QueueCfg)
    debounce: float = 0.5

    @property
    def db_path(self) -> Path:
        return self.data_dir / "cortex.db"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    def source(self, source_id: str) -> WatchSource | None:
        return next((s for s in self.watch_sources if s.id == source_id), None)

    def source_for_path(self, path: Path | str) -> WatchSource | None:
        """The first watch source whose root contains *path*."""
        return next((s for s in self.watch_sources if s.contains(path)), None)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _normalize_keys(obj: Any) -> Any:
    """Recursively convert camelCase mapping keys to snake_case."""
    if isinstance(obj, dict):
        return {_snake(str(k)): _normalize_keys(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_normalize_keys(v) for v in obj]
    return obj


def _expand(path: str | Path) -> Path:
    return Path(os.path.expandvars(str(path))).expanduser()


def _normalize_ext(ext: str) -> str:
    ext = str(ext).strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def _parse_source(raw: dict[str, Any]) -> WatchSource:
    if "id" not in raw or "path" not in raw:
        raise ConfigError(f"watch source needs both 'id' and 'path': {raw!r}")
    lens = str(raw.get("lens", "general"))
    if lens not in LENSES:
        raise ConfigError(
            f"watch source '{raw['id']}' has unknown lens '{lens}'.\n"
            f"  Valid lenses: {', '.join(LENSES)}"
        )
    return WatchSource(
        id=str(raw["id"]),
        path=_expand(raw["path"]),
        lens=lens,
        recursive=bool(raw.get("recursive", True)),
        extensions=tuple(_normalize_ext(e) for e in raw.get("extensions") or []),
        ignore=tuple(str(p) for p in raw.get("ignore") or []),
    )


def _warn_unknown_keys(data: dict[str, Any], source: str) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def config_from_dict(data: dict[str, Any], source: str = "<dict>") -> CortexConfig:
    """Build and validate a *CortexConfig* from a raw mapping.

    Raises:
        ConfigError: On an unknown lens, duplicate source ids, or invalid
            queue limits.
    """
    data = _normalize_keys(data or {})
    _warn_unknown_keys(data, source)
    cfg = CortexConfig()

    if "data_dir" in data:
        cfg.data_dir = _expand(data["data_dir"])

    if "watch_sources" in data:
        sources = [_parse_source(s) for s in data["watch_sources"] or []]
        seen: set[str] = set()
        for s in sources:
            if s.id in seen:
                raise ConfigError(f"duplicate watch source id '{s.id}'")
            seen.add(s.id)
        cfg.watch_sources = sources

    if "privacy" in data:
        p = data["privacy"] or {}
        pii_raw = p.get("pii") or p.get("pii_config") or {}
        cfg.privacy = PrivacyCfg(
            redact_secrets=bool(p.get("redact_secrets", True)),
            redact_pii=bool(p.get("redact_pii", False)),
            pii=PiiConfig(
                emails=bool(pii_raw.get("emails", False)),
                phones=bool(pii_raw.get("phones", False)),
                ips=bool(pii_raw.get("ips", False)),
                financial=bool(pii_raw.get("financial", False)),
            ),
        )

    if "llm" in data:
        m = data["llm"] or {}
        cfg.llm = LlmCfg(
            provider=str(m.get("provider", cfg.llm.provider)),
            model=str(m.get("model", cfg.llm.model)),
            embedding_model=str(m.get("embedding_model", cfg.llm.embedding_model)),
            embedding_dimensions=int(
                m.get("embedding_dimensions", cfg.llm.embedding_dimensions)
            ),
            api_key_ref=m.get("api_key_ref") or cfg.llm.api_key_ref,
        )
        if cfg.llm.embedding_dimensions < 1:
            raise ConfigError("llm.embedding_dimensions must be >= 1")

    if "queue" in data:
        q = data["queue"] or {}
        cfg.queue = QueueCfg(
            concurrency=int(q.get("concurrency", cfg.queue.concurrency)),
            max_retries=int(q.get("max_retries", cfg.queue.max_retries)),
        )
        if cfg.queue.concurrency < 1:
            raise ConfigError("queue.concurrency must be >= 1")
        if cfg.queue.max_retries < 0:
            raise ConfigError("queue.max_retries must be >= 0")

    if "debounce" in data:
        cfg.debounce = float(data["debounce"])

    return cfg


def _check_no_credentials(text: str, source: Path) -> None:
    """Raise ConfigError if the raw config text contains a secret."""
    findings = scan_for_secrets(text)
    if findings:
        kinds = ", ".join(sorted({f.pattern for f in findings}))
        raise ConfigError(
            f"Config file '{source}' contains what looks like a credential ({kinds}).\n"
            "  Credentials must come from the environment.\n"
            "  Set llm.api_key_ref to the variable name, e.g.:\n"
            "    api_key_ref: OPENROUTER_API_KEY"
        )


def _apply_env_overrides(cfg: CortexConfig) -> CortexConfig:
    if model := os.environ.get("CORTEX_MODEL"):
        cfg.llm.model = model
    if model := os.environ.get("CORTEX_EMBEDDING_MODEL"):
        cfg.llm.embedding_model = model
    if data_dir := os.environ.get("CORTEX_DATA_DIR"):
        cfg.data_dir = _expand(data_dir)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def default_config_path() -> Path:
    """``$CORTEX_CONFIG`` if set, else ``~/.config/cortex/config.yaml``."""
    env = os.environ.get("CORTEX_CONFIG")
    return _expand(env) if env else _CONFIG_PATH


def load_config(path: Path | None = None) -> CortexConfig:
    """Load and return a validated *CortexConfig*.

    A missing file yields the defaults (no watch sources). Environment
    overrides are applied last.

    Raises:
        ConfigError: If the file is invalid or contains a credential.
    """
    config_path = path if path is not None else default_config_path()

    if config_path.exists():
        text = config_path.read_text(encoding="utf-8")
        _check_no_credentials(text, config_path)
        raw = yaml.safe_load(text) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file '{config_path}' must contain a mapping")
        cfg = config_from_dict(raw, source=str(config_path))
    else:
        cfg = CortexConfig()

    return _apply_env_overrides(cfg)


def ensure_config(path: Path | None = None) -> Path:
    """Write a commented default config file if none exists. Returns its path."""
    target = path if path is not None else default_config_path()
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Cortex configuration.\n"
            "# NEVER store API keys here — name the environment variable instead:\n"
            "#   export OPENROUTER_API_KEY=sk-or-...\n"
            "\n"
            f"data_dir: {_DEFAULT_DATA_DIR}\n"
            "\n"
            "watch_sources:\n"
            "  - id: documents\n"
            f"    path: {Path.home() / 'Documents'}\n"
            "    lens: general\n"
            "    extensions: [.md, .txt, .pdf]\n"
            "  - id: notes\n"
            f"    path: {Path.home() / 'Notes'}\n"
            "    lens: philosopher\n"
            "    extensions: [.md, .txt]\n"
            "\n"
            "privacy:\n"
            "  redact_secrets: true\n"
            "  redact_pii: false\n"
            "\n"
            "llm:\n"
            "  provider: openrouter\n"
            "  model: openrouter/google/gemini-2.0-flash-001\n"
            "  embedding_model: openai/text-embedding-3-small\n"
            "  embedding_dimensions: 1536\n"
            "  api_key_ref: OPENROUTER_API_KEY\n"
            "\n"
            "queue:\n"
            "  concurrency: 2\n"
            "  max_retries: 3\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target

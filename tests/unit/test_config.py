"""Tests for the Cortex config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from cortex.config import (
    ConfigError,
    CortexConfig,
    WatchSource,
    config_from_dict,
    default_config_path,
    ensure_config,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("CORTEX_MODEL", "CORTEX_EMBEDDING_MODEL", "CORTEX_DATA_DIR", "CORTEX_CONFIG"):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_missing_file_returns_defaults(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert isinstance(cfg, CortexConfig)
    assert cfg.watch_sources == []
    assert cfg.queue.concurrency == 2
    assert cfg.queue.max_retries == 3
    assert cfg.privacy.redact_secrets is True
    assert cfg.privacy.redact_pii is False
    assert cfg.debounce == 0.5


def test_db_and_log_paths_under_data_dir(tmp_path):
    cfg = config_from_dict({"data_dir": str(tmp_path / "d")})
    assert cfg.db_path == tmp_path / "d" / "cortex.db"
    assert cfg.log_dir == tmp_path / "d" / "logs"


def test_default_config_path_honours_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CORTEX_CONFIG", str(tmp_path / "c.yaml"))
    assert default_config_path() == tmp_path / "c.yaml"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def test_full_snake_case_config(tmp_path):
    path = _write_yaml(
        tmp_path / "config.yaml",
        {
            "data_dir": str(tmp_path / "data"),
            "watch_sources": [
                {
                    "id": "notes",
                    "path": str(tmp_path / "notes"),
                    "lens": "philosopher",
                    "recursive": False,
                    "extensions": ["md", ".TXT"],
                    "ignore": ["drafts/*"],
                }
            ],
            "privacy": {"redact_secrets": True, "redact_pii": True, "pii": {"emails": True}},
            "llm": {
                "provider": "openai",
                "model": "openai/gpt-4o-mini",
                "embedding_model": "openai/text-embedding-3-large",
                "embedding_dimensions": 3072,
                "api_key_ref": "MY_KEY",
            },
            "queue": {"concurrency": 4, "max_retries": 5},
            "debounce": 1.5,
        },
    )
    cfg = load_config(path)
    src = cfg.watch_sources[0]
    assert src == WatchSource(
        id="notes",
        path=tmp_path / "notes",
        lens="philosopher",
        recursive=False,
        extensions=(".md", ".txt"),
        ignore=("drafts/*",),
    )
    assert cfg.data_dir == tmp_path / "data"
    assert cfg.privacy.redact_pii is True
    assert cfg.privacy.pii.emails is True
    assert cfg.privacy.pii.phones is False
    assert cfg.llm.model == "openai/gpt-4o-mini"
    assert cfg.llm.embedding_dimensions == 3072
    assert cfg.llm.api_key_ref == "MY_KEY"
    assert cfg.queue.concurrency == 4
    assert cfg.queue.max_retries == 5
    assert cfg.debounce == 1.5


def test_camel_case_keys_accepted(tmp_path):
    cfg = config_from_dict(
        {
            "dataDir": str(tmp_path / "data"),
            "watchSources": [{"id": "n", "path": str(tmp_path)}],
            "privacy": {"redactSecrets": False, "redactPII": True, "piiConfig": {"ips": True}},
            "llm": {"embeddingModel": "openai/x", "apiKeyRef": "KEY"},
            "queue": {"maxRetries": 1},
        }
    )
    assert cfg.data_dir == tmp_path / "data"
    assert cfg.watch_sources[0].id == "n"
    assert cfg.privacy.redact_secrets is False
    assert cfg.privacy.redact_pii is True
    assert cfg.privacy.pii.ips is True
    assert cfg.llm.embedding_model == "openai/x"
    assert cfg.llm.api_key_ref == "KEY"
    assert cfg.queue.max_retries == 1


def test_source_lookup_helpers(tmp_path):
    (tmp_path / "notes" / "sub").mkdir(parents=True)
    cfg = config_from_dict(
        {
            "watch_sources": [
                {"id": "notes", "path": str(tmp_path / "notes")},
                {"id": "docs", "path": str(tmp_path / "docs")},
            ]
        }
    )
    assert cfg.source("docs").id == "docs"
    assert cfg.source("missing") is None
    assert cfg.source_for_path(tmp_path / "notes" / "sub" / "a.md").id == "notes"
    assert cfg.source_for_path(tmp_path / "elsewhere.md") is None


def test_home_is_expanded(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    cfg = config_from_dict({"watch_sources": [{"id": "n", "path": "~/notes"}]})
    assert cfg.watch_sources[0].path == tmp_path / "notes"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_unknown_lens_rejected(tmp_path):
    with pytest.raises(ConfigError, match="unknown lens"):
        config_from_dict({"watch_sources": [{"id": "n", "path": str(tmp_path), "lens": "poet"}]})


def test_duplicate_source_ids_rejected(tmp_path):
    with pytest.raises(ConfigError, match="duplicate"):
        config_from_dict(
            {"watch_sources": [{"id": "n", "path": str(tmp_path)}, {"id": "n", "path": "/x"}]}
        )


def test_source_without_path_rejected():
    with pytest.raises(ConfigError):
        config_from_dict({"watch_sources": [{"id": "n"}]})


@pytest.mark.parametrize(
    "queue,match",
    [({"concurrency": 0}, "concurrency"), ({"max_retries": -1}, "max_retries")],
)
def test_invalid_queue_limits_rejected(queue, match):
    with pytest.raises(ConfigError, match=match):
        config_from_dict({"queue": queue})


def test_invalid_dimensions_rejected():
    with pytest.raises(ConfigError, match="embedding_dimensions"):
        config_from_dict({"llm": {"embedding_dimensions": 0}})


def test_unknown_top_level_key_warns():
    with pytest.warns(UserWarning, match="surprise"):
        config_from_dict({"surprise": 1})


def test_known_keys_do_not_warn():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        config_from_dict({"queue": {"concurrency": 1}})


def test_config_with_credential_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("llm:\n  model: openai/gpt-4o\n  note: AKIA1234567890ABCDEF\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="credential"):
        load_config(path)


def test_non_mapping_config_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def test_env_overrides_applied_last(monkeypatch, tmp_path):
    path = _write_yaml(tmp_path / "config.yaml", {"llm": {"model": "openai/from-file"}})
    monkeypatch.setenv("CORTEX_MODEL", "openai/from-env")
    monkeypatch.setenv("CORTEX_EMBEDDING_MODEL", "openai/embed-env")
    monkeypatch.setenv("CORTEX_DATA_DIR", str(tmp_path / "env-data"))
    cfg = load_config(path)
    assert cfg.llm.model == "openai/from-env"
    assert cfg.llm.embedding_model == "openai/embed-env"
    assert cfg.data_dir == tmp_path / "env-data"


# ---------------------------------------------------------------------------
# ensure_config
# ---------------------------------------------------------------------------


def test_ensure_config_writes_loadable_default(tmp_path):
    path = ensure_config(tmp_path / "cfg" / "config.yaml")
    assert path.exists()
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    cfg = load_config(path)
    assert [s.id for s in cfg.watch_sources] == ["documents", "notes"]
    assert cfg.llm.api_key_ref == "OPENROUTER_API_KEY"


def test_ensure_config_keeps_existing_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("debounce: 2\n", encoding="utf-8")
    ensure_config(path)
    assert path.read_text(encoding="utf-8") == "debounce: 2\n"

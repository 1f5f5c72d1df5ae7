"""contextindex configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (CONTEXTINDEX_EMBEDDING_MODEL, CONTEXTINDEX_DB,
                             CONTEXTINDEX_LOG_LEVEL)
  3. Per-project contextindex.yaml
  4. Global ~/.contextindex/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".contextindex"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "contextindex.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token"
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret"
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "search", "indexing", "retry", "fetch", "database", "logging"]
)

_LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


class DimensionMismatchError(ConfigError):
    """Embedding vector length does not match the configured dimension D.

    Fatal configuration error: the embedder, the store and the config must
    agree on one dimension system-wide.
    """


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (contextindex.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536


@dataclass
class ChunkingCfg:
    """Chunk size (non-whitespace characters) and overlap fraction."""

    max_chars: int = 1500
    overlap: float = 0.13


@dataclass
class SearchCfg:
    """Search defaults (contextindex.yaml: search:)."""

    max_results: int = 10
    min_similarity: float = 0.7
    max_results_cap: int = 50


@dataclass
class IndexingCfg:
    """Indexing run limits. The run is cancelled after timeout_seconds."""

    timeout_seconds: float = 540.0


@dataclass
class RetryCfg:
    """Exponential backoff for embedding and storage calls."""

    attempts: int = 3
    base_delay: float = 0.5


@dataclass
class FetchCfg:
    """Source fetching limits (contextindex.yaml: fetch:)."""

    timeout: float = 30.0
    max_bytes: int = 5 * 1024 * 1024
    github_branch: str = "main"


@dataclass
class DatabaseCfg:
    path: str = ".contextindex.db"


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class ContextIndexConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    retry: RetryCfg = field(default_factory=RetryCfg)
    fetch: FetchCfg = field(default_factory=FetchCfg)
    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: ContextIndexConfig) -> None:
    """Raise ConfigError if any value in *cfg* is out of range."""
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.chunking.max_chars < 1:
        raise ConfigError(f"chunking.max_chars must be >= 1, got {cfg.chunking.max_chars}")
    if not 0.0 <= cfg.chunking.overlap < 1.0:
        raise ConfigError(f"chunking.overlap must be in [0.0, 1.0), got {cfg.chunking.overlap}")
    if cfg.search.max_results_cap < 1:
        raise ConfigError(
            f"search.max_results_cap must be >= 1, got {cfg.search.max_results_cap}"
        )
    if not 1 <= cfg.search.max_results <= cfg.search.max_results_cap:
        raise ConfigError(
            f"search.max_results must be in [1, {cfg.search.max_results_cap}], "
            f"got {cfg.search.max_results}"
        )
    if not 0.0 <= cfg.search.min_similarity <= 1.0:
        raise ConfigError(
            f"search.min_similarity must be in [0.0, 1.0], got {cfg.search.min_similarity}"
        )
    if cfg.indexing.timeout_seconds <= 0:
        raise ConfigError(
            f"indexing.timeout_seconds must be > 0, got {cfg.indexing.timeout_seconds}"
        )
    if cfg.retry.attempts < 1:
        raise ConfigError(f"retry.attempts must be >= 1, got {cfg.retry.attempts}")
    if cfg.retry.base_delay < 0:
        raise ConfigError(f"retry.base_delay must be >= 0, got {cfg.retry.base_delay}")
    if cfg.logging.level.upper() not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {', '.join(sorted(_LOG_LEVELS))}, "
            f"got '{cfg.logging.level}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> ContextIndexConfig:
    """Build a *ContextIndexConfig* from a merged raw YAML dict."""
    cfg = ContextIndexConfig()

    try:
        if "embedding" in data:
            e = data["embedding"]
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            )

        if "chunking" in data:
            c = data["chunking"]
            cfg.chunking = ChunkingCfg(
                max_chars=int(c.get("max_chars", cfg.chunking.max_chars)),
                overlap=float(c.get("overlap", cfg.chunking.overlap)),
            )

        if "search" in data:
            s = data["search"]
            cfg.search = SearchCfg(
                max_results=int(s.get("max_results", cfg.search.max_results)),
                min_similarity=float(s.get("min_similarity", cfg.search.min_similarity)),
                max_results_cap=int(s.get("max_results_cap", cfg.search.max_results_cap)),
            )

        if "indexing" in data:
            i = data["indexing"]
            cfg.indexing = IndexingCfg(
                timeout_seconds=float(i.get("timeout_seconds", cfg.indexing.timeout_seconds)),
            )

        if "retry" in data:
            r = data["retry"]
            cfg.retry = RetryCfg(
                attempts=int(r.get("attempts", cfg.retry.attempts)),
                base_delay=float(r.get("base_delay", cfg.retry.base_delay)),
            )

        if "fetch" in data:
            f = data["fetch"]
            cfg.fetch = FetchCfg(
                timeout=float(f.get("timeout", cfg.fetch.timeout)),
                max_bytes=int(f.get("max_bytes", cfg.fetch.max_bytes)),
                github_branch=str(f.get("github_branch", cfg.fetch.github_branch)),
            )

        if "database" in data:
            cfg.database = DatabaseCfg(path=str(data["database"].get("path", cfg.database.path)))

        if "logging" in data:
            cfg.logging = LoggingCfg(level=str(data["logging"].get("level", cfg.logging.level)))
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: ContextIndexConfig) -> ContextIndexConfig:
    """Apply CONTEXTINDEX_* environment variable overrides (layer 2)."""
    if model := os.environ.get("CONTEXTINDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db_path := os.environ.get("CONTEXTINDEX_DB"):
        cfg.database.path = db_path
    if level := os.environ.get("CONTEXTINDEX_LOG_LEVEL"):
        cfg.logging.level = level
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ContextIndexConfig:
    """Load and return a merged, validated *ContextIndexConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *contextindex.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or any
            value is malformed or out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    validate_config(cfg)
    return cfg

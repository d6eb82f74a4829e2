"""Configuration models and loading for threadsense."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

CONFIG_FILENAME = ".threadsense.yaml"


class CrawlConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_depth: int = Field(default=3, ge=0)
    max_nodes: int = Field(default=50, ge=1)
    fetch_workers: int = Field(default=4, ge=1)
    include_bots: bool = False
    tracker_hosts: list[str] = Field(default_factory=lambda: ["github.com"])


class ScoringConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    similarity_threshold: float = 0.9
    max_relevant_comments: int = Field(default=5, ge=0)


class FeedbackConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    context_words: int = Field(default=2, ge=0)
    scoring_multiplier: float = 1.0
    short_span_chars: int = Field(default=4, ge=1)


class ContextConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_tokens: int = Field(default=10000, ge=1)


class GithubConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    gh_bin: str = "gh"
    timeout_seconds: float = 30.0
    rate_limit_retries: int = 2
    secondary_backoff_base_seconds: float = 5.0
    rate_limit_max_sleep_seconds: float = 90.0


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: Literal["sqlite", "none"] = "sqlite"
    sqlite_path: str = ".threadsense/weights.db"


class ThreadsenseConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    github: GithubConfig = Field(default_factory=GithubConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML at {path} must decode to a mapping")
    return data


def load_effective_config(
    repo_path: str | Path,
    org_defaults: dict[str, Any] | None = None,
    system_defaults: dict[str, Any] | None = None,
    runtime_override: dict[str, Any] | None = None,
) -> ThreadsenseConfig:
    """Load config with precedence runtime > repo .threadsense.yaml > org > system."""
    repo_config = _load_yaml(Path(repo_path) / CONFIG_FILENAME)

    merged: dict[str, Any] = {}
    for layer in (system_defaults, org_defaults, repo_config, runtime_override):
        if layer:
            merged = _deep_merge(merged, layer)

    return ThreadsenseConfig.model_validate(merged)

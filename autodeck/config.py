"""
Configuration management for Autodeck.

Loads and validates autodeck.yml: generation model settings, pipeline limits
(revision bound, batching, token budgets) and store location.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .deck.lod import MAX_REVISIONS


CONFIG_FILENAME = "autodeck.yml"


@dataclass
class GenerationConfig:
    """Text-generation service settings (LiteLLM model string)."""

    model: str = "claude-sonnet-4-6"
    provider: str = "anthropic"
    planner_max_tokens: int = 16384
    planner_temperature: float = 0.1
    request_timeout_seconds: int = 300


@dataclass
class PipelineConfig:
    """Deck pipeline limits."""

    max_revisions: int = MAX_REVISIONS
    single_batch_limit: int = 15  # above this, production is split into batches
    batch_size: int = 12
    max_output_tokens: int = 64000
    preflight_token_limit: int = 180_000


@dataclass
class StoreConfig:
    """Location of the SQLite document/card store."""

    db_path: str | None = None

    @property
    def resolved_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path).expanduser().resolve()
        return get_autodeck_dir() / "autodeck.db"


@dataclass
class AutodeckConfig:
    """Complete Autodeck configuration."""

    generation: GenerationConfig = field(default_factory=GenerationConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    root: Path | None = None

    @classmethod
    def load(cls, root: Path) -> "AutodeckConfig":
        """Load configuration from a project root directory."""
        config_path = root / CONFIG_FILENAME
        if not config_path.exists():
            return cls(root=root.resolve())
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls._parse(data, root=root.resolve())

    @classmethod
    def _parse(cls, data: dict[str, Any], root: Path) -> "AutodeckConfig":
        config = cls(root=root)

        generation_data = data.get("generation", {}) or {}
        config.generation = GenerationConfig(
            model=generation_data.get("model", "claude-sonnet-4-6"),
            provider=generation_data.get("provider", "anthropic"),
            planner_max_tokens=generation_data.get("planner_max_tokens", 16384),
            planner_temperature=generation_data.get("planner_temperature", 0.1),
            request_timeout_seconds=generation_data.get("request_timeout_seconds", 300),
        )

        pipeline_data = data.get("pipeline", {}) or {}
        config.pipeline = PipelineConfig(
            max_revisions=pipeline_data.get("max_revisions", MAX_REVISIONS),
            single_batch_limit=pipeline_data.get("single_batch_limit", 15),
            batch_size=pipeline_data.get("batch_size", 12),
            max_output_tokens=pipeline_data.get("max_output_tokens", 64000),
            preflight_token_limit=pipeline_data.get("preflight_token_limit", 180_000),
        )
        if config.pipeline.batch_size <= 0:
            raise ValueError("pipeline.batch_size must be positive")
        if config.pipeline.max_revisions < 0:
            raise ValueError("pipeline.max_revisions must not be negative")

        store_data = data.get("store", {}) or {}
        db_path = store_data.get("db_path")
        if db_path:
            path = Path(db_path).expanduser()
            if not path.is_absolute():
                path = root / path
            db_path = str(path)
        config.store = StoreConfig(db_path=db_path)

        return config


def get_autodeck_dir() -> Path:
    """Per-user state directory (~/.autodeck)."""

    return Path.home() / ".autodeck"


def ensure_autodeck_dir() -> Path:
    """Ensure ~/.autodeck exists and return its path."""

    autodeck_dir = get_autodeck_dir()
    autodeck_dir.mkdir(parents=True, exist_ok=True)
    return autodeck_dir

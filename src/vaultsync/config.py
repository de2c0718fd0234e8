"""Configuration management for VaultSync.

Loads from environment variables, .env files, and config/default.toml.
All secrets come from env vars; structural config from TOML.

Default base directory: ~/.vaultsync/
  data/chromadb/      — Vector store
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VAULTSYNC_HOME = Path.home() / ".vaultsync"


class VaultConfig(BaseSettings):
    """Vault location and watch exclusions."""

    path: Path = Field(
        default_factory=Path.cwd,
        validate_default=True,
        description="Absolute path to the vault root",
    )
    excluded_folders: list[str] = Field(default_factory=lambda: [".git", ".trash", "node_modules"])

    @field_validator("path")
    @classmethod
    def validate_vault_path(cls, v: Path) -> Path:
        v = v.expanduser()
        if not v.exists():
            raise ValueError(f"Vault path does not exist: {v}")
        return v.resolve()


class WatchConfig(BaseSettings):
    """Watcher event handling."""

    debounce_ms: int = 500
    hash_stability_check: bool = False
    refresh_debounce_ms: int = 250


class SyncConfig(BaseSettings):
    """Rename protocol selection."""

    # None = detect from the running platform
    lock_on_watch: bool | None = None
    close_timeout_seconds: float = 10.0


class EmbeddingConfig(BaseSettings):
    """Embedding model configuration."""

    provider: Literal["openai", "voyage"] = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 64


class ChromaConfig(BaseSettings):
    """ChromaDB configuration."""

    persist_dir: Path = Field(default_factory=lambda: VAULTSYNC_HOME / "data" / "chromadb")
    collection_name: str = "vault_entries"
    distance_fn: Literal["cosine", "l2", "ip"] = "cosine"

    @field_validator("persist_dir")
    @classmethod
    def expand_persist_dir(cls, v: Path) -> Path:
        return v.expanduser()


class ChunkingConfig(BaseSettings):
    max_tokens: int = 500


class Settings(BaseSettings):
    """Root configuration — aggregates all sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="VAULTSYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    vault: VaultConfig = Field(default_factory=lambda: VaultConfig(path=Path.cwd()))
    watch: WatchConfig = Field(default_factory=WatchConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chroma: ChromaConfig = Field(default_factory=ChromaConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)

    # API keys: always from env vars
    openai_api_key: str = ""
    voyage_api_key: str = ""

    @property
    def embedding_api_key(self) -> str:
        """Resolve the API key for the configured embedding provider."""
        if self.embedding.provider == "voyage":
            return self.voyage_api_key
        return self.openai_api_key

    @classmethod
    def from_toml(cls, path: Path | None = None) -> Settings:
        """Load settings from TOML file, with env var overrides."""
        config_path = path or Path("config/default.toml")
        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls(**data)
        return cls()


def load_settings(config_path: Path | None = None) -> Settings:
    """Load and validate settings. Entry point for all config access."""
    return Settings.from_toml(config_path)

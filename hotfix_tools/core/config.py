"""Configuration management for hotfix-tools."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

logger = structlog.get_logger()


class SyncConfig(BaseModel):
    """Download and synchronization settings."""

    timeout: float = Field(default=30.0, description="Per-attempt request timeout in seconds")
    max_retries: int = Field(default=3, description="Maximum attempts per resource")
    base_backoff: float = Field(
        default=2.0,
        description="Base delay in seconds for exponential backoff"
    )
    chunk_size: int = Field(default=64 * 1024, description="Streaming chunk size in bytes")
    slow_speed_threshold: float = Field(
        default=1024 * 1024,  # 1 MiB/s
        description="Throughput in bytes/s under which a window counts as slow"
    )
    slow_speed_window: float = Field(default=10.0, description="Throughput sampling window in seconds")
    slow_speed_strikes: int = Field(
        default=2,
        description="Consecutive slow windows before an attempt is aborted"
    )
    verify_ssl: bool = Field(default=False, description="Verify SSL certificates")
    reuse_across_versions: bool = Field(
        default=True,
        description="Treat a matching ledger entry from another output folder as cached"
    )

    @field_validator("timeout", "slow_speed_window")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate timing values."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("max_retries", "slow_speed_strikes")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """Validate attempt counters."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("base_backoff", "slow_speed_threshold")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate non-negative values."""
        if v < 0:
            raise ValueError("Value must be non-negative")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Validate chunk size."""
        if v <= 0:
            raise ValueError("Chunk size must be positive")
        return v


class OriginRule(BaseModel):
    """Remote origin for one game on the serving path."""

    base_url: str = Field(description="Primary origin base URL")
    legacy_base_url: str | None = Field(
        default=None,
        description="Secondary origin for older content"
    )
    legacy_markers: list[str] = Field(
        default_factory=list,
        description="Path substrings routed to the secondary origin"
    )

    def resolve(self, path: str) -> str:
        """Build the remote URL for a relative path."""
        path = path.lstrip("/")
        if self.legacy_base_url and any(marker in path for marker in self.legacy_markers):
            return f"{self.legacy_base_url.rstrip('/')}/{path}"
        return f"{self.base_url.rstrip('/')}/{path}"


class ServeConfig(BaseModel):
    """On-demand serving settings."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=10030, description="Bind port")
    fetch_timeout: float = Field(default=600.0, description="Timeout for on-demand fetches")
    origins: dict[str, OriginRule] = Field(
        default={
            "starrails": OriginRule(base_url="https://autopatchos.starrails.com"),
            "genshin": OriginRule(
                base_url="https://autopatchhk.yuanshen.com",
                legacy_base_url="https://ps.yuuki.me/data_game/genshin",
                legacy_markers=["3.2"],
            ),
        },
        description="Origin rules keyed by game identifier"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port value."""
        if not 0 < v < 65536:
            raise ValueError(f"Invalid port: {v}")
        return v

    @field_validator("fetch_timeout")
    @classmethod
    def validate_fetch_timeout(cls, v: float) -> float:
        """Validate fetch timeout value."""
        if v <= 0:
            raise ValueError("Fetch timeout must be positive")
        return v


class AppConfig(BaseModel):
    """Application configuration."""

    cache_dir: Path = Field(
        default=Path("cache") / "game",
        description="Root of the local mirror; one sub-directory per game"
    )
    sync: SyncConfig = Field(default_factory=SyncConfig, description="Sync settings")
    serve: ServeConfig = Field(default_factory=ServeConfig, description="Serving settings")

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    def game_dir(self, game: str) -> Path:
        """Mirror directory of a game."""
        return self.cache_dir / game

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "hotfix-tools" / "config.json"

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file
        """
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v

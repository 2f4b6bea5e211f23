"""Configuration management for the capture daemon."""

import re
from pathlib import Path
from typing import List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError


DEFAULT_IGNORE_PATTERNS = [r"\.git", r"target", r"node_modules", r"__pycache__"]


def default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "cockpit"


class WatcherConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    directories: List[Path] = Field(default_factory=list)
    ignore_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    poll_timeout_seconds: float = 5.0

    @field_validator("directories")
    @classmethod
    def expand_directories(cls, v: List[Path]) -> List[Path]:
        return [Path(d).expanduser() for d in v]

    @field_validator("poll_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("poll_timeout_seconds must be positive")
        return v


class NotificationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    daily_digest_hour: int = 20
    max_nudges_per_day: int = 2
    enable_context_switch_nudges: bool = True


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path = Field(default_factory=lambda: default_data_dir() / "cockpit.duckdb")
    max_snapshots: int = 1000
    event_retention_days: int = 30

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return Path(v).expanduser()


class GatekeeperConfig(BaseModel):
    """Thresholds for nudge generation."""
    model_config = ConfigDict(frozen=True)

    max_nudges_per_day: int = 2
    enable_context_switch_nudges: bool = True
    min_focus_time_minutes: int = 15
    max_focus_time_minutes: int = 90

    @classmethod
    def from_notifications(cls, notifications: NotificationConfig) -> "GatekeeperConfig":
        return cls(
            max_nudges_per_day=notifications.max_nudges_per_day,
            enable_context_switch_nudges=notifications.enable_context_switch_nudges,
        )


class Config(BaseModel):
    """Main configuration for the capture daemon."""
    model_config = ConfigDict(frozen=True)

    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @property
    def gatekeeper(self) -> GatekeeperConfig:
        return GatekeeperConfig.from_notifications(self.notifications)

    @staticmethod
    def default_config_paths() -> List[Path]:
        return [
            Path("cockpit.yaml"),
            Path.home() / ".config" / "cockpit" / "config.yaml",
        ]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load and validate configuration from a YAML file."""
        if config_path is None:
            candidates = cls.default_config_paths()
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise ConfigError(
                    f"No config file found. Searched: {[str(c) for c in candidates]}"
                )

        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found at: {config_path}")

        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e

        try:
            config = cls(**data)
        except (ValidationError, TypeError) as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e

        config.validate_settings()
        return config

    @classmethod
    def load_or_default(cls, config_path: Optional[Path] = None) -> "Config":
        """Like ``load``, but fall back to defaults when no config file exists.

        An explicit ``config_path`` must load; a broken file is never
        papered over.
        """
        if config_path is not None:
            return cls.load(config_path)
        if any(candidate.exists() for candidate in cls.default_config_paths()):
            return cls.load()
        logger.warning("No config file found, using defaults")
        return cls.default_for_testing()

    def validate_settings(self) -> None:
        """Reject configurations the daemon cannot run with."""
        if not self.watcher.directories:
            raise ConfigError("at least one directory must be configured", field="watcher.directories")

        for directory in self.watcher.directories:
            if not directory.exists():
                raise ConfigError(
                    f"configured directory does not exist: {directory}. "
                    "Create it or remove it from the config.",
                    field="watcher.directories",
                )

        for pattern in self.watcher.ignore_patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(
                    f"invalid regex pattern '{pattern}': {e}",
                    field="watcher.ignore_patterns",
                ) from e

        if not 0 <= self.notifications.daily_digest_hour <= 23:
            raise ConfigError("must be between 0 and 23", field="notifications.daily_digest_hour")

        if not 0 <= self.notifications.max_nudges_per_day <= 100:
            raise ConfigError("must be between 0 and 100", field="notifications.max_nudges_per_day")

        if not 0 <= self.database.max_snapshots <= 1_000_000:
            raise ConfigError("must be between 0 and 1,000,000", field="database.max_snapshots")

        if self.database.event_retention_days < 1:
            raise ConfigError("must be at least 1", field="database.event_retention_days")

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)

    @classmethod
    def default_for_testing(cls) -> "Config":
        return cls(watcher=WatcherConfig(directories=[Path(".")]))

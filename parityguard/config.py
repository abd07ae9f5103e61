"""Configuration module for parityguard."""

import tomllib
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

from parityguard.errors import ConfigError


def _get_project_root() -> Path:
    return Path(__file__).parent.parent


@dataclass
class DatabaseConfig:
    busy_timeout_ms: int = 5000
    max_retries: int = 5
    initial_retry_delay_ms: int = 50
    max_retry_delay_ms: int = 1000


@dataclass
class QueueConfig:
    max_execution_time: int = 1800
    stuck_timeout: int = 3600
    min_processing_time: float = 0.0
    busy_backoff: float = 2.0
    idle_sleep: float = 1.0
    lock_path: Path = field(default_factory=lambda: Path("/tmp/parityguard/locks/processor.lock"))
    cleanup_days: int = 7
    event_retention_days: int = 1


@dataclass
class ProtectionConfig:
    default_redundancy: int = 10
    parity_dir: str = ".parity"
    par2_path: str = "/usr/local/bin/par2"
    ionice_path: str = "/usr/bin/ionice"
    batch_size: int = 1000


@dataclass
class ResourceLimitsConfig:
    max_cpu_usage: int | None = 50
    max_memory_usage: int | None = 80
    parallel_file_hashing: int | None = None
    io_priority: str = "low"
    max_concurrent_operations: int = 2


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Path | None = None


@dataclass
class Config:
    database_path: Path = field(
        default_factory=lambda: _get_project_root() / "data" / "parityguard.db"
    )
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    protection: ProtectionConfig = field(default_factory=ProtectionConfig)
    resource_limits: ResourceLimitsConfig = field(default_factory=ResourceLimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path | None) -> "Config":
        """Load configuration from a TOML file, falling back to defaults.

        Top-level keys map to ``Config`` fields and tables map to the nested
        sections, e.g. ``[protection] default_redundancy = 15``.
        """
        config = cls()
        if path is None:
            return config

        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {path}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path}: {e}") from e

        _apply(config, data, prefix="")
        return config


def _apply(target: Any, data: dict[str, Any], prefix: str) -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if key not in known:
            raise ConfigError(f"Unknown configuration key: {name}")

        current = getattr(target, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ConfigError(f"Configuration section {name} must be a table")
            _apply(current, value, prefix=f"{name}.")
        elif isinstance(current, Path) or key in ("database_path", "lock_path", "file"):
            setattr(target, key, Path(value).expanduser())
        else:
            setattr(target, key, value)

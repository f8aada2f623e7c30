"""
Configuration management for catalog-sync.

Handles configuration defaults, JSON persistence, environment variable
overrides and validation for the reconciliation controller.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 300  # 5 minutes in seconds
MINIMUM_REFRESH_INTERVAL = 10
DEFAULT_MAX_CHUNK_SIZE = 100_000
DEFAULT_SYSTEM_NAMESPACE = "cattle-system"

# Baseline markers understood by GitRepository.check_update()
SYSTEM_CATALOG_MODES = {"external", "bundled"}


@dataclass
class RefreshConfig:
    """Timer re-arm interval and the git update baseline."""

    interval_seconds: int = DEFAULT_REFRESH_INTERVAL
    # "external" fetches from the remote; "bundled" trusts the local checkout
    system_catalog: str = "external"
    # Repositories whose working copies ship pre-populated; only these honor "bundled"
    bundled_repositories: List[str] = field(default_factory=list)

    @property
    def interval(self) -> timedelta:
        return timedelta(seconds=self.interval_seconds)


@dataclass
class ChunkingConfig:
    """Index chunk sizing and placement."""

    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    system_namespace: str = DEFAULT_SYSTEM_NAMESPACE


@dataclass
class GitConfig:
    """Local working copies of git chart repositories."""

    state_dir: str = ""
    command_timeout_seconds: int = 120


@dataclass
class HttpConfig:
    """HTTP index downloads."""

    timeout_seconds: float = 30.0
    max_redirects: int = 10


@dataclass
class SchedulerConfig:
    """Reconcile scheduler worker pool and retry backoff."""

    workers: int = 2
    base_backoff_seconds: float = 5.0
    max_backoff_seconds: float = 300.0


@dataclass
class SyncConfig:
    """
    Top-level catalog-sync configuration.

    Nested sections are created with defaults when not provided.
    """

    data_dir: str
    log_level: str = "INFO"
    refresh: Optional[RefreshConfig] = None
    chunking: Optional[ChunkingConfig] = None
    git: Optional[GitConfig] = None
    http: Optional[HttpConfig] = None
    scheduler: Optional[SchedulerConfig] = None

    def __post_init__(self):
        if self.refresh is None:
            self.refresh = RefreshConfig()
        if self.chunking is None:
            self.chunking = ChunkingConfig()
        if self.git is None:
            self.git = GitConfig()
        if self.http is None:
            self.http = HttpConfig()
        if self.scheduler is None:
            self.scheduler = SchedulerConfig()
        if not self.git.state_dir:
            self.git.state_dir = str(Path(self.data_dir) / "repos")

    @property
    def database_path(self) -> str:
        return str(Path(self.data_dir) / "catalog.db")


class SyncConfigManager:
    """
    Manages catalog-sync configuration.

    Handles configuration creation, file persistence, environment variable
    overrides and validation.
    """

    def __init__(self, data_dir_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            data_dir_path: Path to data directory (defaults to CATALOG_SYNC_DATA_DIR
                env var or ~/.catalog-sync)
        """
        if data_dir_path:
            self.data_dir = Path(data_dir_path)
        else:
            default_dir = os.environ.get(
                "CATALOG_SYNC_DATA_DIR", str(Path.home() / ".catalog-sync")
            )
            self.data_dir = Path(default_dir)

        self.config_file_path = self.data_dir / "config.json"

    def create_default_config(self) -> SyncConfig:
        return SyncConfig(data_dir=str(self.data_dir))

    def save_config(self, config: SyncConfig) -> None:
        """
        Save configuration to file.

        Args:
            config: SyncConfig object to save
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)

        with open(self.config_file_path, "w") as f:
            json.dump(asdict(config), f, indent=2)

    def load_config(self) -> Optional[SyncConfig]:
        """
        Load configuration from file.

        Returns:
            SyncConfig if file exists, None otherwise

        Raises:
            ValueError: If configuration file is malformed
        """
        if not self.config_file_path.exists():
            return None

        try:
            with open(self.config_file_path, "r") as f:
                config_dict = json.load(f)

            if "data_dir" not in config_dict:
                config_dict["data_dir"] = str(self.data_dir)

            sections = {
                "refresh": RefreshConfig,
                "chunking": ChunkingConfig,
                "git": GitConfig,
                "http": HttpConfig,
                "scheduler": SchedulerConfig,
            }
            for key, section_cls in sections.items():
                if isinstance(config_dict.get(key), dict):
                    config_dict[key] = section_cls(**config_dict[key])

            return SyncConfig(**config_dict)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse configuration file: {e}")
        except TypeError as e:
            raise ValueError(f"Invalid configuration format: {e}")

    def load_or_create(self) -> SyncConfig:
        """Load config from disk (or defaults), apply env overrides, validate."""
        config = self.load_config() or self.create_default_config()
        config = self.apply_env_overrides(config)
        self.validate_config(config)
        return config

    def apply_env_overrides(self, config: SyncConfig) -> SyncConfig:
        """
        Apply environment variable overrides to configuration.

        Supported environment variables:
        - CATALOG_SYNC_REFRESH_INTERVAL: Timer interval in seconds
        - CATALOG_SYNC_SYSTEM_CATALOG: "external" or "bundled"
        - CATALOG_SYNC_MAX_CHUNK_SIZE: Chunk size limit in bytes
        - CATALOG_SYNC_LOG_LEVEL: Log level
        - CATALOG_SYNC_WORKERS: Scheduler worker threads

        Args:
            config: Base configuration to apply overrides to

        Returns:
            Updated configuration with environment overrides
        """
        assert config.refresh is not None  # Guaranteed by __post_init__
        assert config.chunking is not None
        assert config.scheduler is not None

        if interval_env := os.environ.get("CATALOG_SYNC_REFRESH_INTERVAL"):
            try:
                config.refresh.interval_seconds = int(interval_env)
            except ValueError:
                logger.warning(
                    f"Invalid CATALOG_SYNC_REFRESH_INTERVAL environment variable value "
                    f"'{interval_env}'. Using default {config.refresh.interval_seconds} seconds"
                )

        if catalog_env := os.environ.get("CATALOG_SYNC_SYSTEM_CATALOG"):
            config.refresh.system_catalog = catalog_env.lower()

        if chunk_env := os.environ.get("CATALOG_SYNC_MAX_CHUNK_SIZE"):
            try:
                config.chunking.max_chunk_size = int(chunk_env)
            except ValueError:
                logger.warning(
                    f"Invalid CATALOG_SYNC_MAX_CHUNK_SIZE environment variable value "
                    f"'{chunk_env}'. Using default {config.chunking.max_chunk_size} bytes"
                )

        if log_level_env := os.environ.get("CATALOG_SYNC_LOG_LEVEL"):
            config.log_level = log_level_env.upper()

        if workers_env := os.environ.get("CATALOG_SYNC_WORKERS"):
            try:
                config.scheduler.workers = int(workers_env)
            except ValueError:
                logger.warning(
                    f"Invalid CATALOG_SYNC_WORKERS environment variable value "
                    f"'{workers_env}'. Using default {config.scheduler.workers}"
                )

        return config

    def validate_config(self, config: SyncConfig) -> None:
        """
        Validate configuration settings.

        Raises:
            ValueError: If any configuration value is invalid
        """
        assert config.refresh is not None
        assert config.chunking is not None
        assert config.scheduler is not None
        assert config.http is not None

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if config.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Log level must be one of {valid_log_levels}, got {config.log_level}"
            )

        if config.refresh.interval_seconds < MINIMUM_REFRESH_INTERVAL:
            raise ValueError(
                f"Refresh interval must be at least {MINIMUM_REFRESH_INTERVAL} seconds, "
                f"got {config.refresh.interval_seconds}"
            )

        if config.refresh.system_catalog not in SYSTEM_CATALOG_MODES:
            raise ValueError(
                f"system_catalog must be one of {sorted(SYSTEM_CATALOG_MODES)}, "
                f"got {config.refresh.system_catalog!r}"
            )

        if config.chunking.max_chunk_size <= 0:
            raise ValueError(
                f"max_chunk_size must be greater than 0, got {config.chunking.max_chunk_size}"
            )

        if config.scheduler.workers < 1:
            raise ValueError(
                f"workers must be greater than 0, got {config.scheduler.workers}"
            )

        if config.http.timeout_seconds <= 0:
            raise ValueError(
                f"HTTP timeout must be greater than 0, got {config.http.timeout_seconds}"
            )

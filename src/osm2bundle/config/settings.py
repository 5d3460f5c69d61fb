"""
Configuration management for the osm2bundle pipeline.

Usage:
    from osm2bundle.config.settings import Config
    config = Config()
    options = config.to_run_options()

Environment Variables:
    BUNDLE_MODE: Bundle composition strategy (split | single)
    BUNDLE_COMPRESSION_LEVEL: gzip level for bundles and the store (1-9)
    STORE_CACHE_SIZE_KB: SQLite page cache used during bulk load
    STORE_SYNCHRONOUS: SQLite synchronous pragma during bulk load (OFF | NORMAL | FULL)
    SCRATCH_DIR: Directory for scratch spill files (defaults to a PID-isolated temp dir)
    TEMP_RETENTION_HOURS: Age after which stale scratch files are removed
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from ..domain.enums import BundleMode
from ..domain.models import RunOptions

logger = logging.getLogger(__name__)


@dataclass
class BundleConfig:
    """Bundle composition configuration."""
    mode: str = BundleMode.SPLIT.value
    compression_level: int = 9

    def __post_init__(self):
        """Validate bundle configuration."""
        if self.mode not in [m.value for m in BundleMode]:
            raise ValueError(f"Bundle mode must be one of: {', '.join(m.value for m in BundleMode)}")
        if not 1 <= self.compression_level <= 9:
            raise ValueError("Compression level must be between 1 and 9")


@dataclass
class StoreConfig:
    """SQLite bulk-load configuration."""
    cache_size_kb: int = 64000
    synchronous: str = "OFF"

    def __post_init__(self):
        """Validate store configuration."""
        if self.cache_size_kb < 1:
            raise ValueError("Cache size must be positive")
        self.synchronous = self.synchronous.upper()
        if self.synchronous not in ['OFF', 'NORMAL', 'FULL']:
            raise ValueError("Synchronous must be one of: OFF, NORMAL, FULL")


@dataclass
class TempConfig:
    """Scratch file management configuration."""
    scratch_dir: Optional[str] = None
    retention_hours: int = 24

    def __post_init__(self):
        """Validate temp management configuration."""
        if self.retention_hours < 0:
            raise ValueError("Retention hours must be non-negative")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


class Config:
    """
    Centralized configuration management for the osm2bundle pipeline.

    Environment variables loaded (in order of preference):
    1. Explicit environment file passed to constructor
    2. .env.{ENVIRONMENT} (where ENVIRONMENT=development|production|staging)
    3. .env file in project root
    4. System environment variables

    Example:
        # Development environment
        config = Config(environment="development")

        # Production with explicit env file
        config = Config(env_file=Path("/secure/production.env"))
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 env_file: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            environment: Target environment (development|staging|production)
            env_file: Explicit path to environment file
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.project_root = self._find_project_root()

        self._load_environment_variables(env_file)

        self._load_bundle_config()
        self._load_store_config()
        self._load_temp_config()

    def _find_project_root(self) -> Path:
        """Find project root directory containing pyproject.toml, .git or a .env file."""
        current = Path(__file__).resolve()

        for parent in current.parents:
            if any((parent / marker).exists() for marker in ['pyproject.toml', '.git']):
                return parent

        for parent in current.parents:
            if (parent / '.env').exists():
                return parent

        return Path.cwd()

    def _load_environment_variables(self, env_file: Optional[Path]) -> None:
        """Load environment variables from appropriate source."""
        loaded_files = []

        if env_file:
            if env_file.exists():
                load_dotenv(env_file)
                loaded_files.append(str(env_file))
                logger.info(f"Loaded configuration from {env_file}")
            else:
                raise ConfigurationError(f"Specified env file not found: {env_file}")

        else:
            env_specific_file = self.project_root / f".env.{self.environment}"
            if env_specific_file.exists():
                load_dotenv(env_specific_file)
                loaded_files.append(str(env_specific_file))
                logger.info(f"Loaded environment-specific config: {env_specific_file}")

            generic_env_file = self.project_root / ".env"
            if generic_env_file.exists():
                load_dotenv(generic_env_file)
                loaded_files.append(str(generic_env_file))
                logger.info(f"Loaded generic config: {generic_env_file}")

        if not loaded_files:
            logger.debug("No .env files found, using system environment variables only")

        self._loaded_env_files = loaded_files

        logger.debug(f"Project root: {self.project_root}")
        logger.debug(f"Environment: {self.environment}")

    @staticmethod
    def _int_env(name: str, default: str) -> int:
        raw = os.getenv(name, default)
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"{name} must be an integer, got {raw!r}")

    def _load_bundle_config(self) -> None:
        """Load bundle composition configuration."""
        mode = os.getenv("BUNDLE_MODE", BundleMode.SPLIT.value).lower()
        compression_level = self._int_env("BUNDLE_COMPRESSION_LEVEL", "9")

        try:
            self.bundle = BundleConfig(mode=mode, compression_level=compression_level)
        except ValueError as e:
            raise ConfigurationError(f"Invalid bundle configuration: {e}")

    def _load_store_config(self) -> None:
        """Load SQLite bulk-load configuration."""
        cache_size_kb = self._int_env("STORE_CACHE_SIZE_KB", "64000")
        synchronous = os.getenv("STORE_SYNCHRONOUS", "OFF")

        try:
            self.store = StoreConfig(cache_size_kb=cache_size_kb, synchronous=synchronous)
        except ValueError as e:
            raise ConfigurationError(f"Invalid store configuration: {e}")

    def _load_temp_config(self) -> None:
        """Load scratch file management configuration."""
        scratch_dir = os.getenv("SCRATCH_DIR") or None
        retention_hours = self._int_env("TEMP_RETENTION_HOURS", "24")

        try:
            self.temp = TempConfig(scratch_dir=scratch_dir, retention_hours=retention_hours)
        except ValueError as e:
            raise ConfigurationError(f"Invalid temp management configuration: {e}")

    def get_temp_settings(self) -> dict[str, Any]:
        """
        Get temp management configuration settings as dictionary.

        Returns:
            Dictionary of temp management settings
        """
        return {
            'scratch_dir': self.temp.scratch_dir,
            'retention_hours': self.temp.retention_hours,
        }

    def to_run_options(self, **overrides: Any) -> RunOptions:
        """
        Build run options from the loaded settings.

        Args:
            **overrides: RunOptions fields taking precedence over the environment

        Returns:
            RunOptions for one region run
        """
        values: dict[str, Any] = {
            'mode': self.bundle.mode,
            'compression_level': self.bundle.compression_level,
            'store_cache_size_kb': self.store.cache_size_kb,
            'store_synchronous': self.store.synchronous,
        }
        if self.temp.scratch_dir:
            values['scratch_dir'] = Path(self.temp.scratch_dir)
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return RunOptions(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid run options: {e}")

    def __repr__(self) -> str:
        return (
            f"Config(environment={self.environment}, "
            f"bundle_mode={self.bundle.mode}, "
            f"compression_level={self.bundle.compression_level})"
        )

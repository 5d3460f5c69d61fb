"""
Unified configuration loading interface for the osm2bundle pipeline.

Merges configuration from multiple sources, lowest precedence first:
- environment variables / .env files (Config)
- an optional YAML run file
- explicit overrides (CLI options)

Example run file:

    mode: split
    compression_level: 9
    scratch_dir: /mnt/scratch
    store:
      cache_size_kb: 128000
      synchronous: "OFF"
"""

from pathlib import Path
from typing import Any, Optional

from .config.settings import Config, ConfigurationError
from .domain.models import RunOptions
from .utils import load_yaml_file

RUN_FILE_KEYS = {'mode', 'version', 'compression_level', 'scratch_dir', 'store'}


def load_run_file(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML run file into RunOptions field values.

    Raises:
        ConfigurationError: If the file is missing, invalid, or has unknown keys
    """
    try:
        raw = load_yaml_file(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise ConfigurationError(str(e)) from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Run file {config_path} must contain a mapping")

    unknown = set(raw) - RUN_FILE_KEYS
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in {config_path}: {', '.join(sorted(unknown))}. "
            f"Allowed: {', '.join(sorted(RUN_FILE_KEYS))}"
        )

    values = {k: v for k, v in raw.items() if k != 'store'}
    store = raw.get('store') or {}
    if 'cache_size_kb' in store:
        values['store_cache_size_kb'] = store['cache_size_kb']
    if 'synchronous' in store:
        # YAML 1.1 reads a bare OFF as False
        synchronous = store['synchronous']
        values['store_synchronous'] = 'OFF' if synchronous is False else str(synchronous)
    if 'version' in values:
        values['version'] = str(values['version'])
    if values.get('scratch_dir'):
        values['scratch_dir'] = Path(values['scratch_dir'])
    return values


def load_run_options(
    config_path: Optional[Path] = None,
    config: Optional[Config] = None,
    **overrides: Any
) -> RunOptions:
    """
    Load and merge run options from all sources.

    Args:
        config_path: Optional YAML run file
        config: Preloaded environment configuration (created if None)
        **overrides: Values taking precedence over both (None values ignored)

    Returns:
        RunOptions for one region run
    """
    config = config or Config()

    values: dict[str, Any] = {}
    if config_path is not None:
        values.update(load_run_file(Path(config_path)))
    values.update({k: v for k, v in overrides.items() if v is not None})

    return config.to_run_options(**values)

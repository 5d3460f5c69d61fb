"""
Consolidated Utilities

This module consolidates helper functions shared by the pipeline stages.

Sections:
- Logging and timing utilities
- Filesystem and path operations
- Geometry and bbox helpers
- Configuration helpers
"""

import functools
import logging
import math
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Optional

import numpy as np

# =============================================================================
# Logging and Timing Utilities
# =============================================================================

def setup_logging(
    verbose: bool,
    region_id: Optional[str] = None,
    stage: Optional[str] = None,
    enable_file_logging: bool = False
) -> None:
    """
    Configure logging with optional timestamped file output.

    Args:
        verbose: Enable debug-level logging if True
        region_id: Region identifier for log file naming
        stage: Pipeline stage for log file naming (extract, build-store, run)
        enable_file_logging: Create timestamped log files when True
    """
    import sys
    from datetime import datetime

    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]

    if enable_file_logging and region_id and stage:
        logs_dir = Path("logs")
        logs_dir.mkdir(exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = logs_dir / f"{region_id}_{stage}_{timestamp}.log"

        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        print(f"Logging to: {log_file}")

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True
    )


def timer(func: Callable) -> Callable:
    """Decorator to time function execution."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        result = func(*args, **kwargs)
        end_time = time.time()
        logging.info(f"{func.__name__} completed in {end_time - start_time:.2f} seconds")
        return result
    return wrapper


# =============================================================================
# Filesystem and Path Operations
# =============================================================================

def ensure_directory(path: Path) -> Path:
    """
    Ensure directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure

    Returns:
        Path object for the directory
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_file(path: Path) -> bool:
    """
    Delete a file if it exists. Cleanup failures are logged, not raised.

    Returns:
        True if a file was removed
    """
    try:
        path.unlink()
        logging.debug(f"Removed {path}")
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logging.warning(f"Could not remove {path}: {e}")
        return False


def format_size(num_bytes: int) -> str:
    """Human-readable size for log lines."""
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"


# =============================================================================
# Geometry and Bbox Helpers
# =============================================================================

# 7 decimal digits ~ 1 cm at the equator
COORD_PRECISION = 7
EARTH_RADIUS_M = 6371000.0


def round_coord(value: float) -> float:
    """Round one coordinate to the storage precision. Idempotent."""
    return round(float(value), COORD_PRECISION)


def round_coords(coords: Sequence[float]) -> list[float]:
    return [round_coord(c) for c in coords]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


def _as_pairs(coords: Sequence[float]) -> np.ndarray:
    if len(coords) % 2 != 0:
        raise ValueError(f"Coordinate sequence must have even length, got {len(coords)}")
    return np.asarray(coords, dtype=float).reshape(-1, 2)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def _haversine_many(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    lat_rad = np.radians(lat)
    lats_rad = np.radians(lats)
    dlat = lats_rad - lat_rad
    dlon = np.radians(lons - lon)

    a = np.sin(dlat / 2) ** 2 + np.cos(lat_rad) * np.cos(lats_rad) * np.sin(dlon / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def centroid(coords: Sequence[float]) -> tuple[float, float]:
    """
    Unweighted mean of the vertices of a flat coordinate sequence.

    A closing vertex that repeats the first one is counted once, so a closed
    ring and its open equivalent share the same center.

    Returns:
        (lon, lat) of the center
    """
    pairs = _as_pairs(coords)
    if len(pairs) == 0:
        raise ValueError("Cannot compute the centroid of an empty geometry")
    if len(pairs) > 1 and np.array_equal(pairs[0], pairs[-1]):
        pairs = pairs[:-1]
    lon, lat = pairs.mean(axis=0)
    return float(lon), float(lat)


def max_radius_m(coords: Sequence[float], center: tuple[float, float]) -> float:
    """Largest haversine distance from ``center`` (lon, lat) to any vertex."""
    pairs = _as_pairs(coords)
    if len(pairs) == 0:
        return 0.0
    distances = _haversine_many(center[1], center[0], pairs[:, 1], pairs[:, 0])
    return float(distances.max())


def way_length_m(coords: Sequence[float]) -> float:
    """Total length of a way in meters, summed segment by segment."""
    pairs = _as_pairs(coords)
    if len(pairs) < 2:
        return 0.0
    total = 0.0
    for (lon1, lat1), (lon2, lat2) in zip(pairs[:-1], pairs[1:]):
        total += haversine_m(lat1, lon1, lat2, lon2)
    return total


def compute_bbox(coords: Sequence[float]) -> tuple[float, float, float, float]:
    """
    Bounding box of a flat ``[lon1, lat1, lon2, lat2, ...]`` sequence.

    Args:
        coords: Flat coordinate sequence with at least two points

    Returns:
        (min_lat, max_lat, min_lon, max_lon)

    Raises:
        ValueError: For odd-length sequences or fewer than two points
    """
    pairs = _as_pairs(coords)
    if len(pairs) < 2:
        raise ValueError(f"Bounding box needs at least two points, got {len(pairs)}")
    lons = pairs[:, 0]
    lats = pairs[:, 1]
    return float(lats.min()), float(lats.max()), float(lons.min()), float(lons.max())


def validate_bbox(bbox: Sequence[float]) -> bool:
    """
    Validate a query bounding box.

    Args:
        bbox: Bounding box as [min_lat, max_lat, min_lon, max_lon]

    Returns:
        True if valid, False otherwise
    """
    if len(bbox) != 4:
        return False

    min_lat, max_lat, min_lon, max_lon = bbox

    if not (-90 <= min_lat <= 90) or not (-90 <= max_lat <= 90):
        return False

    if not (-180 <= min_lon <= 180) or not (-180 <= max_lon <= 180):
        return False

    return min_lat <= max_lat and min_lon <= max_lon


# =============================================================================
# Configuration Helpers
# =============================================================================

def load_yaml_file(file_path: Path) -> dict[str, Any]:
    """
    Load YAML configuration file with error handling.

    Args:
        file_path: Path to YAML file

    Returns:
        Parsed YAML content as dictionary

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file is not valid YAML
    """
    import yaml

    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {file_path}: {e}") from e

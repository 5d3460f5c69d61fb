"""
Shared fixtures for the osm2bundle test suite.

Features are written as line-delimited GeoJSON, the format produced by the
upstream filtering step.
"""

import json
from pathlib import Path

import pytest

from osm2bundle.domain.models import RunOptions

TEST_VERSION = "2025-01-31"

# Environment variables read by Config
CONFIG_VARS = (
    "BUNDLE_MODE",
    "BUNDLE_COMPRESSION_LEVEL",
    "STORE_CACHE_SIZE_KB",
    "STORE_SYNCHRONOUS",
    "SCRATCH_DIR",
    "TEMP_RETENTION_HOURS",
)


# =============================================================================
# Feature builders
# =============================================================================

def point_feature(lon, lat, feature_id=None, **tags):
    feature = {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": tags,
    }
    if feature_id is not None:
        feature["id"] = feature_id
    return feature


def line_feature(coords, feature_id=None, **tags):
    feature = {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": [list(c) for c in coords]},
        "properties": tags,
    }
    if feature_id is not None:
        feature["id"] = feature_id
    return feature


def square_ring(lon, lat, half_side_deg):
    """Closed 4-vertex square ring (5 positions) centered on (lon, lat)."""
    return [
        (lon - half_side_deg, lat - half_side_deg),
        (lon + half_side_deg, lat - half_side_deg),
        (lon + half_side_deg, lat + half_side_deg),
        (lon - half_side_deg, lat + half_side_deg),
        (lon - half_side_deg, lat - half_side_deg),
    ]


def write_features(path: Path, features, extra_lines=()) -> Path:
    """Write features one per line, followed by any raw extra lines."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for feature in features:
            f.write(json.dumps(feature) + "\n")
        for line in extra_lines:
            f.write(line + "\n")
    return path


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def input_dir(tmp_path):
    path = tmp_path / "input"
    path.mkdir()
    return path


@pytest.fixture
def output_dir(tmp_path):
    path = tmp_path / "output"
    path.mkdir()
    return path


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def run_options(scratch_dir):
    """Split-mode options with a fixed version and a test-local scratch dir."""
    return RunOptions(version=TEST_VERSION, scratch_dir=scratch_dir, compression_level=6)


@pytest.fixture
def sample_features():
    """A small region: one of everything the classifier recognizes."""
    return [
        point_feature(25.28, 54.68, "n1", traffic_calming="hump", name="Gedimino"),
        point_feature(25.29, 54.69, "n2", highway="speed_camera", maxspeed="50"),
        point_feature(25.30, 54.70, "n3", highway="mini_roundabout"),
        line_feature(square_ring(25.31, 54.71, 0.0002), "w10", junction="roundabout", highway="primary"),
        line_feature([(25.32, 54.72), (25.33, 54.73)], "w11", bridge="yes", highway="secondary"),
        line_feature(
            [(25.123456789, 54.987654321), (25.2, 54.9), (25.25, 54.95)], "w12",
            surface="asphalt", highway="residential",
        ),
        line_feature([(25.4, 54.6), (25.41, 54.61)], "w13", highway="service"),
    ]


@pytest.fixture
def region_input(input_dir, sample_features):
    """Input file for region 'test-region' built from sample_features."""
    return write_features(input_dir / "test-region.geojsonseq", sample_features)

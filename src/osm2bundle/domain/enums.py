"""
Pipeline Enumerations

Core enums for type safety and clear interface definitions across the pipeline.
"""

from enum import Enum


class GeometryKind(str, Enum):
    """Geometry types accepted from the upstream feature stream."""
    POINT = "Point"
    LINESTRING = "LineString"
    POLYGON = "Polygon"


class Category(str, Enum):
    """Destination category of a classified record (bundle array name)."""
    TRAFFIC_CALMING = "trafficCalming"  # Core: loaded eagerly
    ROUNDABOUTS = "roundabouts"         # Core: loaded eagerly
    ROAD_SURFACES = "roadSurfaces"      # Heavy: spilled, loaded on demand
    ROAD_WAYS = "roadWays"              # Heavy: spilled, loaded on demand

    @property
    def is_heavy(self) -> bool:
        return self in (Category.ROAD_SURFACES, Category.ROAD_WAYS)


class TrafficCalmingType(str, Enum):
    """Simplified hazard types stored in the trafficCalming array."""
    SPEED_BUMP = "speed_bump"
    DIP = "dip"
    SPEED_CAMERA = "speed_camera"
    BRIDGE = "bridge"
    TUNNEL = "tunnel"


class RoundaboutType(str, Enum):
    ROUNDABOUT = "roundabout"
    MINI_ROUNDABOUT = "mini_roundabout"


class SurfaceCategory(str, Enum):
    """Normalized road surface vocabulary."""
    # Paved families
    ASPHALT = "asphalt"
    CONCRETE = "concrete"
    PAVED = "paved"
    COBBLESTONE = "cobblestone"
    # Unpaved families
    GRAVEL = "gravel"
    COMPACTED = "compacted"
    DIRT = "dirt"
    GRASS = "grass"
    UNPAVED = "unpaved"
    # Fallback for anything unrecognized
    UNKNOWN = "unknown"


class BundleMode(str, Enum):
    """Bundle composition strategies."""
    SINGLE = "single"  # One file per region with every category
    SPLIT = "split"    # Core file plus one heavy file per heavy category


class LoadState(str, Enum):
    """Progress of one region's store build."""
    INIT = "init"
    SCHEMA_READY = "schema_ready"
    CORE_LOADED = "core_loaded"
    SURFACES_LOADED = "surfaces_loaded"
    SURFACES_SKIPPED = "surfaces_skipped"
    WAYS_LOADED = "ways_loaded"
    WAYS_SKIPPED = "ways_skipped"
    METADATA_WRITTEN = "metadata_written"
    COMMITTED = "committed"
    FINALIZED = "finalized"
    FAILED = "failed"

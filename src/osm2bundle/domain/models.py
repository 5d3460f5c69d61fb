"""
Pipeline Domain Models

Typed models for the records flowing through the pipeline.
Input features are frozen dataclasses (one per input line, created in bulk);
output records are pydantic models whose aliases define the bundle wire format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import ClassVar, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import (
    BundleMode,
    Category,
    GeometryKind,
    RoundaboutType,
    SurfaceCategory,
    TrafficCalmingType,
)


# =============================================================================
# Input
# =============================================================================

@dataclass(frozen=True)
class FeatureId:
    """Stable OSM identifier, e.g. ``way/123`` or ``w123``."""
    kind: str  # node | way | relation
    ref: int

    @property
    def is_way(self) -> bool:
        return self.kind == "way"

    def __str__(self) -> str:
        return f"{self.kind}/{self.ref}"


@dataclass(frozen=True)
class GeographicFeature:
    """
    One parsed feature from the upstream stream.

    ``coords`` is a flat ``(lon1, lat1, lon2, lat2, ...)`` tuple; for polygons
    it holds the outer ring. ``tags`` is a read-only view that keeps the
    order the tags were encountered in.
    """
    kind: GeometryKind
    coords: tuple[float, ...]
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    feature_id: Optional[FeatureId] = None

    def __post_init__(self):
        if len(self.coords) % 2 != 0:
            raise ValueError(f"Coordinate sequence must have even length, got {len(self.coords)}")
        if not isinstance(self.tags, MappingProxyType):
            object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @property
    def point_count(self) -> int:
        return len(self.coords) // 2

    def vertex(self, index: int) -> tuple[float, float]:
        """Return the ``(lon, lat)`` pair at ``index`` (negative indexes allowed)."""
        if index < 0:
            index += self.point_count
        return self.coords[2 * index], self.coords[2 * index + 1]


# =============================================================================
# Output records
# =============================================================================

class BundleRecord(BaseModel):
    """Base for every record written into a bundle array."""
    category: ClassVar[Category]

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_bundle(self) -> dict:
        """Wire representation: camelCase keys, optional fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TrafficCalmingRecord(BundleRecord):
    """Point hazard, or linear structure (bridge/tunnel) with both endpoints."""
    category: ClassVar[Category] = Category.TRAFFIC_CALMING

    lat: float
    lon: float
    type: TrafficCalmingType
    tags: Optional[dict[str, str]] = Field(None, description="Allow-listed tags, never empty")
    end_lat: Optional[float] = Field(None, alias="endLat")
    end_lon: Optional[float] = Field(None, alias="endLon")
    way_id: Optional[int] = Field(None, alias="wayId", description="Way id for multi-segment dedup")

    @field_validator("tags")
    @classmethod
    def _no_empty_tags(cls, value):
        return value or None


class RoundaboutRecord(BundleRecord):
    category: ClassVar[Category] = Category.ROUNDABOUTS

    lat: float
    lon: float
    type: RoundaboutType
    radius: Optional[int] = Field(None, description="Radius estimate in meters")


class _CoordsRecord(BundleRecord):
    coords: list[float] = Field(..., description="Flat [lon1, lat1, lon2, lat2, ...]")

    @field_validator("coords")
    @classmethod
    def _valid_coords(cls, value: list[float]) -> list[float]:
        if len(value) % 2 != 0:
            raise ValueError("coords must hold lon/lat pairs")
        if len(value) < 4:
            raise ValueError("coords must hold at least two points")
        return value


class RoadSurfaceRecord(_CoordsRecord):
    category: ClassVar[Category] = Category.ROAD_SURFACES

    surface: SurfaceCategory

    def to_bundle(self) -> dict:
        # Key order matches the published format: surface first
        return {"surface": self.surface.value, "coords": self.coords}


class RoadWayRecord(_CoordsRecord):
    category: ClassVar[Category] = Category.ROAD_WAYS

    highway: str

    def to_bundle(self) -> dict:
        return {"highway": self.highway, "coords": self.coords}


# =============================================================================
# Bundles and run options
# =============================================================================

class BundleHeader(BaseModel):
    """Envelope of a bundle file plus the category arrays it carries."""
    version: str = Field(..., description="Run date, e.g. 2025-01-31")
    region: str = Field(..., description="Region identifier")
    categories: tuple[Category, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)


def today_version() -> str:
    """Version string for a run: the current UTC date."""
    return datetime.now(timezone.utc).date().isoformat()


class RunOptions(BaseModel):
    """Runtime options for one region's extraction and store build."""
    mode: BundleMode = Field(default=BundleMode.SPLIT, description="Bundle composition strategy")
    version: str = Field(default_factory=today_version, description="Version shared by all bundles of the run")
    compression_level: int = Field(default=9, ge=1, le=9, description="gzip compression level")
    scratch_dir: Optional[Path] = Field(None, description="Directory for scratch spill files")
    store_cache_size_kb: int = Field(default=64000, gt=0, description="SQLite page cache during bulk load")
    store_synchronous: str = Field(default="OFF", description="SQLite synchronous pragma during bulk load")

    @field_validator("store_synchronous")
    @classmethod
    def _valid_synchronous(cls, value: str) -> str:
        value = value.upper()
        if value not in ("OFF", "NORMAL", "FULL"):
            raise ValueError("store_synchronous must be OFF, NORMAL or FULL")
        return value
